from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


class HashAlgorithm(BaseModel):
    """A fixed-size hashlib digest.

    The manifest format does not record which algorithm produced its digests, so
    callers pass the same algorithm to generation and parsing.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    bits: int

    @property
    def hex_length(self) -> int:
        return self.bits // 4

    def new(self) -> Any:
        return hashlib.new(self.name)

    def hexdigest(self, data: bytes) -> str:
        h = self.new()
        h.update(data)
        return str(h.hexdigest())

    def hash_file(self, path: Path) -> str:
        h = self.new()
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                h.update(chunk)
        return str(h.hexdigest())

    def __str__(self) -> str:
        return self.name


def hash_algorithm(name: str) -> HashAlgorithm:
    normalized = name.strip().lower()
    if normalized.startswith("shake_"):
        raise ValueError(f"variable length hash algorithm not supported: {name}")
    try:
        digest_size = hashlib.new(normalized).digest_size
    except ValueError as exc:
        raise ValueError(f"unknown hash algorithm: {name}") from exc
    return HashAlgorithm(name=normalized, bits=digest_size * 8)


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def collect_file_hashes(root: Path, algorithm: HashAlgorithm) -> dict[str, str]:
    """Hash every regular file below ``root``.

    Keys are root-relative POSIX paths in sorted order. Any read failure aborts
    the walk and propagates as ``OSError``.
    """
    if not root.is_dir():
        raise NotADirectoryError(f"not a directory: {root}")
    files: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        base = Path(dirpath)
        files.extend(base / name for name in filenames if (base / name).is_file())
    hashes: dict[str, str] = {}
    for path in sorted(files, key=lambda item: item.relative_to(root).as_posix()):
        relpath = path.relative_to(root).as_posix()
        hashes[relpath] = algorithm.hash_file(path)
    logger.info("hash collect complete root=%s files=%s algo=%s", root, len(hashes), algorithm)
    return hashes
