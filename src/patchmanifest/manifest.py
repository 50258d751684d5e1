from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import BinaryIO

from pydantic import BaseModel, Field

from patchmanifest.config import ManifestConfig, default_config
from patchmanifest.diff import diff_trees
from patchmanifest.errors import ManifestFormatError, ManifestValidationError
from patchmanifest.hashing import HashAlgorithm, collect_file_hashes

logger = logging.getLogger(__name__)

HASH_SECTION_DELIMITER = "--hash-delimiter--"

_HEX_RE = re.compile(r"[0-9a-f]+")
_WINDOWS_INVALID_CHARS = frozenset('<>"|?*')


def header_lines(tool_name: str) -> str:
    return f"# This file is generated by {tool_name}.\n# Do not edit.\n"


class PatchManifest:
    """File hashes of a destination tree plus the diff from that tree to a baseline.

    Values are immutable. ``file_hashes`` iteration order is the serialization
    order, but equality and hashing ignore it.
    """

    __slots__ = ("_file_hashes", "_diff_content")

    def __init__(self, file_hashes: Mapping[str, str], diff_content: bytes) -> None:
        self._file_hashes: Mapping[str, str] = MappingProxyType(dict(file_hashes))
        self._diff_content = bytes(diff_content)

    @property
    def file_hashes(self) -> dict[str, str]:
        return dict(self._file_hashes)

    @property
    def diff_content(self) -> bytes:
        return bytes(self._diff_content)

    def to_bytes(self, tool_name: str = "patchmanifest") -> bytes:
        return serialize(self, tool_name=tool_name)

    @classmethod
    def from_bytes(cls, data: bytes, algorithm: HashAlgorithm) -> PatchManifest:
        return parse(data, algorithm)

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, PatchManifest):
            return NotImplemented
        return (
            dict(self._file_hashes) == dict(other._file_hashes)
            and self._diff_content == other._diff_content
        )

    def __hash__(self) -> int:
        return hash((frozenset(self._file_hashes.items()), self._diff_content))

    def __str__(self) -> str:
        # debug only; lossy for non utf-8 diffs
        text = self._diff_content.decode("utf-8", errors="replace")
        return f"{dict(self._file_hashes)}\n{text}\n"

    def __repr__(self) -> str:
        return (
            f"PatchManifest(files={len(self._file_hashes)}, "
            f"diff_bytes={len(self._diff_content)})"
        )


class ManifestSummary(BaseModel):
    files: int
    diff_bytes: int
    file_hashes: dict[str, str] = Field(default_factory=dict)


class DriftReport(BaseModel):
    modified: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.modified or self.missing or self.added)


def generate_manifest(
    destination: Path,
    baseline: Path,
    algorithm: HashAlgorithm,
    environment: Mapping[str, str] | None = None,
    *,
    config: ManifestConfig | None = None,
) -> PatchManifest:
    """Record ``destination`` file hashes and its diff against ``baseline``.

    Both trees must be sibling directories; the diff headers carry their names.
    """
    logger.info("manifest generate start destination=%s baseline=%s", destination, baseline)
    hashes = collect_file_hashes(destination, algorithm)
    diff = diff_trees(destination, baseline, environment, config=config)
    manifest = PatchManifest(hashes, diff)
    logger.info("manifest generate complete files=%s diff_bytes=%s", len(hashes), len(diff))
    return manifest


def serialize(manifest: PatchManifest, *, tool_name: str = "patchmanifest") -> bytes:
    """Encode ``manifest`` without validating it.

    Paths or hashes containing ``": "`` or a newline produce output that does not
    parse back. Undecodable file name bytes, carried as surrogate escapes the way
    ``os.fsdecode`` does on POSIX, are written back as the original bytes.
    """
    parts = [header_lines(tool_name)]
    for path, digest in manifest._file_hashes.items():
        parts.append(f"{path}: {digest}\n")
    parts.append(HASH_SECTION_DELIMITER + "\n")
    text = "".join(parts).encode("utf-8", errors="surrogateescape")
    return text + manifest._diff_content


def parse(data: bytes, algorithm: HashAlgorithm) -> PatchManifest:
    """Decode manifest bytes, validating every hash line.

    Everything after the delimiter line is taken verbatim as the diff content.
    """
    buf = bytes(data)
    hashes: dict[str, str] = {}
    lines = _iter_lines(buf)
    while True:
        line, end = _must_read_uncommented_line(lines)
        if line == HASH_SECTION_DELIMITER:
            break
        splits = line.split(": ", 1)
        if len(splits) != 2:
            raise ManifestFormatError(
                "failed to parse manifest hashes: unexpected number of elements"
            )
        path, digest = splits
        _validate_parsed_path_value(path)
        _validate_parsed_hash_value(digest, algorithm)
        if path in hashes:
            raise ManifestValidationError(f"Parsed path value is duplicated: {path}")
        hashes[path] = digest
    diff = buf[end:]
    logger.debug("manifest parse complete files=%s diff_bytes=%s", len(hashes), len(diff))
    return PatchManifest(hashes, diff)


def dump(manifest: PatchManifest, fp: BinaryIO, *, tool_name: str = "patchmanifest") -> None:
    fp.write(serialize(manifest, tool_name=tool_name))


def load(fp: BinaryIO, algorithm: HashAlgorithm) -> PatchManifest:
    return parse(fp.read(), algorithm)


def write_manifest(
    path: Path,
    manifest: PatchManifest,
    *,
    config: ManifestConfig | None = None,
) -> None:
    config = config or default_config()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        dump(manifest, handle, tool_name=config.tool_name)
    logger.info("manifest write complete path=%s", path)


def read_manifest(path: Path, algorithm: HashAlgorithm) -> PatchManifest:
    with path.open("rb") as handle:
        manifest = load(handle, algorithm)
    logger.info("manifest read complete path=%s", path)
    return manifest


def summarize(manifest: PatchManifest) -> ManifestSummary:
    hashes = manifest.file_hashes
    return ManifestSummary(
        files=len(hashes),
        diff_bytes=len(manifest.diff_content),
        file_hashes=hashes,
    )


def check_drift(manifest: PatchManifest, root: Path, algorithm: HashAlgorithm) -> DriftReport:
    recorded = manifest.file_hashes
    current = collect_file_hashes(root, algorithm)
    report = DriftReport(
        modified=sorted(
            path for path, digest in recorded.items() if path in current and current[path] != digest
        ),
        missing=sorted(path for path in recorded if path not in current),
        added=sorted(path for path in current if path not in recorded),
    )
    logger.info(
        "drift check complete root=%s modified=%s missing=%s added=%s",
        root,
        len(report.modified),
        len(report.missing),
        len(report.added),
    )
    return report


def _iter_lines(buf: bytes) -> Iterator[tuple[bytes, int]]:
    """Yield each ``\\n`` terminated line with the offset just past it."""
    pos = 0
    size = len(buf)
    while pos < size:
        newline = buf.find(b"\n", pos)
        if newline == -1:
            yield buf[pos:], size
            return
        yield buf[pos:newline], newline + 1
        pos = newline + 1


def _must_read_uncommented_line(lines: Iterator[tuple[bytes, int]]) -> tuple[str, int]:
    for raw, end in lines:
        line = raw.decode("utf-8", errors="surrogateescape")
        if line.startswith("#"):
            continue
        return line, end
    raise ManifestFormatError("failed to parse manifest: unexpected end of file")


def _validate_parsed_path_value(path: str) -> None:
    if not _is_valid_path(path):
        raise ManifestValidationError("Parsed path value is invalid.")


def _is_valid_path(path: str) -> bool:
    if "\x00" in path:
        return False
    if os.name == "nt":
        for char in path:
            if char in _WINDOWS_INVALID_CHARS or ord(char) < 32:
                return False
    return True


def _validate_parsed_hash_value(digest: str, algorithm: HashAlgorithm) -> None:
    if _HEX_RE.fullmatch(digest) is None:
        raise ManifestValidationError("Parsed hash value is invalid.")
    expected = algorithm.hex_length
    if len(digest) != expected:
        raise ManifestValidationError(
            "Parsed hash value has incorrect number of hex chars. "
            f"Parsed length: {len(digest)}. {algorithm} length: {expected}"
        )
