from __future__ import annotations

import hashlib
import os
import sys
from pathlib import Path
from typing import Any

import pytest

from patchmanifest.hashing import HashAlgorithm, collect_file_hashes, hash_algorithm
from patchmanifest.manifest import PatchManifest, check_drift, parse, serialize


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def test_collect_uses_relative_posix_keys(tmp_path: Path) -> None:
    root = tmp_path / "tree"
    _write(root / "top.txt", b"top")
    _write(root / "nested" / "deeper" / "leaf.bin", bytes(range(10)))
    (root / "empty_dir").mkdir()
    hashes = collect_file_hashes(root, hash_algorithm("sha256"))
    assert hashes == {
        "nested/deeper/leaf.bin": hashlib.sha256(bytes(range(10))).hexdigest(),
        "top.txt": hashlib.sha256(b"top").hexdigest(),
    }
    assert list(hashes) == sorted(hashes)


def test_collect_empty_tree(tmp_path: Path) -> None:
    assert collect_file_hashes(tmp_path, hash_algorithm("sha256")) == {}


def test_collect_missing_root_raises_os_error(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        collect_file_hashes(tmp_path / "missing", hash_algorithm("sha256"))


def test_hash_file_streams_large_content(tmp_path: Path) -> None:
    data = b"x" * (3 * 1024 * 1024 + 7)
    path = tmp_path / "big.bin"
    path.write_bytes(data)
    assert hash_algorithm("sha1").hash_file(path) == hashlib.sha1(data).hexdigest()


@pytest.mark.parametrize(
    ("name", "bits"),
    [("sha256", 256), ("SHA1", 160), ("md5", 128), ("sha512", 512), ("blake2b", 512)],
)
def test_hash_algorithm_bits(name: str, bits: int) -> None:
    algorithm = hash_algorithm(name)
    assert algorithm.bits == bits
    assert algorithm.hex_length == bits // 4
    assert len(algorithm.hexdigest(b"payload")) == algorithm.hex_length


def test_hash_algorithm_rejects_unknown_and_variable_length() -> None:
    with pytest.raises(ValueError, match="unknown hash algorithm"):
        hash_algorithm("not-a-hash")
    with pytest.raises(ValueError, match="variable length"):
        hash_algorithm("shake_128")


def test_hash_algorithm_is_frozen_and_renders_name() -> None:
    algorithm = hash_algorithm("sha256")
    assert str(algorithm) == "sha256"
    assert algorithm == HashAlgorithm(name="sha256", bits=256)
    with pytest.raises(Exception):
        algorithm.bits = 128  # type: ignore[misc]


def test_collect_fails_when_a_subtree_cannot_be_listed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path / "tree"
    _write(root / "ok.txt", b"ok")
    _write(root / "locked" / "secret.txt", b"secret")
    real_scandir = os.scandir

    def fake_scandir(path: Any) -> Any:
        if Path(os.fsdecode(path)).name == "locked":
            raise PermissionError(13, "Permission denied", os.fsdecode(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", fake_scandir)
    with pytest.raises(OSError):
        collect_file_hashes(root, hash_algorithm("sha256"))


def test_collect_fails_when_a_file_cannot_be_read(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path / "tree"
    _write(root / "a.txt", b"a")
    _write(root / "b.txt", b"b")
    real_hash_file = HashAlgorithm.hash_file

    def fake_hash_file(self: HashAlgorithm, path: Path) -> str:
        if path.name == "b.txt":
            raise PermissionError(13, "Permission denied", str(path))
        return real_hash_file(self, path)

    monkeypatch.setattr(HashAlgorithm, "hash_file", fake_hash_file)
    with pytest.raises(PermissionError):
        collect_file_hashes(root, hash_algorithm("sha256"))


@pytest.mark.skipif(sys.platform != "linux", reason="needs byte file names")
def test_collect_keeps_undecodable_names_round_trippable(tmp_path: Path) -> None:
    root = tmp_path / "tree"
    root.mkdir()
    with open(os.path.join(os.fsencode(root), b"caf\xe9.txt"), "wb") as handle:
        handle.write(b"coffee")
    sha256 = hash_algorithm("sha256")
    hashes = collect_file_hashes(root, sha256)
    assert hashes == {"caf\udce9.txt": hashlib.sha256(b"coffee").hexdigest()}

    manifest = PatchManifest(hashes, b"")
    data = serialize(manifest)
    assert b"caf\xe9.txt: " in data
    parsed = parse(data, sha256)
    assert parsed == manifest
    assert check_drift(parsed, root, sha256).clean
