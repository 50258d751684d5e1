from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ManifestConfig:
    hash_algorithm: str = "sha256"
    git_binary: str = "git"
    diff_timeout_s: float | None = None
    tool_name: str = "patchmanifest"


def _parse_timeout(raw: str) -> float | None:
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"invalid PATCHMANIFEST_DIFF_TIMEOUT: {raw}") from exc
    if value <= 0:
        raise ValueError(f"invalid PATCHMANIFEST_DIFF_TIMEOUT: {raw}")
    return value


def default_config() -> ManifestConfig:
    hash_env = os.getenv("PATCHMANIFEST_HASH", "").strip()
    git_env = os.getenv("PATCHMANIFEST_GIT", "").strip()
    timeout_env = os.getenv("PATCHMANIFEST_DIFF_TIMEOUT", "").strip()
    tool_env = os.getenv("PATCHMANIFEST_TOOL_NAME", "").strip()
    return ManifestConfig(
        hash_algorithm=hash_env or "sha256",
        git_binary=git_env or "git",
        diff_timeout_s=_parse_timeout(timeout_env),
        tool_name=tool_env or "patchmanifest",
    )
