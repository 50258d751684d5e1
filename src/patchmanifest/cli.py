from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from patchmanifest.config import ManifestConfig, default_config
from patchmanifest.diff import apply_diff
from patchmanifest.errors import PatchManifestError
from patchmanifest.hashing import HashAlgorithm, hash_algorithm
from patchmanifest.manifest import (
    check_drift,
    generate_manifest,
    read_manifest,
    summarize,
    write_manifest,
)
from patchmanifest.runtime import configure_logging

app = typer.Typer(help="Patch manifest CLI")

console = Console()
logger = logging.getLogger(__name__)

MANIFEST_ARG = typer.Argument(..., exists=True, dir_okay=False)
DESTINATION_ARG = typer.Argument(..., exists=True, file_okay=False)
BASELINE_ARG = typer.Argument(..., exists=True, file_okay=False)
ROOT_ARG = typer.Argument(..., exists=True, file_okay=False)
TARGET_ARG = typer.Argument(..., exists=True, file_okay=False)
OUT_OPTION = typer.Option(..., "--out", "-o", dir_okay=False)
HASH_OPTION = typer.Option(None, "--hash", help="hashlib algorithm name")
JSON_OPTION = typer.Option(False, "--json")
FORWARD_OPTION = typer.Option(False, "--forward", help="apply the diff without reversing it")


def _resolve_algorithm(name: str | None, config: ManifestConfig) -> HashAlgorithm:
    try:
        return hash_algorithm(name or config.hash_algorithm)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _fail(message: str) -> typer.Exit:
    console.print(message)
    return typer.Exit(code=1)


@app.command("generate")
def generate(
    destination: Path = DESTINATION_ARG,
    baseline: Path = BASELINE_ARG,
    out: Path = OUT_OPTION,
    hash_name: str | None = HASH_OPTION,
) -> None:
    configure_logging()
    config = default_config()
    algorithm = _resolve_algorithm(hash_name, config)
    logger.info("generate start destination=%s baseline=%s", destination, baseline)
    try:
        manifest = generate_manifest(destination, baseline, algorithm, config=config)
        write_manifest(out, manifest, config=config)
    except PatchManifestError as exc:
        raise _fail(f"Generate failed: {exc}") from exc
    console.print(f"Manifest: {out}")
    console.print(f"Files: {len(manifest.file_hashes)}")
    console.print(f"Diff bytes: {len(manifest.diff_content)}")


@app.command("show")
def show(
    manifest_path: Path = MANIFEST_ARG,
    hash_name: str | None = HASH_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    configure_logging()
    config = default_config()
    algorithm = _resolve_algorithm(hash_name, config)
    try:
        manifest = read_manifest(manifest_path, algorithm)
    except PatchManifestError as exc:
        raise _fail(f"Invalid manifest: {exc}") from exc
    summary = summarize(manifest)
    if as_json:
        console.print_json(summary.model_dump_json())
        return
    console.print(f"Files: {summary.files}")
    console.print(f"Diff bytes: {summary.diff_bytes}")
    for path, digest in summary.file_hashes.items():
        console.print(f"  {path}: {digest}", markup=False)


@app.command("verify")
def verify(
    manifest_path: Path = MANIFEST_ARG,
    root: Path = ROOT_ARG,
    hash_name: str | None = HASH_OPTION,
) -> None:
    configure_logging()
    config = default_config()
    algorithm = _resolve_algorithm(hash_name, config)
    try:
        manifest = read_manifest(manifest_path, algorithm)
    except PatchManifestError as exc:
        raise _fail(f"Invalid manifest: {exc}") from exc
    report = check_drift(manifest, root, algorithm)
    if report.clean:
        console.print("Verify PASS")
        return
    for label, paths in (
        ("modified", report.modified),
        ("missing", report.missing),
        ("added", report.added),
    ):
        for path in paths:
            console.print(f"{label}: {path}", markup=False)
    raise _fail("Verify FAIL: tree drifted from manifest")


@app.command("apply")
def apply(
    manifest_path: Path = MANIFEST_ARG,
    target: Path = TARGET_ARG,
    hash_name: str | None = HASH_OPTION,
    forward: bool = FORWARD_OPTION,
) -> None:
    configure_logging()
    config = default_config()
    algorithm = _resolve_algorithm(hash_name, config)
    try:
        manifest = read_manifest(manifest_path, algorithm)
        apply_diff(manifest.diff_content, target, reverse=not forward, config=config)
    except PatchManifestError as exc:
        raise _fail(f"Apply failed: {exc}") from exc
    console.print(f"Applied diff to {target}")


if __name__ == "__main__":
    app()
