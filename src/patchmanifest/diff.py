from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from patchmanifest.config import ManifestConfig, default_config
from patchmanifest.errors import DiffToolError, InsideGitDirError, TreeLayoutError

logger = logging.getLogger(__name__)

# a/<tree>/<file> and b/<tree>/<file>
_DIFF_STRIP_COMPONENTS = 2


def diff_trees(
    one: Path,
    other: Path,
    environment: Mapping[str, str] | None = None,
    *,
    config: ManifestConfig | None = None,
) -> bytes:
    """Diff two sibling directory trees with ``git diff --no-index``.

    The command runs from the common parent so file headers read
    ``a/<one>/<file>`` and ``b/<other>/<file>``.
    """
    config = config or default_config()
    one = one.resolve()
    other = other.resolve()
    for tree in (one, other):
        if not tree.is_dir():
            raise TreeLayoutError(f"not a directory: {tree}")
    if one.parent != other.parent:
        raise TreeLayoutError(f"trees must be sibling directories: {one} {other}")
    root = one.parent
    _check_not_inside_git_repo(root, environment, config)
    # prefixes pinned to a/ and b/ for apply_diff -p2
    cmd = [
        config.git_binary,
        "-c",
        "diff.noprefix=false",
        "-c",
        "diff.mnemonicPrefix=false",
        "diff",
        "--no-color",
        "--no-ext-diff",
        "--binary",
        "--no-index",
        "--src-prefix=a/",
        "--dst-prefix=b/",
        "--",
        one.name,
        other.name,
    ]
    result = _run(cmd, root, environment, config)
    # git diff exits 1 when the trees differ
    if result.returncode not in (0, 1):
        stderr = result.stderr.decode("utf-8", errors="replace")
        logger.warning("diff failed code=%s stderr=%s", result.returncode, stderr.strip())
        raise DiffToolError(
            f"{config.git_binary} diff exited with code {result.returncode}",
            returncode=result.returncode,
            stderr=stderr,
        )
    logger.info("diff complete one=%s other=%s bytes=%s", one.name, other.name, len(result.stdout))
    return bytes(result.stdout)


def apply_diff(
    diff: bytes,
    target: Path,
    environment: Mapping[str, str] | None = None,
    *,
    reverse: bool = True,
    config: ManifestConfig | None = None,
) -> None:
    """Apply a diff produced by :func:`diff_trees` onto ``target``.

    The default reverse application turns a baseline tree back into the tree the
    diff was taken from.
    """
    config = config or default_config()
    target = target.resolve()
    if not target.is_dir():
        raise TreeLayoutError(f"not a directory: {target}")
    if not diff:
        logger.info("apply skipped target=%s reason=empty diff", target)
        return
    _check_not_inside_git_repo(target, environment, config)
    cmd = [config.git_binary, "apply", f"-p{_DIFF_STRIP_COMPONENTS}"]
    if reverse:
        cmd.append("-R")
    cmd.append("-")
    result = _run(cmd, target, environment, config, stdin=diff)
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace")
        logger.warning("apply failed code=%s stderr=%s", result.returncode, stderr.strip())
        raise DiffToolError(
            f"{config.git_binary} apply exited with code {result.returncode}",
            returncode=result.returncode,
            stderr=stderr,
        )
    logger.info("apply complete target=%s reverse=%s", target, reverse)


def _check_not_inside_git_repo(
    path: Path,
    environment: Mapping[str, str] | None,
    config: ManifestConfig,
) -> None:
    cmd = [config.git_binary, "rev-parse", "--git-dir"]
    result = _run(cmd, path, environment, config)
    if result.returncode != 0:
        return
    git_dir = Path(result.stdout.decode("utf-8", errors="replace").strip())
    if not git_dir.is_absolute():
        git_dir = path / git_dir
    raise InsideGitDirError(
        f"Cannot diff/patch because the working directory is inside a git directory: {git_dir}",
        git_dir,
    )


def _run(
    cmd: Sequence[str],
    cwd: Path,
    environment: Mapping[str, str] | None,
    config: ManifestConfig,
    *,
    stdin: bytes | None = None,
) -> subprocess.CompletedProcess[bytes]:
    env = dict(os.environ)
    if environment:
        env.update(environment)
    logger.debug("run cmd=%s cwd=%s", " ".join(cmd), cwd)
    try:
        return subprocess.run(
            list(cmd),
            cwd=cwd,
            env=env,
            input=stdin,
            capture_output=True,
            check=False,
            timeout=config.diff_timeout_s,
        )
    except FileNotFoundError as exc:
        raise DiffToolError(f"executable not found: {cmd[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise DiffToolError(
            f"{cmd[0]} timed out after {config.diff_timeout_s}s"
        ) from exc
