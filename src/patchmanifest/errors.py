from __future__ import annotations

from pathlib import Path


class PatchManifestError(Exception):
    """Base class for every error raised by patchmanifest."""


class ManifestFormatError(PatchManifestError):
    """The manifest bytes do not follow the expected layout."""


class ManifestValidationError(PatchManifestError):
    """A well-formed manifest line carries an invalid path or hash."""


class CollaboratorError(PatchManifestError):
    """Failure reported by the external diff/patch tooling."""


class DiffToolError(CollaboratorError):
    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        detail = self.stderr.strip()
        if detail:
            return f"{base}: {detail}"
        return base


class TreeLayoutError(CollaboratorError):
    """A tree handed to the diff tooling is not where it is expected to be."""


class InsideGitDirError(TreeLayoutError):
    def __init__(self, message: str, git_dir: Path) -> None:
        super().__init__(message)
        self.git_dir = git_dir
