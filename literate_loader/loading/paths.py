from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

from .errors import EncodingError, PathSecurityError, SizeLimitError

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024

DEFAULT_DENYLIST: Tuple[str, ...] = (
    "/etc",
    "/usr/bin",
    "/usr/sbin",
    "/sbin",
    "/bin",
    "/boot",
    "/sys",
    "/proc",
    "/dev",
)


class PathValidator:
    """
    Canonicalizes paths and rejects anything that escapes the project root,
    points into a sensitive system directory, or is too large to read.

    Symlinks are resolved before any check, so a link that points outside the
    root is rejected even when its own location is inside. The validator is
    consulted before every read, not just for the root.
    """

    def __init__(
        self,
        project_root: str | Path,
        max_file_size: int = MAX_FILE_SIZE,
        denylist: Iterable[str] = DEFAULT_DENYLIST,
    ):
        self.max_file_size = max_file_size
        self.denylist = tuple(Path(p) for p in denylist)
        self.project_root = self.validate_root(project_root)

    def validate_root(self, path: str | Path) -> Path:
        raw = str(path)
        if not raw.strip():
            raise PathSecurityError("Path cannot be empty", path=raw)
        candidate = Path(os.path.expanduser(raw))
        resolved = candidate.resolve()
        if self._is_denied(resolved):
            raise PathSecurityError(f"Access to system directory is not allowed: {resolved}", path=raw)
        if not resolved.exists():
            raise PathSecurityError(f"Path does not exist: {raw}", path=raw)
        return resolved

    def validate(self, candidate: str | Path, project_root: Optional[str | Path] = None) -> Path:
        root = Path(project_root).resolve() if project_root is not None else self.project_root
        candidate = Path(candidate)
        if not candidate.is_absolute():
            candidate = root / candidate
        # strict=False: a dangling symlink still resolves to where it points
        resolved = candidate.resolve()
        if self._is_denied(resolved):
            raise PathSecurityError(f"Access to system directory is not allowed: {resolved}", path=str(candidate))
        if not _is_within(resolved, root):
            if candidate.is_symlink():
                message = f"Symlink resolves outside project root: {candidate} -> {resolved}"
            else:
                message = f"Path escapes project root: {candidate}"
            raise PathSecurityError(message, path=str(candidate))
        return resolved

    def check_size(self, path: str | Path) -> int:
        size = Path(path).stat().st_size
        if size > self.max_file_size:
            size_mb = round(size / (1024 * 1024), 2)
            limit_mb = round(self.max_file_size / (1024 * 1024), 2)
            raise SizeLimitError(
                f"Document file is too large ({size_mb}MB). Maximum allowed size is {limit_mb}MB",
                path=str(path),
                size=size,
                limit=self.max_file_size,
            )
        return size

    def read_bytes(self, path: str | Path) -> bytes:
        resolved = self.validate(path)
        self.check_size(resolved)
        return resolved.read_bytes()

    def read_text(self, path: str | Path) -> str:
        return decode_text(self.read_bytes(path), path=str(path))

    def _is_denied(self, resolved: Path) -> bool:
        return any(_is_within(resolved, denied) for denied in self.denylist)


def decode_text(raw: bytes, path: Optional[str] = None) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise EncodingError(
            f"Invalid UTF-8 byte sequence at offset {exc.start}",
            path=path,
        ) from exc


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True
