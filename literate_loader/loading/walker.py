from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Set

from .errors import PathSecurityError
from .ignore import IgnoreMatcher
from .models import WalkEntry, WalkEntryKind, is_markdown_path
from .paths import PathValidator

logger = logging.getLogger(__name__)


class DirectoryWalker:
    """
    Depth-first, lexicographically ordered traversal of a project root.

    `walk()` returns a generator: entries are produced lazily and a finished
    walk cannot be restarted. Directories are yielded before their children.
    Ignored paths are skipped without an entry; paths failing validation
    below the root come out as `WalkEntryKind.ERROR` entries and are not
    descended into. Directory symlinks are never descended: a valid target
    lies inside the root and is reported once, under its real path.
    """

    def __init__(
        self,
        validator: PathValidator,
        matcher: Optional[IgnoreMatcher] = None,
        follow_symlinks: bool = True,
    ):
        self.validator = validator
        self.matcher = matcher
        self.follow_symlinks = follow_symlinks

    def walk(self, root: str | Path) -> Iterator[WalkEntry]:
        root_path = Path(root)
        # a root violation is fatal and raises here, before the first entry
        resolved_root = self.validator.validate(root_path, self.validator.project_root)
        return self._walk(resolved_root)

    def _walk(self, root: Path) -> Iterator[WalkEntry]:
        if root.is_file():
            yield self._file_entry(root, root.name)
            return
        visited: Set[Path] = {root}
        yield from self._walk_dir(root, root, visited)

    def _walk_dir(self, directory: Path, root: Path, visited: Set[Path]) -> Iterator[WalkEntry]:
        try:
            names = sorted(os.listdir(directory))
        except OSError as exc:
            logger.warning("Failed to read directory %s: %s", directory, exc)
            yield WalkEntry(
                kind=WalkEntryKind.ERROR,
                path=directory,
                relative_path=_relative(directory, root),
                error=exc,
            )
            return

        for name in names:
            entry_path = directory / name
            relative = _relative(entry_path, root)
            is_link = entry_path.is_symlink()
            if is_link and not self.follow_symlinks:
                logger.debug("Skipping symlink %s", relative)
                continue

            try:
                resolved = self.validator.validate(entry_path, root)
            except PathSecurityError as exc:
                logger.warning("Rejected %s: %s", relative, exc)
                yield WalkEntry(kind=WalkEntryKind.ERROR, path=entry_path, relative_path=relative, error=exc)
                continue

            is_dir = resolved.is_dir()
            if self.matcher is not None and self.matcher.matches(relative, is_dir=is_dir):
                logger.debug("Ignored %s", relative)
                continue

            if is_dir:
                if is_link:
                    logger.debug("Skipping directory symlink %s -> %s", relative, resolved)
                    continue
                if resolved in visited:
                    logger.debug("Skipping already visited directory %s", relative)
                    continue
                visited.add(resolved)
                yield WalkEntry(kind=WalkEntryKind.DIR, path=entry_path, relative_path=relative)
                yield from self._walk_dir(entry_path, root, visited)
            elif resolved.is_file():
                yield self._file_entry(entry_path, relative)
            else:
                # sockets, fifos, dangling links
                logger.debug("Skipping non-regular entry %s", relative)

    def _file_entry(self, path: Path, relative: str) -> WalkEntry:
        try:
            size = path.stat().st_size
        except OSError:
            size = None
        return WalkEntry(
            kind=WalkEntryKind.FILE,
            path=path,
            relative_path=relative,
            is_markdown=is_markdown_path(path),
            size_bytes=size,
        )


def _relative(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()
