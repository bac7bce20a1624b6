from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import pathspec

from .errors import IgnorePatternError

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".hg/",
    ".svn/",
    ".bzr/",
    "node_modules/",
    "__pycache__/",
    ".pytest_cache/",
    ".mypy_cache/",
    ".DS_Store",
    "*.pyc",
]

_TRIPLE_STAR = re.compile(r"\*{3,}")


def check_pattern(pattern: str) -> None:
    """
    Reject glob syntax that gitwildmatch would silently reinterpret.
    Raises IgnorePatternError with the offending pattern attached.
    """
    if "\x00" in pattern:
        raise IgnorePatternError(f"Ignore pattern contains a NUL byte: {pattern!r}", pattern=pattern)
    body = pattern.strip()
    if body.startswith("!"):
        body = body[1:]
        if not body.strip():
            raise IgnorePatternError(f"Negation without a pattern: {pattern!r}", pattern=pattern)
    if _TRIPLE_STAR.search(body):
        raise IgnorePatternError(f"Unsupported wildcard run in pattern: {pattern!r}", pattern=pattern)

    in_class = False
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            if i + 1 >= len(body):
                raise IgnorePatternError(f"Dangling escape at end of pattern: {pattern!r}", pattern=pattern)
            i += 2
            continue
        if ch == "[" and not in_class:
            in_class = True
            # a leading ']' or '!]' is part of the class
            if body[i + 1:i + 2] in ("!", "^"):
                i += 1
            if body[i + 1:i + 2] == "]":
                i += 1
        elif ch == "]" and in_class:
            in_class = False
        i += 1
    if in_class:
        raise IgnorePatternError(f"Unterminated character class in pattern: {pattern!r}", pattern=pattern)


def parse_ignore_lines(lines: Iterable[str], source: str, strict: bool = False) -> List[str]:
    """
    Drop comments and blanks; validate what is left. Invalid lines from files
    are skipped (they match nothing), invalid caller patterns raise.
    """
    patterns: List[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        # trailing spaces are insignificant unless escaped
        if not line.endswith("\\ "):
            line = line.rstrip()
        if not line or line.startswith("#"):
            continue
        try:
            check_pattern(line)
        except IgnorePatternError:
            if strict:
                raise
            logger.warning("Skipping malformed ignore pattern %r from %s", line, source)
            continue
        patterns.append(line)
    return patterns


@dataclass
class IgnoreSource:
    """
    One layer of ignore rules. `base_prefix` rebases project-relative paths
    when the source is anchored somewhere else (the repository exclude file
    is relative to the worktree, not the project root).
    """

    name: str
    patterns: List[str]
    base_prefix: str = ""

    def __post_init__(self):
        try:
            self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)
            self._any = pathspec.GitIgnoreSpec.from_lines([_positive(p) for p in self.patterns])
        except (ValueError, TypeError) as exc:
            raise IgnorePatternError(f"Invalid ignore pattern in {self.name}: {exc}") from exc

    def decide(self, relative_path: str, is_dir: bool) -> Optional[bool]:
        """
        True = ignored, False = re-included by a negation, None = no rule applies.
        """
        candidate = self.base_prefix + relative_path
        if is_dir:
            candidate += "/"
        if not self._any.match_file(candidate):
            return None
        return bool(self._spec.match_file(candidate))


def _positive(pattern: str) -> str:
    return pattern[1:] if pattern.startswith("!") else pattern


class IgnoreMatcher:
    """
    Layered gitignore-style matcher. Sources are consulted in order and the
    last source with an applicable rule decides.
    """

    def __init__(self, sources: Sequence[IgnoreSource]):
        self.sources = list(sources)

    @classmethod
    def build(
        cls,
        root: str | Path,
        patterns: Iterable[str] = (),
        skip_gitignore: bool = False,
        use_repository_exclude: bool = True,
        defaults: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
    ) -> "IgnoreMatcher":
        # caller patterns are validated first so a bad pattern fails before any read
        explicit = parse_ignore_lines(list(patterns), source="explicit patterns", strict=True)

        root = Path(root)
        sources = [IgnoreSource("defaults", list(defaults))]
        if not skip_gitignore and root.is_dir():
            gitignore = root / ".gitignore"
            if gitignore.is_file():
                sources.append(IgnoreSource(".gitignore", _read_ignore_file(gitignore)))
            if use_repository_exclude:
                exclude = find_repository_exclude(root)
                if exclude is not None:
                    exclude_path, prefix = exclude
                    sources.append(IgnoreSource("info/exclude", _read_ignore_file(exclude_path), base_prefix=prefix))
        if explicit:
            sources.append(IgnoreSource("explicit", explicit))
        matcher = cls(sources)
        logger.debug(
            "Built ignore matcher for %s with sources %s",
            root,
            [(s.name, len(s.patterns)) for s in matcher.sources],
        )
        return matcher

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        rel = relative_path.replace("\\", "/").strip("/")
        if not rel:
            return False
        decision = False
        for source in self.sources:
            verdict = source.decide(rel, is_dir)
            if verdict is not None:
                decision = verdict
        return decision


def _read_ignore_file(path: Path) -> List[str]:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Could not read ignore file %s: %s", path, exc)
        return []
    return parse_ignore_lines(text.splitlines(), source=str(path))


def find_git_directory(start: Path) -> Optional[tuple[Path, Path]]:
    """
    Walk upward from `start` looking for a `.git` entry.
    Returns (git_dir, worktree) or None. A `.git` file with a
    `gitdir: <path>` line points at the real git directory.
    """
    current = start.resolve()
    while True:
        candidate = current / ".git"
        if candidate.is_dir():
            return candidate, current
        if candidate.is_file():
            try:
                content = candidate.read_text(encoding="utf-8").strip()
            except OSError:
                content = ""
            if content.startswith("gitdir:"):
                git_dir = Path(content[len("gitdir:"):].strip())
                if not git_dir.is_absolute():
                    git_dir = (current / git_dir).resolve()
                return git_dir, current
        if current.parent == current:
            return None
        current = current.parent


def find_repository_exclude(root: Path) -> Optional[tuple[Path, str]]:
    found = find_git_directory(root)
    if found is None:
        return None
    git_dir, worktree = found
    exclude = git_dir / "info" / "exclude"
    if not exclude.is_file():
        return None
    rel = root.resolve().relative_to(worktree).as_posix()
    prefix = "" if rel == "." else rel + "/"
    return exclude, prefix
