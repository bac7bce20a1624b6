from __future__ import annotations

from typing import Optional


class LoaderError(Exception):
    """
    Base class for every error raised while loading a project.
    `kind` is the stable name written into error events.
    """

    kind = "LoaderError"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class PathError(LoaderError):
    kind = "PathError"


class PathSecurityError(PathError):
    kind = "PathSecurityError"


class SizeLimitError(PathError):
    kind = "SizeLimitError"

    def __init__(self, message: str, path: Optional[str] = None, size: int = 0, limit: int = 0):
        super().__init__(message, path=path)
        self.size = size
        self.limit = limit


class EncodingError(LoaderError):
    kind = "EncodingError"


class ParseError(LoaderError):
    kind = "ParseError"


class IgnorePatternError(LoaderError):
    kind = "IgnorePatternError"

    def __init__(self, message: str, pattern: str = ""):
        super().__init__(message)
        self.pattern = pattern


class InvalidRootError(LoaderError):
    kind = "InvalidRootError"


class LoadCancelledError(LoaderError):
    kind = "LoadCancelled"


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, LoaderError):
        return exc.kind
    return type(exc).__name__
