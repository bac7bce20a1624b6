"""
Loading subsystem exports.
"""

from .engine import MarkdownItParser, MarkdownParser
from .errors import (
    EncodingError,
    IgnorePatternError,
    InvalidRootError,
    LoadCancelledError,
    LoaderError,
    ParseError,
    PathError,
    PathSecurityError,
    SizeLimitError,
)
from .extractor import TaskExtractor
from .ignore import IgnoreMatcher
from .job_queue import RQJobQueue, build_loader, run_load_job
from .loader import LoadHandle, LoadResult, ProjectLoader
from .models import (
    BlockType,
    Document,
    DocumentStatus,
    IdentityMode,
    LoadEvent,
    LoadEventType,
    LoadOptions,
    ParsedBlock,
    Project,
    ProjectKind,
    ProjectStatus,
    StructuralTree,
    Task,
    WalkEntry,
    WalkEntryKind,
)
from .paths import PathValidator
from .repository import InMemoryLoadRepository, LoadRepository, SqlAlchemyLoadRepository
from .sequencer import EventSequencer
from .walker import DirectoryWalker

__all__ = [
    "BlockType",
    "DirectoryWalker",
    "Document",
    "DocumentStatus",
    "EncodingError",
    "EventSequencer",
    "IdentityMode",
    "IgnoreMatcher",
    "IgnorePatternError",
    "InMemoryLoadRepository",
    "InvalidRootError",
    "LoadCancelledError",
    "LoadEvent",
    "LoadEventType",
    "LoadHandle",
    "LoadOptions",
    "LoadRepository",
    "LoadResult",
    "LoaderError",
    "MarkdownItParser",
    "MarkdownParser",
    "ParseError",
    "ParsedBlock",
    "PathError",
    "PathSecurityError",
    "PathValidator",
    "Project",
    "ProjectKind",
    "ProjectLoader",
    "ProjectStatus",
    "RQJobQueue",
    "SizeLimitError",
    "SqlAlchemyLoadRepository",
    "StructuralTree",
    "Task",
    "TaskExtractor",
    "WalkEntry",
    "WalkEntryKind",
    "build_loader",
    "run_load_job",
]
