from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectKind(str, Enum):
    DIRECTORY = "directory"
    FILE = "file"


class ProjectStatus(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    PARSED = "parsed"
    ERROR = "error"


class IdentityMode(str, Enum):
    AUTO = "auto"
    DOCUMENT = "document"
    CELL = "cell"


class LoadEventType(str, Enum):
    STARTED_WALK = "started_walk"
    FOUND_DIR = "found_dir"
    FOUND_FILE = "found_file"
    FINISHED_WALK = "finished_walk"
    STARTED_PARSING_DOC = "started_parsing_doc"
    FINISHED_PARSING_DOC = "finished_parsing_doc"
    FOUND_TASK = "found_task"
    ERROR = "error"


class BlockType(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    CODE = "code"
    OTHER = "other"


class WalkEntryKind(str, Enum):
    DIR = "dir"
    FILE = "file"
    ERROR = "error"


MARKDOWN_EXTENSIONS = (".md", ".markdown", ".mdown", ".mkd", ".mkdn")


def is_markdown_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in MARKDOWN_EXTENSIONS


@dataclass
class LoadOptions:
    kind_hint: str = "auto"
    skip_gitignore: bool = False
    ignore_file_patterns: List[str] = field(default_factory=list)
    use_repository_exclude: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind_hint": self.kind_hint,
            "skip_gitignore": self.skip_gitignore,
            "ignore_file_patterns": list(self.ignore_file_patterns),
            "use_repository_exclude": self.use_repository_exclude,
        }


@dataclass
class ParsedBlock:
    block_type: BlockType
    text: str
    line_start: int
    line_end: int
    level: Optional[int] = None
    language: Optional[str] = None
    info: str = ""
    code_line_start: Optional[int] = None
    code_line_end: Optional[int] = None
    is_fenced: bool = False
    is_closed: bool = True


@dataclass
class StructuralTree:
    blocks: List[ParsedBlock]
    line_count: int
    word_count: int
    engine_version: str = ""

    def code_blocks(self) -> List[ParsedBlock]:
        return [b for b in self.blocks if b.block_type == BlockType.CODE]

    def headings(self) -> List[ParsedBlock]:
        return [b for b in self.blocks if b.block_type == BlockType.HEADING]


@dataclass
class WalkEntry:
    """
    One item produced by the directory walk. `kind` is a closed variant:
    a directory, a file, or a path that failed validation mid-walk.
    """

    kind: WalkEntryKind
    path: Path
    relative_path: str
    is_markdown: bool = False
    size_bytes: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def is_dir(self) -> bool:
        return self.kind == WalkEntryKind.DIR


@dataclass
class Task:
    id: str
    document_id: str
    name: str
    language: str
    code: str
    line_start: int
    line_end: int
    order_index: int
    is_executable: bool
    timeout_seconds: int
    is_name_generated: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def line_count(self) -> int:
        if self.line_end < self.line_start:
            return 0
        return self.line_end - self.line_start + 1


@dataclass
class Document:
    id: str
    project_id: str
    path: str
    absolute_path: str
    filename: str
    name: str
    extension: str
    content: str = ""
    tree: Optional[StructuralTree] = None
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    size_bytes: int = 0
    line_count: int = 0
    word_count: int = 0
    task_count: int = 0
    identity: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tasks: List[Task] = field(default_factory=list)
    modified_at: Optional[datetime] = None
    parsed_at: Optional[datetime] = None


@dataclass
class Project:
    id: str
    path: str
    kind: ProjectKind
    name: str
    identity_mode: IdentityMode = IdentityMode.AUTO
    options: LoadOptions = field(default_factory=LoadOptions)
    status: ProjectStatus = ProjectStatus.LOADING
    error_message: Optional[str] = None
    document_count: int = 0
    task_count: int = 0
    documents: List[Document] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status != ProjectStatus.LOADING

    @property
    def has_errors(self) -> bool:
        return any(d.status == DocumentStatus.ERROR for d in self.documents)

    @property
    def loading_progress(self) -> float:
        if not self.documents:
            return 1.0 if self.is_finished else 0.0
        done = sum(1 for d in self.documents if d.status in (DocumentStatus.PARSED, DocumentStatus.ERROR))
        return done / len(self.documents)

    def iter_tasks(self):
        for document in self.documents:
            yield from document.tasks


_EVENT_CATEGORIES = {
    LoadEventType.STARTED_WALK: "walk",
    LoadEventType.FOUND_DIR: "walk",
    LoadEventType.FOUND_FILE: "walk",
    LoadEventType.FINISHED_WALK: "walk",
    LoadEventType.STARTED_PARSING_DOC: "parse",
    LoadEventType.FINISHED_PARSING_DOC: "parse",
    LoadEventType.FOUND_TASK: "task",
    LoadEventType.ERROR: "error",
}


@dataclass(frozen=True)
class LoadEvent:
    event_type: LoadEventType
    sequence_number: int
    project_id: str
    path: Optional[str] = None
    document_ref: Optional[str] = None
    task_ref: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    task_name: Optional[str] = None
    task_language: Optional[str] = None
    processing_time_ms: Optional[int] = None
    event_data: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def category(self) -> str:
        return _EVENT_CATEGORIES[self.event_type]

    @property
    def is_error(self) -> bool:
        return self.event_type == LoadEventType.ERROR

    def to_dict(self) -> Dict[str, Any]:
        """
        Wire shape handed to transports. Optional fields are omitted when unset.
        """
        payload: Dict[str, Any] = {
            "event_type": self.event_type.value,
            "sequence_number": self.sequence_number,
            "path": self.path,
        }
        optional = {
            "document_ref": self.document_ref,
            "task_ref": self.task_ref,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "task_name": self.task_name,
            "task_language": self.task_language,
            "processing_time_ms": self.processing_time_ms,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        payload["event_data"] = dict(self.event_data)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload
