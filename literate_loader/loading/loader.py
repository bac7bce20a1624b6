from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .engine import MarkdownItParser, MarkdownParser
from .errors import (
    InvalidRootError,
    LoadCancelledError,
    LoaderError,
    error_kind,
)
from .extractor import TaskExtractor
from .ignore import IgnoreMatcher, parse_ignore_lines
from .models import (
    Document,
    DocumentStatus,
    IdentityMode,
    LoadEvent,
    LoadEventType,
    LoadOptions,
    Project,
    ProjectKind,
    ProjectStatus,
    StructuralTree,
    Task,
    WalkEntry,
    WalkEntryKind,
    is_markdown_path,
    utcnow,
)
from .paths import MAX_FILE_SIZE, PathValidator, decode_text
from .repository import LoadRepository
from .sequencer import EventListener, EventSequencer
from .walker import DirectoryWalker

logger = logging.getLogger(__name__)

KIND_HINTS = ("auto", "directory", "file")


@dataclass
class LoadResult:
    project: Project
    events: List[LoadEvent]

    @property
    def ok(self) -> bool:
        return self.project.status == ProjectStatus.LOADED

    def documents_in_error(self) -> List[Document]:
        return [d for d in self.project.documents if d.status == DocumentStatus.ERROR]


@dataclass
class ParseOutcome:
    content: str = ""
    tree: Optional[StructuralTree] = None
    tasks: List[Task] = field(default_factory=list)
    error: Optional[BaseException] = None
    elapsed_ms: int = 0


@dataclass
class WalkStats:
    dirs_found: int = 0
    files_found: int = 0
    markdown_files: int = 0
    documents_parsed: int = 0
    documents_failed: int = 0
    tasks_found: int = 0
    entry_errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class ProjectLoader:
    """
    Drives a load: root validation -> walk -> per-document parse and task
    extraction, emitting one LoadEvent per step through a single sequencer.

    Document-level failures are recorded and the walk continues; only a
    failure at the root (or a cancellation) sets the project to `error`.
    With `workers > 1` documents are parsed on a thread pool, but events are
    still emitted by the orchestrating thread in walk order.
    """

    def __init__(
        self,
        parser: Optional[MarkdownParser] = None,
        extractor: Optional[TaskExtractor] = None,
        repository: Optional[LoadRepository] = None,
        max_file_size: int = MAX_FILE_SIZE,
        workers: int = 1,
        base_dir: Optional[str | Path] = None,
        follow_symlinks: bool = True,
    ):
        self.parser = parser or MarkdownItParser()
        self.extractor = extractor or TaskExtractor()
        self.repo = repository
        self.max_file_size = max_file_size
        self.workers = max(1, int(workers))
        self.base_dir = Path(base_dir).resolve() if base_dir is not None else None
        self.follow_symlinks = follow_symlinks

    # region public entrypoints
    def load(
        self,
        root_path: str | Path,
        kind_hint: str = "auto",
        skip_gitignore: bool = False,
        ignore_file_patterns: Iterable[str] = (),
        identity: str = "auto",
        use_repository_exclude: bool = True,
        on_event: Optional[EventListener] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> LoadResult:
        project = self.prepare(
            root_path,
            kind_hint=kind_hint,
            skip_gitignore=skip_gitignore,
            ignore_file_patterns=ignore_file_patterns,
            identity=identity,
            use_repository_exclude=use_repository_exclude,
        )
        sequencer = EventSequencer(project.id)
        if on_event is not None:
            sequencer.subscribe(on_event)
        self.run(project, sequencer, cancel_event)
        return LoadResult(project=project, events=sequencer.events)

    def start(self, root_path: str | Path, **options) -> "LoadHandle":
        """
        Run the load on a background thread and return a handle whose
        iterator yields events as they are emitted.
        """
        project = self.prepare(root_path, **options)
        return LoadHandle(self, project)

    def prepare(
        self,
        root_path: str | Path,
        kind_hint: str = "auto",
        skip_gitignore: bool = False,
        ignore_file_patterns: Iterable[str] = (),
        identity: str = "auto",
        use_repository_exclude: bool = True,
    ) -> Project:
        """
        Build the Project record and fail fast on bad options. Raises
        IgnorePatternError (or ValueError) before any event exists.
        """
        if kind_hint not in KIND_HINTS:
            raise ValueError(f"kind_hint must be one of {KIND_HINTS}, got {kind_hint!r}")
        identity_mode = IdentityMode(identity)
        patterns = list(ignore_file_patterns or [])
        parse_ignore_lines(patterns, source="explicit patterns", strict=True)

        path = Path(str(root_path))
        # provisional until the root is validated and classified in run()
        kind = ProjectKind.FILE if is_markdown_path(path) else ProjectKind.DIRECTORY
        if kind_hint != "auto":
            kind = ProjectKind(kind_hint)
        return Project(
            id=str(uuid.uuid4()),
            path=str(root_path),
            kind=kind,
            name=_display_name(path, kind),
            identity_mode=identity_mode,
            options=LoadOptions(
                kind_hint=kind_hint,
                skip_gitignore=skip_gitignore,
                ignore_file_patterns=patterns,
                use_repository_exclude=use_repository_exclude,
            ),
        )

    # endregion

    def run(
        self,
        project: Project,
        sequencer: EventSequencer,
        cancel_event: Optional[threading.Event] = None,
    ) -> Project:
        if self.repo is not None:
            self.repo.save_project(project)
            sequencer.subscribe(self.repo.append_event)

        logger.info("Loading project %s from %s", project.id, project.path)
        try:
            root, validator = self._classify_root(project)
        except LoaderError as exc:
            self._fail(project, sequencer, exc)
            return project
        if self.repo is not None:
            # kind, path and name are final only after classification
            self.repo.save_project(project)

        sequencer.emit(
            LoadEventType.STARTED_WALK,
            path=project.path,
            event_data={"kind": project.kind.value, "identity_mode": project.identity_mode.value},
        )
        stats = WalkStats()
        try:
            matcher = None
            if project.kind == ProjectKind.DIRECTORY:
                matcher = IgnoreMatcher.build(
                    root,
                    patterns=project.options.ignore_file_patterns,
                    skip_gitignore=project.options.skip_gitignore,
                    use_repository_exclude=project.options.use_repository_exclude,
                )
            walker = DirectoryWalker(validator, matcher, follow_symlinks=self.follow_symlinks)
            entries = walker.walk(root)
            if self.workers > 1:
                self._consume_parallel(project, entries, validator, sequencer, stats, cancel_event)
            else:
                self._consume(project, entries, validator, sequencer, stats, cancel_event)
        except LoaderError as exc:
            self._fail(project, sequencer, exc)
            return project
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure while loading %s", project.path)
            self._fail(project, sequencer, exc)
            return project

        sequencer.emit(LoadEventType.FINISHED_WALK, path=project.path, event_data=stats.to_dict())
        project.status = ProjectStatus.LOADED
        project.finished_at = utcnow()
        if self.repo is not None:
            self.repo.update_project_status(
                project.id,
                ProjectStatus.LOADED,
                document_count=project.document_count,
                task_count=project.task_count,
            )
        logger.info(
            "Loaded project %s: %d documents, %d tasks, %d document errors",
            project.id,
            project.document_count,
            project.task_count,
            stats.documents_failed,
        )
        return project

    def _classify_root(self, project: Project) -> Tuple[Path, PathValidator]:
        candidate = Path(project.path).expanduser()
        if self.base_dir is not None:
            if not candidate.is_absolute():
                candidate = self.base_dir / candidate
            PathValidator(self.base_dir, max_file_size=self.max_file_size).validate(candidate)

        validator = PathValidator(candidate, max_file_size=self.max_file_size)
        root = validator.project_root
        hint = project.options.kind_hint
        if root.is_dir():
            if hint == "file":
                raise InvalidRootError(f"Expected a file but found a directory: {project.path}", path=project.path)
            project.kind = ProjectKind.DIRECTORY
        elif root.is_file():
            if hint == "directory":
                raise InvalidRootError(f"Expected a directory but found a file: {project.path}", path=project.path)
            if not is_markdown_path(root):
                raise InvalidRootError(f"File is not a markdown file: {project.path}", path=project.path)
            project.kind = ProjectKind.FILE
        else:
            raise InvalidRootError(f"Path is neither a file nor a directory: {project.path}", path=project.path)
        project.path = str(root)
        project.name = _display_name(root, project.kind)
        return root, validator

    # region walk consumption
    def _consume(
        self,
        project: Project,
        entries: Iterator[WalkEntry],
        validator: PathValidator,
        sequencer: EventSequencer,
        stats: WalkStats,
        cancel_event: Optional[threading.Event],
    ) -> None:
        for entry in entries:
            _check_cancelled(cancel_event)
            if self._emit_entry(entry, sequencer, stats):
                _check_cancelled(cancel_event)
                document = self._new_document(project, entry)
                self._process_document(project, document, validator, sequencer, stats)

    def _consume_parallel(
        self,
        project: Project,
        entries: Iterator[WalkEntry],
        validator: PathValidator,
        sequencer: EventSequencer,
        stats: WalkStats,
        cancel_event: Optional[threading.Event],
    ) -> None:
        planned: List[Tuple[WalkEntry, Optional[Document], Optional[Future]]] = []
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="literate-parse") as pool:
            try:
                for entry in entries:
                    _check_cancelled(cancel_event)
                    if entry.kind == WalkEntryKind.FILE and entry.is_markdown:
                        document = self._new_document(project, entry)
                        future = pool.submit(self._parse_document, document, validator, project.identity_mode)
                        planned.append((entry, document, future))
                    else:
                        planned.append((entry, None, None))

                for entry, document, future in planned:
                    _check_cancelled(cancel_event)
                    if self._emit_entry(entry, sequencer, stats):
                        _check_cancelled(cancel_event)
                        self._process_document(project, document, validator, sequencer, stats, pending=future)
            except LoadCancelledError:
                pool.shutdown(wait=True, cancel_futures=True)
                raise

    def _emit_entry(self, entry: WalkEntry, sequencer: EventSequencer, stats: WalkStats) -> bool:
        """
        Emit the discovery event for an entry. Returns True when the entry is
        a markdown document that should be parsed next.
        """
        if entry.kind == WalkEntryKind.DIR:
            stats.dirs_found += 1
            sequencer.emit(LoadEventType.FOUND_DIR, path=entry.relative_path)
            return False
        if entry.kind == WalkEntryKind.ERROR:
            stats.entry_errors += 1
            sequencer.emit(
                LoadEventType.ERROR,
                path=entry.relative_path,
                error_message=str(entry.error),
                error_kind=error_kind(entry.error) if entry.error else None,
                event_data={"stage": "walk"},
            )
            return False
        stats.files_found += 1
        sequencer.emit(
            LoadEventType.FOUND_FILE,
            path=entry.relative_path,
            event_data={"size_bytes": entry.size_bytes, "is_markdown": entry.is_markdown},
        )
        if entry.is_markdown:
            stats.markdown_files += 1
        return entry.is_markdown

    # endregion

    # region documents
    def _new_document(self, project: Project, entry: WalkEntry) -> Document:
        path = Path(entry.path)
        modified_at = None
        try:
            modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            pass
        return Document(
            id=str(uuid.uuid4()),
            project_id=project.id,
            path=entry.relative_path,
            absolute_path=str(path),
            filename=path.name,
            name=path.stem,
            extension=path.suffix,
            size_bytes=entry.size_bytes or 0,
            modified_at=modified_at,
        )

    def _process_document(
        self,
        project: Project,
        document: Document,
        validator: PathValidator,
        sequencer: EventSequencer,
        stats: WalkStats,
        pending: Optional[Future] = None,
    ) -> None:
        try:
            document.size_bytes = validator.check_size(document.absolute_path)
        except (LoaderError, OSError) as exc:
            self._document_failed(project, document, exc, "precheck", sequencer, stats)
            return

        document.status = DocumentStatus.PARSING
        sequencer.emit(LoadEventType.STARTED_PARSING_DOC, path=document.path, document_ref=document.id)

        outcome = pending.result() if pending is not None else self._parse_document(
            document, validator, project.identity_mode
        )
        if outcome.error is not None:
            self._document_failed(project, document, outcome.error, "parse", sequencer, stats)
            return

        document.tasks = outcome.tasks
        document.task_count = len(outcome.tasks)
        document.status = DocumentStatus.PARSED
        document.parsed_at = utcnow()
        project.documents.append(document)
        project.document_count += 1
        project.task_count += document.task_count
        stats.documents_parsed += 1
        stats.tasks_found += document.task_count
        if self.repo is not None:
            self.repo.save_document(document)
            self.repo.save_tasks(document.tasks)

        for task in document.tasks:
            sequencer.emit(
                LoadEventType.FOUND_TASK,
                path=document.path,
                document_ref=document.id,
                task_ref=task.id,
                task_name=task.name,
                task_language=task.language,
                event_data={
                    "order_index": task.order_index,
                    "line_start": task.line_start,
                    "line_end": task.line_end,
                    "is_executable": task.is_executable,
                    "is_task_name_generated": task.is_name_generated,
                },
            )
        sequencer.emit(
            LoadEventType.FINISHED_PARSING_DOC,
            path=document.path,
            document_ref=document.id,
            processing_time_ms=outcome.elapsed_ms,
            event_data={
                "status": document.status.value,
                "tasks_found": document.task_count,
                "languages": document.metadata.get("languages", []),
            },
        )

    def _parse_document(
        self,
        document: Document,
        validator: PathValidator,
        identity_mode: IdentityMode,
    ) -> ParseOutcome:
        started = time.perf_counter()
        try:
            raw = validator.read_bytes(document.absolute_path)
            content = decode_text(raw, path=document.path)
            tree = self.parser.parse(content)
            tasks = self.extractor.extract(document, tree, identity_mode)
        except LoaderError as exc:
            return ParseOutcome(error=exc, elapsed_ms=_elapsed_ms(started))
        except OSError as exc:
            logger.warning("Could not read %s: %s", document.path, exc)
            return ParseOutcome(error=exc, elapsed_ms=_elapsed_ms(started))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure parsing %s", document.path)
            return ParseOutcome(error=exc, elapsed_ms=_elapsed_ms(started))

        document.content = content
        document.tree = tree
        document.line_count = tree.line_count
        document.word_count = tree.word_count
        return ParseOutcome(content=content, tree=tree, tasks=tasks, elapsed_ms=_elapsed_ms(started))

    def _document_failed(
        self,
        project: Project,
        document: Document,
        exc: BaseException,
        stage: str,
        sequencer: EventSequencer,
        stats: WalkStats,
    ) -> None:
        logger.warning("Document %s failed during %s: %s", document.path, stage, exc)
        document.status = DocumentStatus.ERROR
        document.error_message = str(exc)
        document.tasks = []
        document.task_count = 0
        project.documents.append(document)
        stats.documents_failed += 1
        if self.repo is not None:
            self.repo.save_document(document)
        sequencer.emit(
            LoadEventType.ERROR,
            path=document.path,
            document_ref=document.id,
            error_message=str(exc),
            error_kind=error_kind(exc),
            event_data={"stage": stage, "scope": "document"},
        )

    # endregion

    def _fail(self, project: Project, sequencer: EventSequencer, exc: BaseException) -> None:
        logger.error("Loading project %s failed: %s", project.path, exc)
        project.status = ProjectStatus.ERROR
        project.error_message = str(exc)
        project.finished_at = utcnow()
        if self.repo is not None:
            self.repo.update_project_status(
                project.id,
                ProjectStatus.ERROR,
                document_count=project.document_count,
                task_count=project.task_count,
                error_message=project.error_message,
            )
        sequencer.emit(
            LoadEventType.ERROR,
            path=project.path,
            error_message=str(exc),
            error_kind=error_kind(exc),
            event_data={"scope": "project"},
        )


_DONE = object()


class LoadHandle:
    """
    A load running on a background thread. Iterating the handle yields
    events in sequence order as they are produced; `wait()` returns the
    final LoadResult. Abandoning the iterator early cancels the load.
    """

    def __init__(self, loader: ProjectLoader, project: Project):
        self.project = project
        self.cancel_event = threading.Event()
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._sequencer = EventSequencer(project.id, [self._queue.put])
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run,
            args=(loader,),
            name=f"literate-load-{project.id}",
            daemon=True,
        )
        self._thread.start()

    def _run(self, loader: ProjectLoader) -> None:
        try:
            loader.run(self.project, self._sequencer, self.cancel_event)
        except BaseException as exc:  # noqa: BLE001
            self._error = exc
        finally:
            self._queue.put(_DONE)

    def __iter__(self) -> Iterator[LoadEvent]:
        completed = False
        try:
            while True:
                item = self._queue.get()
                if item is _DONE:
                    completed = True
                    return
                yield item
        finally:
            if not completed:
                self.cancel()

    def cancel(self) -> None:
        self.cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> LoadResult:
        self._thread.join(timeout)
        if self._error is not None:
            raise self._error
        return LoadResult(project=self.project, events=self._sequencer.events)


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise LoadCancelledError("Load cancelled")


def _display_name(path: Path, kind: ProjectKind) -> str:
    if kind == ProjectKind.FILE:
        return path.stem
    return path.name or str(path)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
