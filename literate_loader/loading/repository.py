from __future__ import annotations

import json
import threading
from copy import deepcopy
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text, create_engine, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

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
    Task,
)

Base = declarative_base()


class ProjectModel(Base):
    __tablename__ = "projects"
    id = Column(String, primary_key=True)
    path = Column(String)
    kind = Column(Enum(ProjectKind))
    name = Column(String)
    identity_mode = Column(Enum(IdentityMode))
    options_json = Column(Text)
    status = Column(Enum(ProjectStatus))
    error_message = Column(Text)
    document_count = Column(Integer)
    task_count = Column(Integer)
    created_at = Column(DateTime)
    finished_at = Column(DateTime)


class DocumentModel(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True)
    project_id = Column(String, index=True)
    path = Column(String)
    absolute_path = Column(String)
    filename = Column(String)
    name = Column(String)
    extension = Column(String)
    content = Column(Text)
    status = Column(Enum(DocumentStatus))
    error_message = Column(Text)
    size_bytes = Column(Integer)
    line_count = Column(Integer)
    word_count = Column(Integer)
    task_count = Column(Integer)
    identity = Column(String)
    metadata_json = Column(Text)
    modified_at = Column(DateTime)
    parsed_at = Column(DateTime)


class TaskModel(Base):
    __tablename__ = "tasks"
    # cell ids are content-derived, so the row key is scoped by document
    row_id = Column(String, primary_key=True)
    id = Column(String, index=True)
    document_id = Column(String, index=True)
    name = Column(String)
    is_name_generated = Column(Boolean)
    language = Column(String)
    code = Column(Text)
    line_start = Column(Integer)
    line_end = Column(Integer)
    order_index = Column(Integer)
    is_executable = Column(Boolean)
    timeout_seconds = Column(Integer)
    metadata_json = Column(Text)


class LoadEventModel(Base):
    __tablename__ = "load_events"
    project_id = Column(String, primary_key=True)
    sequence_number = Column(Integer, primary_key=True)
    event_type = Column(Enum(LoadEventType))
    path = Column(String)
    document_ref = Column(String)
    task_ref = Column(String)
    error_message = Column(Text)
    error_kind = Column(String)
    task_name = Column(String)
    task_language = Column(String)
    processing_time_ms = Column(Integer)
    event_data_json = Column(Text)
    occurred_at = Column(DateTime)


class LoadRepository:
    """
    Persistence boundary for loads. The loader only talks to this interface;
    implementations can target SQLite/Postgres or anything else. All methods
    are synchronous and may be called from the loader's worker thread.
    """

    # Project operations
    def save_project(self, project: Project) -> None:
        raise NotImplementedError

    def update_project_status(
        self,
        project_id: str,
        status: ProjectStatus,
        document_count: Optional[int] = None,
        task_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    def get_project(self, project_id: str) -> Optional[Project]:
        raise NotImplementedError

    # Documents and tasks
    def save_document(self, document: Document) -> None:
        raise NotImplementedError

    def save_tasks(self, tasks: Iterable[Task]) -> None:
        raise NotImplementedError

    def list_documents(self, project_id: str) -> List[Document]:
        raise NotImplementedError

    def list_tasks(self, document_id: str) -> List[Task]:
        raise NotImplementedError

    # Event log
    def append_event(self, event: LoadEvent) -> None:
        raise NotImplementedError

    def list_events(self, project_id: str) -> List[LoadEvent]:
        raise NotImplementedError


class InMemoryLoadRepository(LoadRepository):
    """
    Simple in-memory store for local runs and tests. Keeps copies of the
    dataclasses to avoid cross-mutation between calls.
    """

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.documents: Dict[str, Document] = {}
        self.tasks: Dict[str, List[Task]] = {}
        self.events: Dict[str, List[LoadEvent]] = {}
        self._lock = threading.Lock()

    def _clone(self, obj):
        return deepcopy(obj)

    def save_project(self, project: Project) -> None:
        with self._lock:
            stored = self._clone(project)
            stored.documents = []
            self.projects[project.id] = stored

    def update_project_status(
        self,
        project_id: str,
        status: ProjectStatus,
        document_count: Optional[int] = None,
        task_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._lock:
            project = self.projects.get(project_id)
            if not project:
                return
            project.status = status
            if document_count is not None:
                project.document_count = document_count
            if task_count is not None:
                project.task_count = task_count
            if error_message is not None:
                project.error_message = error_message

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self.projects.get(project_id)
            return self._clone(project) if project else None

    def save_document(self, document: Document) -> None:
        with self._lock:
            stored = self._clone(document)
            stored.tasks = []
            stored.tree = None
            self.documents[document.id] = stored

    def save_tasks(self, tasks: Iterable[Task]) -> None:
        with self._lock:
            for task in tasks:
                bucket = self.tasks.setdefault(task.document_id, [])
                bucket[:] = [t for t in bucket if t.order_index != task.order_index]
                bucket.append(self._clone(task))
                bucket.sort(key=lambda t: t.order_index)

    def list_documents(self, project_id: str) -> List[Document]:
        with self._lock:
            docs = [d for d in self.documents.values() if d.project_id == project_id]
            return [self._clone(d) for d in sorted(docs, key=lambda d: d.path)]

    def list_tasks(self, document_id: str) -> List[Task]:
        with self._lock:
            return [self._clone(t) for t in self.tasks.get(document_id, [])]

    def append_event(self, event: LoadEvent) -> None:
        with self._lock:
            self.events.setdefault(event.project_id, []).append(event)

    def list_events(self, project_id: str) -> List[LoadEvent]:
        with self._lock:
            return list(self.events.get(project_id, []))


class SqlAlchemyLoadRepository(LoadRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            database = make_url(database_url).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(database_url, future=True, connect_args=connect_args)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    # region Project operations
    def save_project(self, project: Project) -> None:
        with self._session() as session:
            model = ProjectModel(
                id=project.id,
                path=project.path,
                kind=project.kind,
                name=project.name,
                identity_mode=project.identity_mode,
                options_json=json.dumps(project.options.to_dict()),
                status=project.status,
                error_message=project.error_message,
                document_count=project.document_count,
                task_count=project.task_count,
                created_at=project.created_at,
                finished_at=project.finished_at,
            )
            session.merge(model)
            session.commit()

    def update_project_status(
        self,
        project_id: str,
        status: ProjectStatus,
        document_count: Optional[int] = None,
        task_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._session() as session:
            values = {"status": status}
            if document_count is not None:
                values["document_count"] = document_count
            if task_count is not None:
                values["task_count"] = task_count
            if error_message is not None:
                values["error_message"] = error_message
            session.execute(update(ProjectModel).where(ProjectModel.id == project_id).values(**values))
            session.commit()

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._session() as session:
            model = session.get(ProjectModel, project_id)
            if not model:
                return None
            return Project(
                id=model.id,
                path=model.path,
                kind=model.kind,
                name=model.name,
                identity_mode=model.identity_mode,
                options=LoadOptions(**json.loads(model.options_json or "{}")),
                status=model.status,
                error_message=model.error_message,
                document_count=model.document_count or 0,
                task_count=model.task_count or 0,
                created_at=model.created_at,
                finished_at=model.finished_at,
            )

    # endregion

    # region Documents and tasks
    def save_document(self, document: Document) -> None:
        with self._session() as session:
            model = DocumentModel(
                id=document.id,
                project_id=document.project_id,
                path=document.path,
                absolute_path=document.absolute_path,
                filename=document.filename,
                name=document.name,
                extension=document.extension,
                content=document.content,
                status=document.status,
                error_message=document.error_message,
                size_bytes=document.size_bytes,
                line_count=document.line_count,
                word_count=document.word_count,
                task_count=document.task_count,
                identity=document.identity,
                metadata_json=json.dumps(document.metadata),
                modified_at=document.modified_at,
                parsed_at=document.parsed_at,
            )
            session.merge(model)
            session.commit()

    def save_tasks(self, tasks: Iterable[Task]) -> None:
        with self._session() as session:
            for task in tasks:
                model = TaskModel(
                    row_id=f"{task.document_id}:{task.order_index}",
                    id=task.id,
                    document_id=task.document_id,
                    name=task.name,
                    is_name_generated=task.is_name_generated,
                    language=task.language,
                    code=task.code,
                    line_start=task.line_start,
                    line_end=task.line_end,
                    order_index=task.order_index,
                    is_executable=task.is_executable,
                    timeout_seconds=task.timeout_seconds,
                    metadata_json=json.dumps(task.metadata),
                )
                session.merge(model)
            session.commit()

    def list_documents(self, project_id: str) -> List[Document]:
        with self._session() as session:
            stmt = select(DocumentModel).where(DocumentModel.project_id == project_id).order_by(DocumentModel.path)
            models = session.execute(stmt).scalars().all()
            return [
                Document(
                    id=m.id,
                    project_id=m.project_id,
                    path=m.path,
                    absolute_path=m.absolute_path,
                    filename=m.filename,
                    name=m.name,
                    extension=m.extension,
                    content=m.content or "",
                    status=m.status,
                    error_message=m.error_message,
                    size_bytes=m.size_bytes or 0,
                    line_count=m.line_count or 0,
                    word_count=m.word_count or 0,
                    task_count=m.task_count or 0,
                    identity=m.identity,
                    metadata=json.loads(m.metadata_json or "{}"),
                    modified_at=m.modified_at,
                    parsed_at=m.parsed_at,
                )
                for m in models
            ]

    def list_tasks(self, document_id: str) -> List[Task]:
        with self._session() as session:
            stmt = select(TaskModel).where(TaskModel.document_id == document_id).order_by(TaskModel.order_index)
            models = session.execute(stmt).scalars().all()
            return [
                Task(
                    id=m.id,
                    document_id=m.document_id,
                    name=m.name,
                    is_name_generated=bool(m.is_name_generated),
                    language=m.language,
                    code=m.code,
                    line_start=m.line_start,
                    line_end=m.line_end,
                    order_index=m.order_index,
                    is_executable=bool(m.is_executable),
                    timeout_seconds=m.timeout_seconds,
                    metadata=json.loads(m.metadata_json or "{}"),
                )
                for m in models
            ]

    # endregion

    # region Event log
    def append_event(self, event: LoadEvent) -> None:
        with self._session() as session:
            session.add(
                LoadEventModel(
                    project_id=event.project_id,
                    sequence_number=event.sequence_number,
                    event_type=event.event_type,
                    path=event.path,
                    document_ref=event.document_ref,
                    task_ref=event.task_ref,
                    error_message=event.error_message,
                    error_kind=event.error_kind,
                    task_name=event.task_name,
                    task_language=event.task_language,
                    processing_time_ms=event.processing_time_ms,
                    event_data_json=json.dumps(event.event_data),
                    occurred_at=event.occurred_at,
                )
            )
            session.commit()

    def list_events(self, project_id: str) -> List[LoadEvent]:
        with self._session() as session:
            stmt = (
                select(LoadEventModel)
                .where(LoadEventModel.project_id == project_id)
                .order_by(LoadEventModel.sequence_number)
            )
            models = session.execute(stmt).scalars().all()
            return [
                LoadEvent(
                    event_type=m.event_type,
                    sequence_number=m.sequence_number,
                    project_id=m.project_id,
                    path=m.path,
                    document_ref=m.document_ref,
                    task_ref=m.task_ref,
                    error_message=m.error_message,
                    error_kind=m.error_kind,
                    task_name=m.task_name,
                    task_language=m.task_language,
                    processing_time_ms=m.processing_time_ms,
                    event_data=json.loads(m.event_data_json or "{}"),
                    occurred_at=m.occurred_at,
                )
                for m in models
            ]

    # endregion
