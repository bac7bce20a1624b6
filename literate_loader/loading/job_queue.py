from __future__ import annotations

from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue, Worker

from ..config import LoaderConfig
from .engine import MarkdownItParser
from .extractor import TaskExtractor
from .loader import ProjectLoader
from .repository import SqlAlchemyLoadRepository


def build_loader(config: LoaderConfig) -> ProjectLoader:
    repo = SqlAlchemyLoadRepository(config.database_url)
    return ProjectLoader(
        parser=MarkdownItParser(max_chars=config.max_file_size),
        extractor=TaskExtractor(),
        repository=repo,
        max_file_size=config.max_file_size,
        workers=config.workers,
    )


def run_load_job(root_path: str, config: LoaderConfig, **load_options: Any) -> Dict[str, Any]:
    """
    RQ task entrypoint. Builds all components, runs one load and returns a
    small summary; the full graph and event log live in the repository.
    """
    load_options.setdefault("identity", config.identity_mode)
    loader = build_loader(config)
    result = loader.load(root_path, **load_options)
    project = result.project
    return {
        "project_id": project.id,
        "status": project.status.value,
        "document_count": project.document_count,
        "task_count": project.task_count,
        "event_count": len(result.events),
        "error_message": project.error_message,
    }


class RQJobQueue:
    """
    Redis-backed job queue using RQ. Loads are pushed to Redis and run by
    workers started with `work()` in a dedicated process. Retries are left
    to the caller.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "load-jobs"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    @classmethod
    def from_config(cls, config: LoaderConfig) -> "RQJobQueue":
        return cls(redis_url=config.redis_url, queue_name=config.queue_name)

    def enqueue_load_job(
        self,
        root_path: str,
        config: LoaderConfig,
        job_id: Optional[str] = None,
        **load_options: Any,
    ):
        return self.queue.enqueue(
            run_load_job,
            args=(root_path, config),
            kwargs=load_options,
            job_id=job_id,
            retry=None,
        )

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
