from __future__ import annotations

import os
from dataclasses import dataclass

MAX_FILE_SIZE = 50 * 1024 * 1024


@dataclass
class LoaderConfig:
    database_url: str = "sqlite+pysqlite:///./data/literate_loader.db"
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "load-jobs"
    max_file_size: int = MAX_FILE_SIZE
    workers: int = 1
    identity_mode: str = "auto"

    @classmethod
    def from_env(cls) -> "LoaderConfig":
        defaults = cls()
        return cls(
            database_url=os.getenv("LITERATE_DATABASE_URL", defaults.database_url),
            redis_url=os.getenv("LITERATE_REDIS_URL", defaults.redis_url),
            queue_name=os.getenv("LITERATE_QUEUE_NAME", defaults.queue_name),
            max_file_size=int(os.getenv("LITERATE_MAX_FILE_SIZE", str(defaults.max_file_size))),
            workers=int(os.getenv("LITERATE_WORKERS", str(defaults.workers))),
            identity_mode=os.getenv("LITERATE_IDENTITY_MODE", defaults.identity_mode),
        )
