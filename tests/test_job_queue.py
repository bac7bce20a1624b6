from literate_loader.config import LoaderConfig
from literate_loader.loading import SqlAlchemyLoadRepository, run_load_job

from conftest import TWO_BASH


def test_run_load_job_persists_and_summarizes(make_tree, tmp_path):
    root = make_tree({"script.md": TWO_BASH, "notes.md": "# n\n"})
    config = LoaderConfig(database_url=f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}", identity_mode="cell")

    summary = run_load_job(str(root), config)

    assert summary["status"] == "loaded"
    assert summary["document_count"] == 2
    assert summary["task_count"] == 2
    assert summary["error_message"] is None
    repo = SqlAlchemyLoadRepository(config.database_url)
    assert len(repo.list_events(summary["project_id"])) == summary["event_count"]
    script = next(d for d in repo.list_documents(summary["project_id"]) if d.path == "script.md")
    assert script.metadata["identity_mode"] == "cell"


def test_run_load_job_reports_root_errors(tmp_path):
    config = LoaderConfig(database_url=f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}")
    summary = run_load_job(str(tmp_path / "missing"), config)
    assert summary["status"] == "error"
    assert summary["event_count"] == 1


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("LITERATE_WORKERS", "3")
    monkeypatch.setenv("LITERATE_IDENTITY_MODE", "document")
    monkeypatch.setenv("LITERATE_QUEUE_NAME", "docs")
    config = LoaderConfig.from_env()
    assert config.workers == 3
    assert config.identity_mode == "document"
    assert config.queue_name == "docs"
    assert config.max_file_size == 50 * 1024 * 1024
