import pytest

from literate_loader.loading import (
    DocumentStatus,
    InMemoryLoadRepository,
    LoadEventType,
    ProjectKind,
    ProjectLoader,
    ProjectStatus,
    SqlAlchemyLoadRepository,
)

from conftest import PYTHON_AND_UNTAGGED, TWO_BASH


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryLoadRepository()
    return SqlAlchemyLoadRepository(f"sqlite+pysqlite:///{tmp_path / 'db' / 'loads.db'}")


def test_load_is_persisted(repo, make_tree):
    root = make_tree({"a.md": PYTHON_AND_UNTAGGED, "docs/b.md": TWO_BASH, "bad.md": b"\xff\xfe"})
    result = ProjectLoader(repository=repo).load(root, identity="cell")
    project_id = result.project.id

    stored = repo.get_project(project_id)
    assert stored.status == ProjectStatus.LOADED
    assert stored.document_count == 2
    assert stored.task_count == 3
    assert stored.options.kind_hint == "auto"
    assert stored.options.use_repository_exclude is True

    documents = repo.list_documents(project_id)
    assert [(d.path, d.status) for d in documents] == [
        ("a.md", DocumentStatus.PARSED),
        ("bad.md", DocumentStatus.ERROR),
        ("docs/b.md", DocumentStatus.PARSED),
    ]
    assert documents[0].metadata["untagged_blocks"] == 1
    assert documents[1].error_message

    b_doc = documents[2]
    tasks = repo.list_tasks(b_doc.id)
    expected = next(d for d in result.project.documents if d.path == "docs/b.md").tasks
    assert [(t.id, t.order_index, t.language) for t in tasks] == [
        (t.id, t.order_index, t.language) for t in expected
    ]
    assert tasks[0].metadata["identity_mode"] == "cell"


def test_event_log_matches_emitted_events(repo, make_tree):
    root = make_tree({"a.md": TWO_BASH})
    result = ProjectLoader(repository=repo).load(root)
    stored = repo.list_events(result.project.id)

    assert [(e.sequence_number, e.event_type, e.path, e.task_ref) for e in stored] == [
        (e.sequence_number, e.event_type, e.path, e.task_ref) for e in result.events
    ]
    assert stored[-1].event_type == LoadEventType.FINISHED_WALK
    assert stored[-1].event_data["documents_parsed"] == 1


def test_root_failure_is_persisted(repo, tmp_path):
    result = ProjectLoader(repository=repo).load(tmp_path / "missing")
    stored = repo.get_project(result.project.id)
    assert stored.status == ProjectStatus.ERROR
    assert "does not exist" in stored.error_message
    assert [e.event_type for e in repo.list_events(result.project.id)] == [LoadEventType.ERROR]


def test_unknown_project_returns_none(repo):
    assert repo.get_project("nope") is None
    assert repo.list_documents("nope") == []
    assert repo.list_events("nope") == []


def test_stored_project_reflects_the_classified_root(repo, make_tree):
    root = make_tree({"a.md": TWO_BASH}, name="notes.md")
    result = ProjectLoader(repository=repo).load(root)

    stored = repo.get_project(result.project.id)
    assert result.project.kind == ProjectKind.DIRECTORY
    assert stored.kind == ProjectKind.DIRECTORY
    assert stored.path == str(root.resolve())
    assert stored.name == "notes.md"
    assert stored.status == ProjectStatus.LOADED
