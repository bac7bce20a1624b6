import json

from literate_loader.__main__ import main

from conftest import PYTHON_AND_UNTAGGED


def test_json_output_streams_every_event(make_tree, capsys, monkeypatch):
    monkeypatch.delenv("LITERATE_IDENTITY_MODE", raising=False)
    root = make_tree({"a.md": PYTHON_AND_UNTAGGED})
    assert main([str(root), "--json"]) == 0

    captured = capsys.readouterr()
    events = [json.loads(line) for line in captured.out.splitlines()]
    assert [e["sequence_number"] for e in events] == list(range(len(events)))
    assert events[0]["event_type"] == "started_walk"
    assert events[-1]["event_type"] == "finished_walk"
    task = next(e for e in events if e["event_type"] == "found_task")
    assert task["task_language"] == "python"
    assert "1 tasks" in captured.err


def test_text_output_and_database(make_tree, capsys, tmp_path):
    root = make_tree({"a.md": PYTHON_AND_UNTAGGED})
    db = tmp_path / "cli.db"
    assert main([str(root), "--database-url", f"sqlite+pysqlite:///{db}", "--identity", "cell"]) == 0
    assert db.exists()
    out = capsys.readouterr().out
    assert "found_task" in out
    assert "[python] python-0" in out


def test_bad_pattern_exits_with_usage_error(make_tree, capsys):
    root = make_tree({"a.md": "# a\n"})
    assert main([str(root), "--ignore", "[oops"]) == 2
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Unterminated" in captured.err


def test_missing_root_exits_nonzero(tmp_path, capsys):
    assert main([str(tmp_path / "missing")]) == 1
    assert "error" in capsys.readouterr().out
