import pytest

from literate_loader.loading import Document, IdentityMode, MarkdownItParser, TaskExtractor

from conftest import PYTHON_AND_UNTAGGED, TWO_BASH


def make_document(path="notes.md"):
    return Document(
        id="doc-1",
        project_id="project-1",
        path=path,
        absolute_path=f"/tmp/{path}",
        filename=path,
        name=path.rsplit(".", 1)[0],
        extension=".md",
    )


def extract(text, mode=IdentityMode.AUTO, document=None, extractor=None):
    document = document or make_document()
    tree = MarkdownItParser().parse(text)
    return document, (extractor or TaskExtractor()).extract(document, tree, mode)


def test_untagged_blocks_only_count_in_metadata():
    document, tasks = extract(PYTHON_AND_UNTAGGED)
    assert len(tasks) == 1
    task = tasks[0]
    assert task.language == "python"
    assert task.order_index == 0
    assert task.code == 'print("a")\n'
    assert (task.line_start, task.line_end) == (4, 4)
    assert task.document_id == "doc-1"
    assert document.metadata["untagged_blocks"] == 1
    assert document.metadata["code_blocks"] == 2
    assert document.metadata["languages"] == ["python"]


def test_plain_text_markers_are_not_tasks():
    _, tasks = extract("```text\nhello\n```\n\n```output\n42\n```\n")
    assert tasks == []


def test_generated_and_explicit_names():
    text = (
        "```python\nx = 1\n```\n\n"
        "```bash name=setup\necho hi\n```\n\n"
        '```sh {"name": "deploy"}\nmake\n```\n\n'
        "```ruby\n# name: greet\nputs 1\n```\n"
    )
    _, tasks = extract(text)
    assert [(t.name, t.is_name_generated) for t in tasks] == [
        ("python-0", True),
        ("setup", False),
        ("deploy", False),
        ("greet", False),
    ]


@pytest.mark.parametrize(
    "tag,executable",
    [("Python", True), ("JS", True), ("bash", True), ("zsh", True), ("PowerShell", True), ("yaml", False), ("json", False)],
)
def test_executability_is_case_insensitive(tag, executable):
    _, tasks = extract(f"```{tag}\ncode\n```\n")
    assert len(tasks) == 1
    assert tasks[0].is_executable is executable


def test_aliases_are_normalized():
    _, tasks = extract("```py\nx\n```\n\n```ts\ny\n```\n")
    assert [t.language for t in tasks] == ["python", "typescript"]


def test_timeouts_follow_language_table():
    extractor = TaskExtractor()
    assert extractor.timeout_for("python") == 60
    assert extractor.timeout_for("SQL") == 120
    assert extractor.timeout_for("bash") == 30
    assert extractor.timeout_for("cobol") == 30
    custom = TaskExtractor(timeouts={"python": 5}, default_timeout=11)
    assert custom.timeout_for("python") == 5
    assert custom.timeout_for("go") == 11


def test_cell_mode_assigns_distinct_ids():
    _, tasks = extract(TWO_BASH, mode=IdentityMode.CELL)
    assert [t.order_index for t in tasks] == [0, 1]
    assert tasks[0].id != tasks[1].id
    assert all(len(t.id) == 16 for t in tasks)


def test_document_mode_shares_document_identity():
    document, tasks = extract(TWO_BASH, mode=IdentityMode.DOCUMENT)
    assert document.identity
    assert [t.id for t in tasks] == [f"{document.identity}:0", f"{document.identity}:1"]


def test_auto_mode_picks_granularity_from_block_count():
    single_doc, single = extract(PYTHON_AND_UNTAGGED)
    assert single_doc.metadata["identity_mode"] == "document"
    assert single[0].id == f"{single_doc.identity}:0"

    multi_doc, multi = extract(TWO_BASH)
    assert multi_doc.metadata["identity_mode"] == "cell"
    assert multi_doc.identity is None
    assert multi[0].id != multi[1].id


def test_explicit_id_attribute_overrides_cell_id():
    _, tasks = extract("```bash id=01HABC\necho\n```\n", mode=IdentityMode.CELL)
    assert tasks[0].id == "01HABC"


def test_ids_are_stable_across_runs():
    _, first = extract(TWO_BASH, mode=IdentityMode.CELL)
    _, second = extract(TWO_BASH, mode=IdentityMode.CELL)
    assert [t.id for t in first] == [t.id for t in second]
    _, moved = extract(TWO_BASH, mode=IdentityMode.CELL, document=make_document("other.md"))
    assert [t.id for t in moved] != [t.id for t in first]


def test_empty_fences_are_not_tasks():
    document, tasks = extract("```python\n```\n\n```bash\n\n```\n\n```sh\nls\n```\n")
    assert [(t.language, t.order_index, t.code) for t in tasks] == [("sh", 0, "ls\n")]
    assert document.metadata["untagged_blocks"] == 2
    assert document.metadata["code_blocks"] == 3
