import pytest

from literate_loader.loading import IgnoreMatcher, IgnorePatternError


def test_defaults_ignore_version_control_dirs(tmp_path):
    matcher = IgnoreMatcher.build(tmp_path)
    assert matcher.matches(".git", is_dir=True)
    assert matcher.matches("node_modules", is_dir=True)
    assert not matcher.matches("docs", is_dir=True)
    assert not matcher.matches("README.md")


def test_directory_only_pattern(tmp_path):
    matcher = IgnoreMatcher.build(tmp_path, patterns=["build/"])
    assert matcher.matches("build", is_dir=True)
    assert matcher.matches("sub/build", is_dir=True)
    assert not matcher.matches("build", is_dir=False)


def test_negation_and_anchoring(tmp_path):
    matcher = IgnoreMatcher.build(tmp_path, patterns=["*.md", "!keep.md", "/top.txt"])
    assert matcher.matches("other.md")
    assert not matcher.matches("keep.md")
    assert matcher.matches("top.txt")
    assert not matcher.matches("sub/top.txt")


def test_double_star(tmp_path):
    matcher = IgnoreMatcher.build(tmp_path, patterns=["docs/**/draft.md"])
    assert matcher.matches("docs/a/b/draft.md")
    assert matcher.matches("docs/draft.md")
    assert not matcher.matches("notes/draft.md")


def test_explicit_patterns_override_gitignore(tmp_path):
    (tmp_path / ".gitignore").write_text("*.md\n!keep.md\n", encoding="utf-8")
    matcher = IgnoreMatcher.build(tmp_path, patterns=["!README.md", "keep.md"])
    assert matcher.matches("notes.md")
    assert not matcher.matches("README.md")
    assert matcher.matches("keep.md")


def test_explicit_negation_can_reinclude_a_default(tmp_path):
    matcher = IgnoreMatcher.build(tmp_path, patterns=["!node_modules/"])
    assert not matcher.matches("node_modules", is_dir=True)


def test_skip_gitignore(tmp_path):
    (tmp_path / ".gitignore").write_text("private/\n", encoding="utf-8")
    assert IgnoreMatcher.build(tmp_path).matches("private", is_dir=True)
    assert not IgnoreMatcher.build(tmp_path, skip_gitignore=True).matches("private", is_dir=True)


def test_repository_exclude_file(tmp_path):
    info = tmp_path / ".git" / "info"
    info.mkdir(parents=True)
    (info / "exclude").write_text("# local only\nscratch.md\n", encoding="utf-8")
    assert IgnoreMatcher.build(tmp_path).matches("scratch.md")
    assert not IgnoreMatcher.build(tmp_path, use_repository_exclude=False).matches("scratch.md")
    assert not IgnoreMatcher.build(tmp_path, skip_gitignore=True).matches("scratch.md")


def test_repository_exclude_is_relative_to_worktree(tmp_path):
    repo = tmp_path / "repo"
    (repo / ".git" / "info").mkdir(parents=True)
    (repo / ".git" / "info" / "exclude").write_text("/docs/private.md\n", encoding="utf-8")
    (repo / "docs").mkdir()
    matcher = IgnoreMatcher.build(repo / "docs")
    assert matcher.matches("private.md")
    assert not matcher.matches("public.md")


def test_gitdir_file_is_followed(tmp_path):
    real_git = tmp_path / "elsewhere" / "git"
    (real_git / "info").mkdir(parents=True)
    (real_git / "info" / "exclude").write_text("hidden.md\n", encoding="utf-8")
    worktree = tmp_path / "worktree"
    worktree.mkdir()
    (worktree / ".git").write_text(f"gitdir: {real_git}\n", encoding="utf-8")
    assert IgnoreMatcher.build(worktree).matches("hidden.md")


@pytest.mark.parametrize("pattern", ["[abc", "!", "a***b", "trailing\\", "docs/[!].md"])
def test_malformed_explicit_patterns_raise(tmp_path, pattern):
    with pytest.raises(IgnorePatternError) as info:
        IgnoreMatcher.build(tmp_path, patterns=[pattern])
    assert info.value.pattern == pattern


def test_malformed_gitignore_lines_are_skipped(tmp_path):
    (tmp_path / ".gitignore").write_text("[broken\nout/\n", encoding="utf-8")
    matcher = IgnoreMatcher.build(tmp_path)
    assert matcher.matches("out", is_dir=True)
    assert not matcher.matches("[broken")
