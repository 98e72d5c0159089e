"""Tests for git helpers against real temporary repositories."""

from __future__ import annotations

import shutil

import pytest

from wayfinder.tools import git

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def repo(settings, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "git_auto_init", True)
    assert git.ensure_repo(tmp_path)
    return tmp_path


class TestRepo:
    def test_no_auto_init(self, settings, tmp_path):
        assert not git.is_repo(tmp_path)
        assert not git.ensure_repo(tmp_path)

    def test_auto_init(self, repo):
        assert git.is_repo(repo)

    def test_missing_root(self, settings, tmp_path):
        assert not git.is_repo(tmp_path / "missing")


class TestCommit:
    def test_commit_and_nothing_to_commit(self, repo):
        (repo / "a.txt").write_text("one\n")
        result = git.commit(repo, "Add a")
        assert result.committed
        assert result.hash

        again = git.commit(repo, "Nothing")
        assert not again.committed
        assert again.message == "nothing to commit"

    def test_status(self, repo):
        (repo / "new.txt").write_text("x")
        [entry] = git.status(repo)
        assert entry.code == "??"
        assert entry.path == "new.txt"

    def test_commit_outside_repo(self, settings, tmp_path):
        result = git.commit(tmp_path, "msg")
        assert not result.committed
        assert result.message == "not a git repository"

    def test_hotspots(self, repo):
        for i in range(3):
            (repo / "hot.txt").write_text(f"{i}\n")
            git.commit(repo, f"hot {i}")
        (repo / "cold.txt").write_text("x\n")
        git.commit(repo, "cold")
        assert git.hotspots(repo)[0] == ("hot.txt", 3)
