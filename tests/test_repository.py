"""Tests for repository module."""

import shutil

import pytest
from git import Actor, Repo

from nmpatches.repository import GitRepository, ReferenceRepository, RepositoryError, SourceRepository


pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

E1000E_DIR = "drivers/net/ethernet/intel/e1000e"
AUTHOR = Actor("Netmap Test", "test@example.com")


def commit_file(repo, rel, text, message):
    path = repo.working_tree_dir + "/" + rel
    with open(path, "w") as f:
        f.write(text)
    repo.index.add([rel])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR)


@pytest.fixture
def linux_repo(tmp_path):
    """Linux repository with tag v2.6.32 and reference branch netmap-2.6.32."""
    path = tmp_path / "linux"
    (path / E1000E_DIR).mkdir(parents=True)
    repo = Repo.init(path)
    commit_file(repo, "Makefile", "VERSION = 2\n", "Linux 2.6.32")
    commit_file(repo, f"{E1000E_DIR}/netdev.c", "int netdev;\n", "e1000e")
    repo.create_tag("v2.6.32")

    repo.create_head("netmap-2.6.32").checkout()
    commit_file(repo, f"{E1000E_DIR}/netdev.c", "int netdev;\n#include <netmap.h>\n", "netmap support")
    commit_file(repo, "Makefile", "VERSION = 2\nNETMAP = y\n", "unrelated change")
    return ReferenceRepository(path)


class TestReferenceRepository:
    """Tests against a real git repository."""

    def test_diff_relative_to_driver(self, linux_repo):
        """Test paths are relative to the driver directory."""
        diff = linux_repo.diff("v2.6.32", "netmap-2.6.32", E1000E_DIR)
        assert "--- a/netdev.c" in diff
        assert "+++ b/netdev.c" in diff
        assert "+#include <netmap.h>" in diff
        assert "Makefile" not in diff
        assert diff.endswith("\n")

    def test_diff_without_changes(self, linux_repo):
        """Test equal refs give an empty diff."""
        assert linux_repo.diff("v2.6.32", "v2.6.32", E1000E_DIR) == ""

    def test_diff_unknown_ref(self, linux_repo):
        """Test an unknown ref is a repository error."""
        with pytest.raises(RepositoryError):
            linux_repo.diff("v2.6.32", "netmap-9.9", E1000E_DIR)

    def test_has_ref(self, linux_repo):
        """Test tags and branches resolve."""
        assert linux_repo.has_ref("v2.6.32")
        assert linux_repo.has_ref("netmap-2.6.32")
        assert not linux_repo.has_ref("v2.6.33")

    def test_archive_tag(self, linux_repo, tmp_path):
        """Test exporting a tag gives the pristine tree."""
        dest = linux_repo.archive("v2.6.32", tmp_path / "export")
        assert (dest / E1000E_DIR / "netdev.c").read_text() == "int netdev;\n"
        assert not (dest / ".git").exists()

    def test_archive_unknown_ref(self, linux_repo, tmp_path):
        """Test exporting an unknown ref fails."""
        with pytest.raises(RepositoryError):
            linux_repo.archive("v9.9", tmp_path / "export")


class TestSourceRepository:
    """Tests for the netmap source repository."""

    def test_head_and_export(self, tmp_path):
        """Test the head commit and a pristine export."""
        path = tmp_path / "netmap"
        (path / "LINUX").mkdir(parents=True)
        repo = Repo.init(path)
        commit = commit_file(repo, "LINUX/configure", "#!/bin/sh\n", "configure")

        source = SourceRepository(path)
        assert source.head_commit() == commit.hexsha
        dest = source.export(commit.hexsha, tmp_path / "src")
        assert (dest / "LINUX" / "configure").is_file()

    def test_not_a_repository(self, tmp_path):
        """Test a missing path is a repository error."""
        with pytest.raises(RepositoryError):
            GitRepository(tmp_path / "missing").head_commit()

    def test_empty_repository(self, tmp_path):
        """Test a repository without commits has no head."""
        Repo.init(tmp_path / "empty")
        with pytest.raises(RepositoryError):
            GitRepository(tmp_path / "empty").head_commit()
