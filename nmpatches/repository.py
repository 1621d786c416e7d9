"""
Git access to the reference Linux repository and the netmap source repository.
"""

import tarfile
import tempfile
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from nmpatches.common import logger


class RepositoryError(Exception):
    """Exception raised when a repository cannot be read."""
    pass


class GitRepository:
    """Thin wrapper over a local git repository."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise RepositoryError(f"Not a git repository: {self.path}") from e
        return self._repo

    def has_ref(self, ref: str) -> bool:
        """Check whether a tag, branch or commit resolves."""
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
            return True
        except GitCommandError:
            return False

    def head_commit(self) -> str:
        """Get the commit currently checked out."""
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            raise RepositoryError(f"Repository {self.path} has no commits") from e

    def diff(self, base: str, target: str, path: str) -> str:
        """
        Diff two refs restricted to a directory.

        Paths in the result are relative to ``path`` so the patch applies
        with ``-p1`` inside that directory.

        Args:
            base: Base ref (e.g., upstream tag)
            target: Target ref (e.g., reference branch)
            path: Directory to restrict the diff to

        Returns:
            Unified diff text, empty when there are no changes
        """
        path = path.rstrip("/")
        try:
            output = self.repo.git.diff(base, target, f"--relative={path}/", "--", path)
        except GitCommandError as e:
            raise RepositoryError(f"git diff {base} {target} -- {path} failed: {e}") from e
        if output and not output.endswith("\n"):
            output += "\n"
        return output

    def archive(self, ref: str, dest: Path, prefix: Optional[str] = None) -> Path:
        """
        Export the tree of a ref into a directory.

        Args:
            ref: Tag, branch or commit
            dest: Destination directory (created if missing)
            prefix: Optional subdirectory of the repository to export

        Returns:
            Destination directory
        """
        dest.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile() as tar_file:
            try:
                if prefix:
                    self.repo.archive(tar_file, treeish=ref, path=prefix)
                else:
                    self.repo.archive(tar_file, treeish=ref)
            except GitCommandError as e:
                raise RepositoryError(f"git archive {ref} failed: {e}") from e
            tar_file.seek(0)
            with tarfile.open(fileobj=tar_file, mode="r:") as tar:
                tar.extractall(dest)

        logger.debug(f"Exported {ref} from {self.path} to {dest}")
        return dest


class ReferenceRepository(GitRepository):
    """Linux repository with upstream tags and per-version reference branches."""

    def __init__(self, path: Path, branch_prefix: str = "netmap-"):
        super().__init__(path)
        self.branch_prefix = branch_prefix

    def reference_branch(self, version_str: str) -> str:
        return f"{self.branch_prefix}{version_str}"


class SourceRepository(GitRepository):
    """The netmap source repository built during verification."""

    def export(self, commit: str, dest: Path) -> Path:
        """Export a pristine source tree for a commit."""
        return self.archive(commit, dest)
