"""
Provisioning of pristine, build-ready kernel source trees.

Each release is provisioned once into ``<kernel_dir>/linux-<canonical>``;
a marker file records that fetching and preparation completed, so later
calls return the same tree without touching it.
"""

import shutil
import tarfile
from pathlib import Path
from typing import Optional, Set

import requests
from rich.progress import Progress

from nmpatches.common import console, logger, run_command, safe_remove_dir, scratch_dir
from nmpatches.config import DEFAULT_CONFIG, KernelSource, PatchConfig
from nmpatches.models import KernelVersion
from nmpatches.repository import ReferenceRepository, RepositoryError


READY_MARKER = ".nmpatches-ready"


class ProvisionError(Exception):
    """Exception raised when a kernel tree cannot be provisioned."""
    pass


def download_file(
    url: str,
    dest_path: Path,
    timeout: int = 60,
    show_progress: bool = True,
) -> bool:
    """
    Download a file from URL.

    Args:
        url: URL to download from
        dest_path: Destination file path
        timeout: Request timeout in seconds
        show_progress: Show download progress

    Returns:
        True if download succeeded, False otherwise
    """
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("content-length", 0))

            with open(dest_path, "wb") as f:
                if show_progress and total_size > 0:
                    with Progress(console=console) as progress:
                        task = progress.add_task(f"Downloading {dest_path.name}", total=total_size)
                        for chunk in response.iter_content(chunk_size=8192):
                            f.write(chunk)
                            progress.update(task, advance=len(chunk))
                else:
                    for chunk in response.iter_content(chunk_size=8192):
                        f.write(chunk)

        return True
    except (requests.RequestException, OSError) as e:
        logger.error(f"Failed to download {url}: {e}")
        if dest_path.exists():
            dest_path.unlink()
        return False


class KernelTreeProvisioner:
    """Base provisioner; subclasses implement ``_fetch``."""

    def __init__(self, config: Optional[PatchConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self._unavailable: Set[str] = set()

    def tree_path(self, version: KernelVersion) -> Path:
        return self.config.kernel_dir / f"linux-{version.canonical}"

    def is_ready(self, version: KernelVersion) -> bool:
        return (self.tree_path(version) / READY_MARKER).exists()

    def provision(self, version: KernelVersion) -> Optional[Path]:
        """
        Get a build-ready kernel tree for a release.

        Args:
            version: Kernel release

        Returns:
            Path to the tree, or None if the release cannot be provisioned
        """
        if version.infinite:
            return None

        path = self.tree_path(version)
        if self.is_ready(version):
            return path

        # Report an unavailable release only once per run
        if version.canonical in self._unavailable:
            return None

        logger.info(f"Provisioning kernel {version} into {path}")
        safe_remove_dir(path)
        try:
            self._fetch(version, path)
            self._prepare(version, path)
        except ProvisionError as e:
            logger.warning(f"Kernel {version} unavailable: {e}")
            self._unavailable.add(version.canonical)
            safe_remove_dir(path)
            return None

        (path / READY_MARKER).write_text(f"{version}\n")
        logger.info(f"Kernel {version} ready")
        return path

    def _fetch(self, version: KernelVersion, dest: Path) -> None:
        raise NotImplementedError

    def _prepare(self, version: KernelVersion, path: Path) -> None:
        """Run the configured preparation commands in a fresh tree."""
        for cmd in self.config.prepare_commands:
            logger.debug(f"  [{version}] {' '.join(cmd)}")
            returncode, _, stderr = run_command(list(cmd), cwd=path)
            if returncode != 0:
                raise ProvisionError(f"'{' '.join(cmd)}' failed: {stderr.strip()[-500:]}")


class GitTreeProvisioner(KernelTreeProvisioner):
    """Export upstream release tags from the reference repository."""

    def __init__(self, config: Optional[PatchConfig] = None, repo: Optional[ReferenceRepository] = None):
        super().__init__(config)
        self.repo = repo or ReferenceRepository(self.config.linux_repo, self.config.branch_prefix)

    def _fetch(self, version: KernelVersion, dest: Path) -> None:
        tag = version.tag
        if not self.repo.has_ref(tag):
            raise ProvisionError(f"no tag {tag} in {self.repo.path}")
        try:
            self.repo.archive(tag, dest)
        except RepositoryError as e:
            raise ProvisionError(str(e)) from e


class TarballProvisioner(KernelTreeProvisioner):
    """Download release tarballs from kernel.org."""

    def tarball_url(self, version: KernelVersion) -> str:
        if version.major == 2:
            series = f"v{version.major}.{version.minor}"
        else:
            series = f"v{version.major}.x"
        return f"{self.config.kernel_org_url}/{series}/linux-{version}.tar.xz"

    def _fetch(self, version: KernelVersion, dest: Path) -> None:
        url = self.tarball_url(version)
        with scratch_dir(f"linux-{version.canonical}-", root=self.config.tmp_dir) as tmp:
            tarball = tmp / f"linux-{version}.tar.xz"
            if not download_file(url, tarball, timeout=self.config.network_timeout):
                raise ProvisionError(f"download failed: {url}")

            try:
                with tarfile.open(tarball, mode="r:xz") as tar:
                    tar.extractall(tmp / "src")
            except (tarfile.TarError, EOFError) as e:
                raise ProvisionError(f"failed to extract {tarball.name}: {e}") from e

            # Tarballs contain a single linux-X.Y.Z directory
            extracted = [d for d in (tmp / "src").iterdir() if d.is_dir()]
            source = extracted[0] if len(extracted) == 1 else tmp / "src"
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(dest))


def create_provisioner(
    config: Optional[PatchConfig] = None,
    repo: Optional[ReferenceRepository] = None,
) -> KernelTreeProvisioner:
    """Create the provisioner selected by the configuration."""
    config = config or DEFAULT_CONFIG
    if config.kernel_source == KernelSource.KERNEL_ORG:
        return TarballProvisioner(config)
    return GitTreeProvisioner(config, repo)
