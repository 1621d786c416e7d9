"""
Driver-isolated builds of the netmap sources against a kernel tree.
"""

import re
import time
from pathlib import Path
from typing import List, Optional

from nmpatches.common import format_duration, logger, run_command
from nmpatches.config import DEFAULT_CONFIG, PatchConfig, get_descriptor
from nmpatches.models import BuildVerdict, KernelVersion, Patch


WARNING_RE = re.compile(r"\bwarning:", re.IGNORECASE)


class BuildError(Exception):
    """Exception raised for build setup failures."""
    pass


class DriverBuilder:
    """Build netmap with a single patched driver enabled."""

    def __init__(self, config: Optional[PatchConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def install_patch(self, source_tree: Path, patch: Patch) -> Path:
        """
        Make ``patch`` the only patch available for its driver.

        Args:
            source_tree: Exported netmap source tree
            patch: Patch to install

        Returns:
            Path of the installed patch file
        """
        patches_dir = source_tree / self.config.patches_subdir
        patches_dir.mkdir(parents=True, exist_ok=True)

        # Any version of the driver: kind--name--... or kind--name:version--...
        prefix = f"{patch.driver.kind.value}--{patch.driver.name}"
        for existing in patches_dir.iterdir():
            if existing.is_file() and existing.name.startswith((f"{prefix}--", f"{prefix}:")):
                existing.unlink()

        dest = patches_dir / patch.name
        dest.write_bytes(patch.content)
        return dest

    def build_commands(self, source_tree: Path, kernel_tree: Path, patch: Patch) -> List[List[str]]:
        """Commands that configure and build only the patch's driver."""
        descriptor = get_descriptor(patch.driver)
        configure = [
            str(source_tree / self.config.configure_script),
            f"--kernel-dir={kernel_tree}",
            f"--drivers={patch.driver.slug}",
        ]
        configure.extend(descriptor.configure_args)
        return [configure, ["make", f"-j{self.config.jobs}"]]

    def build(
        self,
        source_tree: Path,
        kernel_tree: Path,
        patch: Patch,
        version: KernelVersion,
        log_file: Optional[Path] = None,
    ) -> BuildVerdict:
        """
        Apply and compile a patch for one kernel release.

        Args:
            source_tree: Fresh netmap source tree
            kernel_tree: Prepared kernel tree for ``version``
            patch: Patch under test
            version: Kernel release being built
            log_file: Where to write the combined build output

        Returns:
            BuildVerdict with outcome and log

        Raises:
            BuildError: if the source tree has no configure script
        """
        configure = source_tree / self.config.configure_script
        if not configure.exists():
            raise BuildError(f"Configure script not found: {configure}")

        self.install_patch(source_tree, patch)
        build_dir = configure.parent

        logger.info(f"Building {patch.driver.slug} against {version} (-j{self.config.jobs})")
        start_time = time.time()
        log_parts = []
        ok = True

        for cmd in self.build_commands(source_tree, kernel_tree, patch):
            log_parts.append(f"$ {' '.join(cmd)}\n")
            returncode, stdout, stderr = run_command(
                cmd,
                cwd=build_dir,
                timeout=self.config.build_timeout,
            )
            log_parts.append(stdout)
            log_parts.append(stderr)
            if returncode != 0:
                log_parts.append(f"exit code {returncode}\n")
                ok = False
                break

        log = "".join(log_parts)
        warned = bool(WARNING_RE.search(log))
        duration = int(time.time() - start_time)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(log)

        if ok:
            logger.info(f"  {version}: build {'with warnings ' if warned else ''}ok in {format_duration(duration)}")
        else:
            logger.error(f"  {version}: build failed after {format_duration(duration)}")

        return BuildVerdict(ok=ok, warned=warned, log=log)
