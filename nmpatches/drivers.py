"""
Locating driver sources inside provisioned kernel trees.
"""

from pathlib import Path
from typing import Dict, Optional, Tuple

from nmpatches.common import logger
from nmpatches.config import get_descriptor
from nmpatches.kernel_tree import KernelTreeProvisioner
from nmpatches.models import DriverKey, KernelVersion


# Network driver subtree searched for driver sources
NET_DRIVERS_DIR = "drivers/net"


class DriverLocator:
    """Find a driver's directory in the kernel tree of a given release.

    Results, including misses, are memoised per (version, driver) since a
    provisioned tree never changes.
    """

    def __init__(self, provisioner: KernelTreeProvisioner):
        self.provisioner = provisioner
        self._cache: Dict[Tuple[str, str], Optional[str]] = {}

    def locate(self, driver: DriverKey, version: KernelVersion) -> Optional[str]:
        """
        Find the driver's directory relative to the tree root.

        Args:
            driver: Driver to look for
            version: Kernel release

        Returns:
            Relative directory (e.g. ``drivers/net/ethernet/intel/e1000e``),
            or None if the release is unavailable or lacks the driver
        """
        key = (version.canonical, driver.name)
        if key in self._cache:
            return self._cache[key]

        tree = self.provisioner.provision(version)
        result = self._search(tree, driver) if tree else None
        if result is None:
            logger.debug(f"Driver {driver.name} not found in kernel {version}")
        self._cache[key] = result
        return result

    def _search(self, tree: Path, driver: DriverKey) -> Optional[str]:
        root = tree / NET_DRIVERS_DIR
        if not root.is_dir():
            return None

        for filename in get_descriptor(driver).source_files:
            matches = sorted(root.rglob(filename))
            if matches:
                if len(matches) > 1:
                    logger.debug(f"Multiple matches for {filename}, using {matches[0]}")
                return matches[0].parent.relative_to(tree).as_posix()
        return None

    def source_dir(self, driver: DriverKey, version: KernelVersion) -> Optional[Path]:
        """Absolute path of the pristine driver directory, if any."""
        rel = self.locate(driver, version)
        if rel is None:
            return None
        return self.provisioner.tree_path(version) / rel
