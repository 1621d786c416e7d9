"""
Configuration and driver descriptor tables for the netmap patch manager.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from nmpatches.models import DriverKey, DriverKind


class KernelSource(str, Enum):
    """Where pristine kernel trees are provisioned from."""
    GIT = "git"
    KERNEL_ORG = "kernel.org"


@dataclass(frozen=True)
class DriverDescriptor:
    """Per-driver lookup and build settings."""
    name: str
    kind: DriverKind = DriverKind.VANILLA
    files: Tuple[str, ...] = ()
    configure_args: Tuple[str, ...] = ()

    @property
    def source_files(self) -> Tuple[str, ...]:
        """File names identifying the driver directory in a kernel tree."""
        return self.files or (f"{self.name}.c",)

    @property
    def key(self) -> DriverKey:
        return DriverKey(kind=self.kind, name=self.name)


# Drivers with netmap support, keyed by name
DRIVERS: Dict[str, DriverDescriptor] = {
    "e1000": DriverDescriptor(name="e1000", files=("e1000_main.c",)),
    "e1000e": DriverDescriptor(name="e1000e", files=("netdev.c",)),
    "igb": DriverDescriptor(name="igb", files=("igb_main.c",)),
    "ixgbe": DriverDescriptor(name="ixgbe", files=("ixgbe_main.c",)),
    "ixgbevf": DriverDescriptor(name="ixgbevf", files=("ixgbevf_main.c",)),
    "i40e": DriverDescriptor(name="i40e", files=("i40e_main.c",)),
    "r8169": DriverDescriptor(name="r8169", files=("r8169.c", "r8169_main.c")),
    "forcedeth": DriverDescriptor(name="forcedeth"),
    "virtio_net": DriverDescriptor(name="virtio_net"),
    "veth": DriverDescriptor(name="veth"),
    "vmxnet3": DriverDescriptor(name="vmxnet3", files=("vmxnet3_drv.c",)),
}

SUPPORTED_DRIVERS = list(DRIVERS.keys())


@dataclass(frozen=True)
class PatchConfig:
    """Configuration for a patch management run.

    Instances are immutable; use ``dataclasses.replace`` to derive variants.
    """

    # Root of the patch collections (pending, rejected, final, cache)
    work_dir: Path = field(default_factory=lambda: Path("/var/lib/netmap-patches"))

    # Provisioned kernel trees, one linux-<canonical> directory per release
    kernel_dir: Path = field(default_factory=lambda: Path("/var/cache/netmap-patches/kernels"))

    # Linux repository with upstream tags and reference branches
    linux_repo: Path = field(default_factory=lambda: Path("/usr/src/linux-netmap"))

    # Netmap source repository that is built during verification
    source_dir: Path = field(default_factory=lambda: Path("/usr/src/netmap"))

    # Reference branches are named <branch_prefix><version>
    branch_prefix: str = "netmap-"

    # Patches directory and configure script inside the source tree
    patches_subdir: str = "LINUX/final-patches"
    configure_script: str = "LINUX/configure"

    # Kernel tree provisioning
    kernel_source: KernelSource = KernelSource.GIT
    kernel_org_url: str = "https://cdn.kernel.org/pub/linux/kernel"
    prepare_commands: Tuple[Tuple[str, ...], ...] = (
        ("make", "defconfig"),
        ("make", "modules_prepare"),
    )

    # Build settings
    jobs: int = 1
    build_timeout: Optional[int] = None
    network_timeout: int = 60

    # Scratch directories
    tmp_dir: Optional[Path] = None
    keep_tmp: bool = False

    drivers: Tuple[str, ...] = tuple(SUPPORTED_DRIVERS)

    @classmethod
    def from_env(cls) -> "PatchConfig":
        """Create configuration from environment variables."""
        defaults = cls()
        tmp_dir = os.getenv("NMPATCHES_TMP_DIR")
        return cls(
            work_dir=Path(os.getenv("NMPATCHES_WORK_DIR", str(defaults.work_dir))),
            kernel_dir=Path(os.getenv("NMPATCHES_KERNEL_DIR", str(defaults.kernel_dir))),
            linux_repo=Path(os.getenv("NMPATCHES_LINUX_REPO", str(defaults.linux_repo))),
            source_dir=Path(os.getenv("NMPATCHES_SOURCE_DIR", str(defaults.source_dir))),
            branch_prefix=os.getenv("NMPATCHES_BRANCH_PREFIX", defaults.branch_prefix),
            kernel_source=KernelSource(os.getenv("NMPATCHES_KERNEL_SOURCE", defaults.kernel_source.value)),
            jobs=int(os.getenv("NMPATCHES_JOBS", str(defaults.jobs))),
            keep_tmp=os.getenv("NMPATCHES_KEEP_TMP", "0").lower() in ("1", "yes", "true"),
            tmp_dir=Path(tmp_dir) if tmp_dir else None,
        )

    @property
    def pending_dir(self) -> Path:
        return self.work_dir / "pending"

    @property
    def rejected_dir(self) -> Path:
        return self.work_dir / "rejected"

    @property
    def final_dir(self) -> Path:
        return self.work_dir / "final"

    @property
    def cache_dir(self) -> Path:
        return self.work_dir / "cache"

    @property
    def log_dir(self) -> Path:
        return self.work_dir / "logs"

    def ensure_dirs(self) -> None:
        """Create the working directories."""
        for dir_path in [
            self.pending_dir,
            self.rejected_dir,
            self.final_dir,
            self.cache_dir,
            self.log_dir,
            self.kernel_dir,
        ]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def driver_keys(self) -> List[DriverKey]:
        """Keys of the drivers handled by batch runs."""
        keys = []
        for name in self.drivers:
            descriptor = DRIVERS.get(name)
            keys.append(descriptor.key if descriptor else DriverKey(name=name))
        return keys


# Default global configuration instance
DEFAULT_CONFIG = PatchConfig()


def get_driver(name: str) -> Optional[DriverDescriptor]:
    """Get the descriptor for a driver name (``name`` or ``name:version``)."""
    return DRIVERS.get(name.partition(":")[0])


def get_descriptor(driver: DriverKey) -> DriverDescriptor:
    """Get a descriptor for a driver key, falling back to defaults for unknown drivers."""
    descriptor = get_driver(driver.name)
    if descriptor is None:
        return DriverDescriptor(name=driver.name, kind=driver.kind)
    return descriptor
