"""
Netmap patches - range minimization and build verification of netmap driver
patches across Linux kernel releases.

This package provides tools for:
- Extracting per-version driver patches from a reference Linux repository
- Testing whether a patch still holds for the next kernel release
- Merging single-version patches into maximal version ranges
- Build-verifying patches against every covered kernel, with a build cache
"""

__version__ = "1.0.0"
__author__ = "Netmap Team"

from nmpatches.config import PatchConfig, SUPPORTED_DRIVERS
from nmpatches.models import (
    INFINITY,
    BuildStatus,
    BuildVerdict,
    DriverKey,
    DriverKind,
    KernelVersion,
    Patch,
    PatchRange,
)

__all__ = [
    "__version__",
    "PatchConfig",
    "SUPPORTED_DRIVERS",
    "INFINITY",
    "BuildStatus",
    "BuildVerdict",
    "DriverKey",
    "DriverKind",
    "KernelVersion",
    "Patch",
    "PatchRange",
]
