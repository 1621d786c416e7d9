"""Shared fixtures and fake collaborators."""

from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from nmpatches.build import DriverBuilder
from nmpatches.config import PatchConfig
from nmpatches.kernel_tree import KernelTreeProvisioner, ProvisionError
from nmpatches.models import BuildVerdict, KernelVersion, Patch
from nmpatches.repository import ReferenceRepository, SourceRepository


SOURCE_COMMIT = "3f2a9c1d0e4b5a6978877665544332211ffeeddc"

E1000E_DIR = "drivers/net/ethernet/intel/e1000e"


class FakeProvisioner(KernelTreeProvisioner):
    """Provision kernel trees from an in-memory table of files."""

    def __init__(self, config: PatchConfig, trees: Dict[str, Dict[str, str]]):
        super().__init__(config)
        self.trees = trees
        self.fetches: List[str] = []

    def _fetch(self, version: KernelVersion, dest: Path) -> None:
        files = self.trees.get(str(version))
        if files is None:
            raise ProvisionError(f"no sources for {version}")
        self.fetches.append(str(version))
        for rel, text in files.items():
            path = dest / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)


class FakeReferenceRepository(ReferenceRepository):
    """Reference repository serving canned per-version diffs."""

    def __init__(self, diffs: Dict[str, str], branch_prefix: str = "netmap-"):
        super().__init__(Path("/nonexistent"), branch_prefix)
        self.diffs = diffs
        self.calls: List[Tuple[str, str, str]] = []

    def diff(self, base: str, target: str, path: str) -> str:
        self.calls.append((base, target, path))
        return self.diffs.get(target[len(self.branch_prefix):], "")


class FakeSourceRepository(SourceRepository):
    """Source repository exporting an empty tree."""

    def __init__(self, commit: str = SOURCE_COMMIT):
        super().__init__(Path("/nonexistent"))
        self.commit = commit
        self.exports: List[str] = []

    def head_commit(self) -> str:
        return self.commit

    def export(self, commit: str, dest: Path) -> Path:
        self.exports.append(commit)
        dest.mkdir(parents=True, exist_ok=True)
        return dest


class FakeBuilder(DriverBuilder):
    """Builder returning scripted verdicts and counting invocations."""

    def __init__(self, config: Optional[PatchConfig] = None):
        super().__init__(config)
        self.outcomes: Dict[str, BuildVerdict] = {}
        self.calls: List[Tuple[str, str]] = []
        self.explode_for: Set[str] = set()

    def build(self, source_tree, kernel_tree, patch: Patch, version: KernelVersion, log_file=None) -> BuildVerdict:
        if patch.driver.name in self.explode_for:
            raise OSError(f"toolchain missing for {patch.driver.name}")
        self.calls.append((patch.name, str(version)))
        return self.outcomes.get(str(version), BuildVerdict(ok=True, log="ok"))


def replace_applier(content: bytes, target: Path) -> Tuple[bool, str]:
    """Apply a toy patch format: ``<file>\\n<new content>``, or fail on ``FAIL``."""
    text = content.decode()
    if text.startswith("FAIL"):
        return False, "Hunk #1 FAILED"
    rel, _, body = text.partition("\n")
    (target / rel).write_text(body)
    return True, ""


def toy_patch(file: str, body: str) -> str:
    """Build a diff in the toy format understood by ``replace_applier``."""
    return f"{file}\n{body}"


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return PatchConfig(
        work_dir=tmp_path / "work",
        kernel_dir=tmp_path / "kernels",
        linux_repo=tmp_path / "linux",
        source_dir=tmp_path / "netmap",
        prepare_commands=(),
        tmp_dir=tmp_path / "tmp",
        jobs=4,
    )


def e1000e_tree(netdev: str = "int netdev;\n") -> Dict[str, str]:
    """Minimal kernel tree containing the e1000e driver."""
    return {
        "Makefile": "VERSION = 2\n",
        f"{E1000E_DIR}/netdev.c": netdev,
        f"{E1000E_DIR}/Makefile": "obj-m += e1000e.o\n",
        "drivers/net/veth.c": "int veth;\n",
    }
