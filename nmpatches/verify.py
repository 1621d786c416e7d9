"""
Build verification of patches with a content-addressed build cache.
"""

from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from nmpatches.build import BuildError, DriverBuilder
from nmpatches.common import logger, scratch_dir
from nmpatches.config import DEFAULT_CONFIG, PatchConfig
from nmpatches.kernel_tree import KernelTreeProvisioner
from nmpatches.models import (
    BuildStatus,
    BuildVerdict,
    CacheEntry,
    KernelVersion,
    Patch,
    VerificationResult,
)
from nmpatches.repository import RepositoryError, SourceRepository
from nmpatches.storage import Collection


class BuildCache:
    """Memo of build verdicts.

    Entries are addressed by version, driver, patch content and source
    commit, so verdicts for earlier contents of the same driver stay
    available when that content comes back.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    @staticmethod
    def key(version: KernelVersion, patch: Patch) -> str:
        driver = patch.driver
        return (
            f"{version.canonical}--{driver.kind.value}--{driver.slug}"
            f"--{patch.content_hash[:16]}--{patch.source_commit[:12]}.json"
        )

    def get(self, version: KernelVersion, patch: Patch) -> Optional[CacheEntry]:
        """Read the entry stored under the key of ``patch``."""
        data = self.collection.read(self.key(version, patch))
        if data is None:
            return None
        try:
            return CacheEntry.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt cache entry {self.key(version, patch)}: {e}")
            return None

    def lookup(self, version: KernelVersion, patch: Patch) -> Optional[CacheEntry]:
        """Get the entry for this exact patch content and commit, if any."""
        entry = self.get(version, patch)
        if entry is None:
            return None
        if not entry.matches(patch):
            logger.debug(f"Cache key collision for {patch.driver.slug} at {version}")
            return None
        return entry

    def store(self, version: KernelVersion, patch: Patch, verdict: BuildVerdict) -> CacheEntry:
        entry = CacheEntry.create(version, patch, verdict)
        self.collection.write(self.key(version, patch), entry.model_dump_json().encode("utf-8"))
        return entry

    def clear(self) -> None:
        self.collection.clear()

    def __len__(self) -> int:
        return len(self.collection)


class BuildVerifier:
    """Build a patch for every release in its range."""

    def __init__(
        self,
        provisioner: KernelTreeProvisioner,
        builder: DriverBuilder,
        source: SourceRepository,
        cache: BuildCache,
        config: Optional[PatchConfig] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.provisioner = provisioner
        self.builder = builder
        self.source = source
        self.cache = cache

    def verify(self, patch: Patch) -> VerificationResult:
        """
        Verify a patch over its whole range.

        Releases are checked in increasing order and the first failure stops
        the run. A release that cannot be provisioned ends verification
        successfully when the range is open-ended, and fails it otherwise.

        Args:
            patch: Patch to verify

        Returns:
            VerificationResult with overall status and per-release verdicts
        """
        result = VerificationResult(patch_name=patch.name)
        logger.info(f"Verifying {patch.name}")

        for version in patch.range.versions():
            entry = self.cache.lookup(version, patch)
            if entry is not None:
                verdict = entry.verdict
                result.cache_hits += 1
                logger.debug(f"  {version}: cached {verdict.status.value}")
            else:
                kernel_tree = self.provisioner.provision(version)
                if kernel_tree is None:
                    if patch.range.end.infinite:
                        logger.info(f"  {version}: no kernel sources, assuming later releases work")
                        break
                    result.status = BuildStatus.FAILED
                    result.failed_version = str(version)
                    result.message = f"kernel {version} cannot be provisioned"
                    logger.error(f"{patch.name}: {result.message}")
                    return result
                verdict = self._build(patch, version, kernel_tree)
                result.builds += 1

            result.verdicts[str(version)] = verdict
            if not verdict.ok:
                result.status = BuildStatus.FAILED
                result.failed_version = str(version)
                result.message = f"build failed for kernel {version}"
                logger.error(f"{patch.name}: {result.message}")
                return result
            if verdict.warned:
                result.status = BuildStatus.WARNING

        if result.status == BuildStatus.WARNING:
            logger.warning(f"{patch.name}: built with warnings")
        else:
            logger.info(f"{patch.name}: ok")
        return result

    def _build(self, patch: Patch, version: KernelVersion, kernel_tree: Path) -> BuildVerdict:
        log_file = self.config.log_dir / patch.driver.slug / f"{version.canonical}.log"
        with scratch_dir(
            f"build-{patch.driver.name}-{version.canonical}-",
            root=self.config.tmp_dir,
            keep=self.config.keep_tmp,
        ) as tmp:
            try:
                source_tree = self.source.export(patch.source_commit, tmp / "src")
            except RepositoryError as e:
                logger.error(f"Cannot export sources at {patch.source_commit}: {e}")
                return BuildVerdict(ok=False, log=str(e))

            try:
                verdict = self.builder.build(source_tree, kernel_tree, patch, version, log_file)
            except BuildError as e:
                logger.error(f"  {version}: {e}")
                verdict = BuildVerdict(ok=False, log=str(e))

        self.cache.store(version, patch, verdict)
        return verdict
