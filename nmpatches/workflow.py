"""
Patch workflow orchestration.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from nmpatches.build import DriverBuilder
from nmpatches.common import apply_patch, logger
from nmpatches.config import DEFAULT_CONFIG, PatchConfig, get_driver
from nmpatches.drivers import DriverLocator
from nmpatches.extract import PatchExtractor
from nmpatches.kernel_tree import KernelTreeProvisioner, ProvisionError, create_provisioner
from nmpatches.models import (
    BuildStatus,
    DriverKey,
    DriverKind,
    KernelVersion,
    MinimizeReport,
    Patch,
    VerificationResult,
)
from nmpatches.ranges import Applier, RangeExtender, RangeMinimizer, extend_to_infinity
from nmpatches.repository import ReferenceRepository, RepositoryError, SourceRepository
from nmpatches.storage import PatchStore
from nmpatches.verify import BuildCache, BuildVerifier


@dataclass
class DriverReport:
    """Outcome of the full workflow for one driver."""
    driver: str
    extracted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    final: List[str] = field(default_factory=list)
    infinity: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def resolve_driver(name: str, kind: Optional[DriverKind] = None) -> DriverKey:
    """Build a driver key from a CLI name (``name`` or ``name:version``)."""
    if kind is None:
        descriptor = get_driver(name)
        kind = descriptor.kind if descriptor else DriverKind.VANILLA
    return DriverKey.parse(name, kind)


class PatchManager:
    """Drive extraction, verification, minimization and infinity extension.

    Collaborators default to the real implementations built from the
    configuration and can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[PatchConfig] = None,
        linux_repo: Optional[ReferenceRepository] = None,
        source_repo: Optional[SourceRepository] = None,
        provisioner: Optional[KernelTreeProvisioner] = None,
        builder: Optional[DriverBuilder] = None,
        store: Optional[PatchStore] = None,
        applier: Applier = apply_patch,
    ):
        self.config = config or DEFAULT_CONFIG
        self.linux_repo = linux_repo or ReferenceRepository(self.config.linux_repo, self.config.branch_prefix)
        self.source_repo = source_repo or SourceRepository(self.config.source_dir)
        self.provisioner = provisioner or create_provisioner(self.config, self.linux_repo)
        self.builder = builder or DriverBuilder(self.config)
        self.store = store or PatchStore.from_config(self.config)
        self.applier = applier

        self.locator = DriverLocator(self.provisioner)
        self.cache = BuildCache(self.store.cache)

        self._source_commit: Optional[str] = None
        self._extractor: Optional[PatchExtractor] = None
        self._verifier: Optional[BuildVerifier] = None
        self._minimizer: Optional[RangeMinimizer] = None

    @property
    def source_commit(self) -> str:
        """Commit of the netmap sources patches are built against."""
        if self._source_commit is None:
            self._source_commit = self.source_repo.head_commit()
            logger.debug(f"Source commit: {self._source_commit}")
        return self._source_commit

    @property
    def extractor(self) -> PatchExtractor:
        if self._extractor is None:
            self._extractor = PatchExtractor(
                self.linux_repo,
                self.locator,
                self.store.pending,
                self.source_commit,
                self.config,
            )
        return self._extractor

    @property
    def verifier(self) -> BuildVerifier:
        if self._verifier is None:
            self._verifier = BuildVerifier(
                self.provisioner,
                self.builder,
                self.source_repo,
                self.cache,
                self.config,
            )
        return self._verifier

    @property
    def minimizer(self) -> RangeMinimizer:
        if self._minimizer is None:
            extender = RangeExtender(self.locator, self.extractor, self.applier, self.config)
            self._minimizer = RangeMinimizer(self.store, extender.extend, self.source_commit)
        return self._minimizer

    def extract_range(self, driver: DriverKey, start: KernelVersion, end: KernelVersion) -> List[Patch]:
        """Extract single-version patches for ``[start, end)`` into pending."""
        return self.extractor.extract_range(driver, start, end)

    def verify(self, patch: Patch) -> VerificationResult:
        return self.verifier.verify(patch)

    def check(self, collection: str = "pending", driver: Optional[DriverKey] = None) -> List[VerificationResult]:
        """
        Verify every patch in a collection.

        Failed patches are moved to the rejected collection; the remaining
        patches are still checked.

        Args:
            collection: ``pending`` or ``final``
            driver: Restrict to one driver

        Returns:
            One result per patch checked
        """
        patch_set = self.store.collection(collection)
        results = []
        for patch in patch_set.patches(self.source_commit, driver):
            result = self.verifier.verify(patch)
            if result.failed:
                self.store.reject(patch, patch_set)
            results.append(result)

        failed = sum(1 for r in results if r.failed)
        warned = sum(1 for r in results if r.status == BuildStatus.WARNING)
        logger.info(f"Checked {len(results)} patch(es) in {collection}: {failed} failed, {warned} with warnings")
        return results

    def minimize(self, driver: DriverKey) -> MinimizeReport:
        return self.minimizer.minimize(driver)

    def extend_to_infinity(self, driver: DriverKey, version: KernelVersion) -> Optional[str]:
        return extend_to_infinity(self.store.final, driver, version)

    def process(self, driver: DriverKey, start: KernelVersion, end: KernelVersion) -> DriverReport:
        """
        Run the full workflow for one driver.

        Extracts ``[start, end)``, verifies the pending patches, minimizes
        them into final patches and opens the last range to infinity.
        """
        logger.info("")
        logger.info(f"=== {driver.slug}: [{start}, {end}) ===")
        report = DriverReport(driver=driver.slug)

        report.extracted = [p.name for p in self.extract_range(driver, start, end)]

        for result in self.check("pending", driver):
            if result.failed:
                report.rejected.append(result.patch_name)
            elif result.status == BuildStatus.WARNING:
                report.warnings.append(result.patch_name)

        self.minimize(driver)
        report.infinity = self.extend_to_infinity(driver, end)
        report.final = self.store.final.names(driver)
        return report

    def process_all(
        self,
        start: KernelVersion,
        end: KernelVersion,
        drivers: Optional[List[DriverKey]] = None,
    ) -> Dict[str, DriverReport]:
        """Run the full workflow for every configured driver.

        A driver that fails is reported and the batch goes on.
        """
        reports = {}
        for driver in drivers or self.config.driver_keys():
            try:
                reports[driver.slug] = self.process(driver, start, end)
            except (RepositoryError, ProvisionError, OSError) as e:
                logger.error(f"{driver.slug}: {e}")
                reports[driver.slug] = DriverReport(driver=driver.slug, error=str(e))
        return reports

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Patch counts per collection and driver."""
        result = {}
        for name in ("pending", "rejected", "final"):
            counts: Dict[str, int] = {}
            for patch_range in self.store.collection(name).ranges():
                slug = patch_range.driver.slug
                counts[slug] = counts.get(slug, 0) + 1
            result[name] = counts
        return result

    def clear_cache(self) -> int:
        """Drop all build cache entries, returning how many there were."""
        count = len(self.cache)
        self.cache.clear()
        logger.info(f"Removed {count} cache entries")
        return count
