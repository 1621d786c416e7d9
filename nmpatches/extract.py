"""
Extraction of single-version patches from the reference repository.
"""

from typing import List, Optional

from nmpatches.common import logger
from nmpatches.config import DEFAULT_CONFIG, PatchConfig
from nmpatches.drivers import DriverLocator
from nmpatches.models import DriverKey, DriverKind, KernelVersion, Patch, PatchRange, iter_versions
from nmpatches.repository import ReferenceRepository, RepositoryError
from nmpatches.storage import PatchSet


class PatchExtractor:
    """Produce the patch a reference branch applies to one kernel release."""

    def __init__(
        self,
        repo: ReferenceRepository,
        locator: DriverLocator,
        pending: PatchSet,
        source_commit: str,
        config: Optional[PatchConfig] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.repo = repo
        self.locator = locator
        self.pending = pending
        self.source_commit = source_commit

    def extract(
        self,
        driver: DriverKey,
        version: KernelVersion,
        prefer_cached: bool = False,
    ) -> Optional[Patch]:
        """
        Extract the one-version patch for a driver.

        Args:
            driver: Vanilla driver
            version: Kernel release
            prefer_cached: Return a pending patch starting at ``version`` if present

        Returns:
            Patch covering ``[version, version.next())``, or None when the
            driver is missing or the reference branch leaves it untouched
        """
        if driver.kind != DriverKind.VANILLA:
            logger.debug(f"No reference branches for {driver}")
            return None

        if prefer_cached:
            cached = self.pending.find_starting_at(driver, version)
            if cached is not None:
                logger.debug(f"Using pending {cached.name}")
                return self.pending.get(cached.name, self.source_commit)

        path = self.locator.locate(driver, version)
        if path is None:
            return None

        branch = self.repo.reference_branch(str(version))
        try:
            diff = self.repo.diff(version.tag, branch, path)
        except RepositoryError as e:
            logger.warning(f"Cannot extract {driver.name} for {version}: {e}")
            return None

        if not diff.strip():
            logger.debug(f"No changes to {driver.name} in {branch}")
            return None

        patch_range = PatchRange(driver=driver, start=version, end=version.next())
        return Patch(
            range=patch_range,
            content=diff.encode("utf-8", errors="surrogateescape"),
            source_commit=self.source_commit,
        )

    def extract_range(
        self,
        driver: DriverKey,
        start: KernelVersion,
        end: KernelVersion,
    ) -> List[Patch]:
        """
        Extract single-version patches for every release in ``[start, end)``
        and store them as pending.

        Returns:
            The patches stored
        """
        if end.infinite:
            raise ValueError("Extraction needs a finite end version")

        extracted = []
        for version in iter_versions(start, end):
            patch = self.extract(driver, version)
            if patch is None:
                continue
            self.pending.add(patch)
            extracted.append(patch)
            logger.info(f"Extracted {patch.name}")

        logger.info(f"{driver.name}: {len(extracted)} patch(es) in [{start}, {end})")
        return extracted
