"""
Range algebra over patches: the extension test, greedy minimization and
extension of the last range to infinity.
"""

from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from nmpatches.common import apply_patch, copy_tree, diff_trees, logger, scratch_dir
from nmpatches.config import DEFAULT_CONFIG, PatchConfig
from nmpatches.drivers import DriverLocator
from nmpatches.extract import PatchExtractor
from nmpatches.kernel_tree import ProvisionError
from nmpatches.models import INFINITY, DriverKey, DriverKind, KernelVersion, MinimizeReport, Patch, PatchRange
from nmpatches.repository import RepositoryError
from nmpatches.storage import PatchSet, PatchStore


# (patch content, directory) -> (applied, output)
Applier = Callable[[bytes, Path], Tuple[bool, str]]

# (patch, version) -> whether the patch also holds at version
ExtendTest = Callable[[Patch, KernelVersion], bool]


class RangeExtender:
    """Decide whether a patch still reproduces the reference branch one release later.

    Applying cleanly is not enough: the patched tree has to match the tree
    obtained with that release's own extracted patch. The comparison ignores
    whitespace inside lines, so a change that only differs in whitespace
    (including inside string literals) is accepted.
    """

    def __init__(
        self,
        locator: DriverLocator,
        extractor: PatchExtractor,
        applier: Applier = apply_patch,
        config: Optional[PatchConfig] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.locator = locator
        self.extractor = extractor
        self.applier = applier

    def extend(self, patch: Patch, version: KernelVersion) -> bool:
        """
        Test whether ``patch`` is also valid for ``version``.

        Args:
            patch: Patch valid over ``[a, b)``
            version: Must be ``b``, the release right after the range

        Returns:
            True if the patch applies to ``version`` and reproduces its
            reference tree
        """
        if version != patch.range.end:
            raise ValueError(f"Cannot extend {patch.name} to {version}: range ends at {patch.range.end}")

        driver = patch.driver
        if driver.kind != DriverKind.VANILLA:
            logger.debug(f"No ground truth for {driver}, not extending {patch.name}")
            return False

        try:
            return self._check(patch, driver, version)
        except (OSError, RepositoryError, ProvisionError) as e:
            logger.warning(f"Extension of {patch.name} to {version} failed: {e}")
            return False

    def _check(self, patch: Patch, driver: DriverKey, version: KernelVersion) -> bool:
        pristine = self.locator.source_dir(driver, version)
        if pristine is None:
            logger.info(f"{patch.name}: {driver.name} not found in {version}")
            return False

        with scratch_dir(
            f"extend-{driver.name}-{version.canonical}-",
            root=self.config.tmp_dir,
            keep=self.config.keep_tmp,
        ) as tmp:
            candidate = copy_tree(pristine, tmp / "candidate")
            reference = copy_tree(pristine, tmp / "reference")

            applied, output = self.applier(patch.content, candidate)
            if not applied:
                logger.info(f"{patch.name} does not apply to {version}")
                logger.debug(output)
                return False

            truth = self.extractor.extract(driver, version, prefer_cached=True)
            if truth is not None:
                applied, output = self.applier(truth.content, reference)
                if not applied:
                    logger.warning(f"Reference patch {truth.name} does not apply to its own tree: {output}")
                    return False

            differing = diff_trees(candidate, reference)
            if differing:
                logger.info(f"{patch.name} diverges from reference at {version}: {', '.join(differing[:5])}")
                return False

        logger.info(f"{patch.name} extends to {version}")
        return True


def minimize_patches(patches: Sequence[Patch], extend: ExtendTest) -> Tuple[List[Patch], int]:
    """
    Greedily merge adjacent patches into maximal contiguous ranges.

    Patches are scanned in order of their start. A patch is absorbed into the
    current one when it starts exactly where the current range ends and the
    current patch extends to that release; content is always the earlier
    patch's. There is no backtracking.

    Args:
        patches: Patches of a single driver
        extend: Extension test

    Returns:
        Tuple of (merged patches, number of merges)
    """
    ordered = sorted(patches, key=lambda p: p.range.start)
    if not ordered:
        return [], 0

    result = []
    merges = 0
    pivot = ordered[0]
    end = pivot.range.end

    for candidate in ordered[1:]:
        if end == candidate.range.start and extend(pivot.with_end(end), candidate.range.start):
            end = candidate.range.end
            merges += 1
            continue
        result.append(pivot.with_end(end))
        pivot = candidate
        end = candidate.range.end

    result.append(pivot.with_end(end))
    return result, merges


class RangeMinimizer:
    """Turn the pending single-version patches of a driver into final patches."""

    def __init__(self, store: PatchStore, extend: ExtendTest, source_commit: str):
        self.store = store
        self.extend = extend
        self.source_commit = source_commit

    def minimize(self, driver: DriverKey) -> MinimizeReport:
        """
        Replace the driver's final patches with the minimized pending set.

        A driver without pending patches is left untouched.
        """
        report = MinimizeReport(driver=driver.slug)
        patches = self.store.pending.patches(self.source_commit, driver)
        report.inputs = len(patches)
        if not patches:
            logger.info(f"{driver.name}: nothing to minimize")
            return report

        merged, report.merges = minimize_patches(patches, self.extend)

        self.store.final.clear(driver)
        for patch in merged:
            self.store.final.add(patch)
            report.outputs.append(patch.name)

        logger.info(f"{driver.name}: {report.inputs} patch(es) minimized to {len(merged)}")
        return report


def extend_to_infinity(final: PatchSet, driver: DriverKey, version: KernelVersion) -> Optional[str]:
    """
    Let the final patch ending at ``version`` cover all later releases.

    Only the end of the range changes; start and content stay as they are.

    Returns:
        New patch name, or None if no final patch ends at ``version``
    """
    patch_range = final.find_ending_at(driver, version)
    if patch_range is None:
        logger.debug(f"{driver.name}: no final patch ends at {version}")
        return None

    new_name = PatchRange(driver=driver, start=patch_range.start, end=INFINITY).name
    final.rename(patch_range.name, new_name)
    logger.info(f"Renamed {patch_range.name} to {new_name}")
    return new_name
