"""
Named patch collections.

Patches are stored as ``identifier -> diff`` entries; the identifier encodes
the driver and range, so renaming an entry is how a range is rewritten.
"""

from pathlib import Path
from typing import Dict, Iterator, List, Optional

from nmpatches.common import logger
from nmpatches.config import DEFAULT_CONFIG, PatchConfig
from nmpatches.models import DriverKey, InvalidPatchNameError, Patch, PatchRange


class Collection:
    """Minimal key/value store interface."""

    name: str = ""

    def keys(self) -> List[str]:
        raise NotImplementedError

    def read(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def write(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def __contains__(self, key: str) -> bool:
        return key in self.keys()

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self.keys())

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)


class MemoryCollection(Collection):
    """In-memory collection."""

    def __init__(self, name: str = ""):
        self.name = name
        self._data: Dict[str, bytes] = {}

    def keys(self) -> List[str]:
        return sorted(self._data)

    def read(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def write(self, key: str, data: bytes) -> None:
        self._data[key] = data

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class DirectoryCollection(Collection):
    """Collection backed by one file per entry in a directory."""

    def __init__(self, path: Path, name: str = ""):
        self.path = Path(path)
        self.name = name or self.path.name

    def _file(self, key: str) -> Path:
        if "/" in key or key in ("", ".", ".."):
            raise ValueError(f"Invalid collection key: {key!r}")
        return self.path / key

    def keys(self) -> List[str]:
        if not self.path.is_dir():
            return []
        return sorted(p.name for p in self.path.iterdir() if p.is_file() and not p.name.startswith("."))

    def read(self, key: str) -> Optional[bytes]:
        path = self._file(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        path = self._file(key)
        tmp = path.with_name(f".{key}.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    def delete(self, key: str) -> None:
        path = self._file(key)
        if path.exists():
            path.unlink()


class PatchSet:
    """Typed view of a collection holding patches."""

    def __init__(self, collection: Collection):
        self.collection = collection

    @property
    def name(self) -> str:
        return self.collection.name

    def names(self, driver: Optional[DriverKey] = None) -> List[str]:
        return [patch_range.name for patch_range in self.ranges(driver)]

    def ranges(self, driver: Optional[DriverKey] = None) -> List[PatchRange]:
        """Ranges of the stored patches, sorted by driver and start."""
        ranges = []
        for key in self.collection.keys():
            try:
                patch_range = PatchRange.from_name(key)
            except InvalidPatchNameError:
                logger.warning(f"Ignoring unrecognised entry '{key}' in {self.name}")
                continue
            if driver is None or patch_range.driver == driver:
                ranges.append(patch_range)
        return sorted(ranges, key=lambda r: (r.driver.kind.value, r.driver.slug, r.start, r.end))

    def patches(self, source_commit: str, driver: Optional[DriverKey] = None) -> List[Patch]:
        """Load the stored patches, stamping them with a source commit."""
        result = []
        for patch_range in self.ranges(driver):
            patch = self.get(patch_range.name, source_commit)
            if patch is not None:
                result.append(patch)
        return result

    def get(self, name: str, source_commit: str) -> Optional[Patch]:
        content = self.collection.read(name)
        if content is None:
            return None
        return Patch(range=PatchRange.from_name(name), content=content, source_commit=source_commit)

    def find_ending_at(self, driver: DriverKey, version) -> Optional[PatchRange]:
        for patch_range in self.ranges(driver):
            if patch_range.end == version:
                return patch_range
        return None

    def find_starting_at(self, driver: DriverKey, version) -> Optional[PatchRange]:
        for patch_range in self.ranges(driver):
            if patch_range.start == version:
                return patch_range
        return None

    def add(self, patch: Patch) -> None:
        self.collection.write(patch.name, patch.content)

    def remove(self, name: str) -> None:
        self.collection.delete(name)

    def rename(self, old: str, new: str) -> None:
        content = self.collection.read(old)
        if content is None:
            raise KeyError(old)
        self.collection.write(new, content)
        if new != old:
            self.collection.delete(old)

    def clear(self, driver: Optional[DriverKey] = None) -> None:
        for name in self.names(driver):
            self.collection.delete(name)

    def __contains__(self, name: str) -> bool:
        return name in self.collection

    def __len__(self) -> int:
        return len(self.ranges())


class PatchStore:
    """The pending, rejected and final patch collections plus the build cache."""

    def __init__(
        self,
        pending: Collection,
        rejected: Collection,
        final: Collection,
        cache: Collection,
    ):
        self.pending = PatchSet(pending)
        self.rejected = PatchSet(rejected)
        self.final = PatchSet(final)
        self.cache = cache

    @classmethod
    def from_config(cls, config: Optional[PatchConfig] = None) -> "PatchStore":
        """Directory-backed store under the configured work directory."""
        config = config or DEFAULT_CONFIG
        return cls(
            pending=DirectoryCollection(config.pending_dir, "pending"),
            rejected=DirectoryCollection(config.rejected_dir, "rejected"),
            final=DirectoryCollection(config.final_dir, "final"),
            cache=DirectoryCollection(config.cache_dir, "cache"),
        )

    @classmethod
    def in_memory(cls) -> "PatchStore":
        return cls(
            pending=MemoryCollection("pending"),
            rejected=MemoryCollection("rejected"),
            final=MemoryCollection("final"),
            cache=MemoryCollection("cache"),
        )

    def collection(self, name: str) -> PatchSet:
        """Get a patch collection by name."""
        sets = {"pending": self.pending, "rejected": self.rejected, "final": self.final}
        if name not in sets:
            raise KeyError(f"Unknown collection: {name}")
        return sets[name]

    def reject(self, patch: Patch, source: PatchSet) -> None:
        """Move a patch that failed verification out of ``source``."""
        self.rejected.add(patch)
        source.remove(patch.name)
        logger.warning(f"Moved {patch.name} from {source.name} to {self.rejected.name}")
