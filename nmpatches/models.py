"""
Data models for the netmap patch manager using Pydantic for validation.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class InvalidVersionError(ValueError):
    """Raised when a string cannot be parsed as a kernel version."""
    pass


class InvalidPatchNameError(ValueError):
    """Raised when a patch identifier cannot be decomposed."""
    pass


# Last minor release of each numbering series. The release after it starts
# the next major series (2.6.39 -> 3.0, 3.19 -> 4.0, ...).
SERIES_LAST_MINOR: Dict[int, int] = {
    3: 19,
    4: 20,
    5: 19,
    6: 19,
}

# Assumed length of series newer than the table
DEFAULT_LAST_MINOR = 19

# Each component is one byte of KERNEL_VERSION()
MAX_COMPONENT = 255

# Last 2.6.x release
LAST_26_PATCH = 39

INFINITY_CANONICAL = "99999"
INFINITY_ALIASES = {"inf", "infty", "infinity", INFINITY_CANONICAL}

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")
_CANONICAL_RE = re.compile(r"^[0-9a-f]{5}$")


class DriverKind(str, Enum):
    """Where a driver's sources come from."""
    VANILLA = "vanilla"
    EXTERNAL = "external"
    CUSTOM = "custom"


class BuildStatus(str, Enum):
    """Overall outcome of verifying a patch."""
    OK = "ok"
    WARNING = "warning"
    FAILED = "failed"


class KernelVersion(BaseModel):
    """Represents a kernel release with comparison and stepping support.

    The ``infinite`` flag marks the sentinel that compares greater than
    every real release.
    """
    major: int
    minor: int
    patch: int = 0
    infinite: bool = False

    @field_validator("major", "minor", "patch")
    @classmethod
    def validate_component(cls, v: int) -> int:
        """Keep each component within one byte."""
        if not 0 <= v <= MAX_COMPONENT:
            raise ValueError(f"Version component out of range: {v}")
        return v

    @classmethod
    def parse(cls, version_str: str) -> "KernelVersion":
        """
        Parse a free-form version string.

        Accepts ``2.6.32``, ``v3.8``, ``linux-4.19``, ``3.8-rc2``, the
        five digit canonical form (``20620``) and ``inf``/``infty``.

        Raises:
            InvalidVersionError: if nothing version-like is found
        """
        text = version_str.strip().lower()
        if text in INFINITY_ALIASES:
            return INFINITY
        if _CANONICAL_RE.match(text):
            return cls.from_code(int(text, 16))

        match = _VERSION_RE.search(text)
        if not match:
            raise InvalidVersionError(f"Invalid kernel version: {version_str!r}")
        components = [int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)]
        if max(components) > MAX_COMPONENT:
            raise InvalidVersionError(f"Kernel version out of range: {version_str!r}")
        major, minor, patch = components
        return cls(major=major, minor=minor, patch=patch)

    @classmethod
    def from_code(cls, code: int) -> "KernelVersion":
        """Build a version from its KERNEL_VERSION() integer encoding."""
        return cls(major=code >> 16, minor=(code >> 8) & 0xFF, patch=code & 0xFF)

    @property
    def code(self) -> int:
        """KERNEL_VERSION(major, minor, patch)."""
        return (self.major << 16) + (self.minor << 8) + self.patch

    @property
    def canonical(self) -> str:
        """Fixed-width identifier used in patch names."""
        if self.infinite:
            return INFINITY_CANONICAL
        return f"{self.code:05x}"

    @property
    def tag(self) -> str:
        """Upstream git tag for this release."""
        return f"v{self}"

    def next(self) -> "KernelVersion":
        """Return the release that follows this one."""
        if self.infinite:
            return self
        if self.major == 2:
            if self.minor == 6 and self.patch >= LAST_26_PATCH:
                return KernelVersion(major=3, minor=0)
            return KernelVersion(major=2, minor=self.minor, patch=self.patch + 1)
        last_minor = SERIES_LAST_MINOR.get(self.major, DEFAULT_LAST_MINOR)
        if self.minor >= last_minor:
            return KernelVersion(major=self.major + 1, minor=0)
        return KernelVersion(major=self.major, minor=self.minor + 1)

    def _key(self):
        if self.infinite:
            return (1, 0, 0, 0)
        return (0, self.major, self.minor, self.patch)

    def __str__(self) -> str:
        if self.infinite:
            return "inf"
        if self.major >= 3 and self.patch == 0:
            return f"{self.major}.{self.minor}"
        return f"{self.major}.{self.minor}.{self.patch}"

    def __lt__(self, other: "KernelVersion") -> bool:
        return self._key() < other._key()

    def __le__(self, other: "KernelVersion") -> bool:
        return self._key() <= other._key()

    def __gt__(self, other: "KernelVersion") -> bool:
        return self._key() > other._key()

    def __ge__(self, other: "KernelVersion") -> bool:
        return self._key() >= other._key()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KernelVersion):
            return False
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())


INFINITY = KernelVersion(major=0, minor=0, patch=0, infinite=True)


def iter_versions(start: KernelVersion, end: KernelVersion) -> Iterator[KernelVersion]:
    """Yield every release in ``[start, end)``.

    Unbounded when ``end`` is the infinity sentinel; callers stop on their own.
    """
    version = start
    while version < end:
        yield version
        version = version.next()


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings, returning -1, 0 or 1."""
    kv1 = KernelVersion.parse(v1)
    kv2 = KernelVersion.parse(v2)
    if kv1 < kv2:
        return -1
    if kv1 > kv2:
        return 1
    return 0


class DriverKey(BaseModel):
    """Identifies a patch target independently of the kernel version."""
    kind: DriverKind = DriverKind.VANILLA
    name: str
    version: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject names that would break patch identifiers."""
        if not v or "--" in v or ":" in v or "/" in v:
            raise ValueError(f"Invalid driver name: {v!r}")
        return v

    @classmethod
    def parse(cls, slug: str, kind: DriverKind = DriverKind.VANILLA) -> "DriverKey":
        """Parse ``name`` or ``name:version``."""
        name, _, version = slug.partition(":")
        return cls(kind=kind, name=name, version=version or None)

    @property
    def slug(self) -> str:
        if self.version:
            return f"{self.name}:{self.version}"
        return self.name

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.slug}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DriverKey):
            return False
        return (self.kind, self.name, self.version) == (other.kind, other.name, other.version)

    def __hash__(self) -> int:
        return hash((self.kind, self.name, self.version))


class PatchRange(BaseModel):
    """Half-open interval ``[start, end)`` of releases a patch claims to cover."""
    driver: DriverKey
    start: KernelVersion
    end: KernelVersion

    @model_validator(mode="after")
    def check_bounds(self) -> "PatchRange":
        if self.start.infinite or not self.start < self.end:
            raise ValueError(f"Empty patch range [{self.start}, {self.end})")
        return self

    @property
    def name(self) -> str:
        """Patch identifier, e.g. ``vanilla--e1000e--20620--30100``."""
        return "--".join([
            self.driver.kind.value,
            self.driver.slug,
            self.start.canonical,
            self.end.canonical,
        ])

    @classmethod
    def from_name(cls, name: str) -> "PatchRange":
        """
        Decompose a patch identifier.

        Raises:
            InvalidPatchNameError: if the identifier is malformed
        """
        parts = name.split("--")
        if len(parts) != 4:
            raise InvalidPatchNameError(f"Invalid patch name: {name!r}")
        kind, slug, start, end = parts
        try:
            return cls(
                driver=DriverKey.parse(slug, DriverKind(kind)),
                start=KernelVersion.parse(start),
                end=KernelVersion.parse(end),
            )
        except ValueError as e:
            raise InvalidPatchNameError(f"Invalid patch name {name!r}: {e}") from e

    def versions(self) -> Iterator[KernelVersion]:
        return iter_versions(self.start, self.end)

    def __contains__(self, version: KernelVersion) -> bool:
        return self.start <= version < self.end

    def __str__(self) -> str:
        return f"{self.driver} [{self.start}, {self.end})"


class Patch(BaseModel):
    """A diff together with the range it claims and the source commit it was made for."""
    range: PatchRange
    content: bytes
    source_commit: str

    @property
    def name(self) -> str:
        return self.range.name

    @property
    def driver(self) -> DriverKey:
        return self.range.driver

    @property
    def content_hash(self) -> str:
        """SHA-256 of the patch content."""
        return hashlib.sha256(self.content).hexdigest()

    def with_end(self, end: KernelVersion) -> "Patch":
        """Return a copy claiming a different end; content is untouched."""
        return Patch(
            range=PatchRange(driver=self.range.driver, start=self.range.start, end=end),
            content=self.content,
            source_commit=self.source_commit,
        )


class BuildVerdict(BaseModel):
    """Outcome of applying and compiling a patch for one kernel version."""
    ok: bool
    warned: bool = False
    log: str = ""

    @property
    def status(self) -> BuildStatus:
        if not self.ok:
            return BuildStatus.FAILED
        if self.warned:
            return BuildStatus.WARNING
        return BuildStatus.OK


class CacheEntry(BaseModel):
    """Memoised build verdict for one (version, driver) slot.

    The patch text is kept as latin-1 so arbitrary bytes survive JSON.
    """
    version: str
    driver: str
    content_hash: str
    source_commit: str
    patch_text: str
    verdict: BuildVerdict
    created: datetime = Field(default_factory=datetime.now)

    @classmethod
    def create(cls, version: KernelVersion, patch: Patch, verdict: BuildVerdict) -> "CacheEntry":
        return cls(
            version=version.canonical,
            driver=patch.driver.slug,
            content_hash=patch.content_hash,
            source_commit=patch.source_commit,
            patch_text=patch.content.decode("latin-1"),
            verdict=verdict,
        )

    @property
    def content(self) -> bytes:
        return self.patch_text.encode("latin-1")

    def matches(self, patch: Patch) -> bool:
        """Check whether this entry was recorded for exactly this patch content and commit."""
        return (
            self.content_hash == patch.content_hash
            and self.source_commit == patch.source_commit
            and self.content == patch.content
        )


@dataclass
class VerificationResult:
    """Result of verifying one patch over its whole range."""
    patch_name: str
    status: BuildStatus = BuildStatus.OK
    verdicts: Dict[str, BuildVerdict] = field(default_factory=dict)
    failed_version: Optional[str] = None
    cache_hits: int = 0
    builds: int = 0
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.status == BuildStatus.FAILED


@dataclass
class MinimizeReport:
    """Summary of a minimize pass for one driver."""
    driver: str
    inputs: int = 0
    outputs: List[str] = field(default_factory=list)
    merges: int = 0
