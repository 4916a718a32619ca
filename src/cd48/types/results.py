"""Result records returned by the CD48 client."""

from __future__ import annotations

import re
from dataclasses import dataclass

from mashumaro import DataClassDictMixin

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True)
class CountData(DataClassDictMixin):
    """One raw counter read: 8 channel counts and the overflow flag."""

    counts: tuple[int, ...]
    overflow: int


@dataclass(frozen=True)
class RateUncertainty(DataClassDictMixin):
    counts: float  # sigma_N
    rate: float  # sigma_R, counts/s
    relative: float  # percent


@dataclass(frozen=True)
class RateMeasurement(DataClassDictMixin):
    channel: int
    duration: float
    counts: int
    rate: float
    uncertainty: RateUncertainty


@dataclass(frozen=True)
class CoincidenceUncertainty(DataClassDictMixin):
    singles_a: float
    singles_b: float
    coincidences: float
    rate_a: float
    rate_b: float
    coincidence_rate: float
    accidental_rate: float
    true_coincidence_rate: float


@dataclass(frozen=True)
class CoincidenceMeasurement(DataClassDictMixin):
    singles_a: int
    singles_b: int
    coincidences: int
    duration: float
    rate_a: float
    rate_b: float
    coincidence_rate: float
    accidental_rate: float
    true_coincidence_rate: float
    uncertainty: CoincidenceUncertainty


@dataclass(frozen=True, order=True)
class FirmwareVersion(DataClassDictMixin):
    """Firmware version, ordered by (major, minor, patch)."""

    major: int = 0
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, version_string: str) -> FirmwareVersion:
        """Pull the first `major.minor[.patch]` run out of free text.

        Handles "CD48 v1.2.3", "1.2.3", "v1.2" etc. A missing patch is 0 and
        text without any version number parses as 0.0.0.
        """
        match = _VERSION_RE.search(version_string or "")
        if match is None:
            return cls(0, 0, 0)
        return cls(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            patch=int(match.group(3) or 0),
        )

    def __str__(self):
        return f"{self.major}.{self.minor}.{self.patch}"


def compare_firmware_versions(a: FirmwareVersion, b: FirmwareVersion) -> int:
    """Negative if a < b, positive if a > b, zero if equal."""
    if a.major != b.major:
        return a.major - b.major
    if a.minor != b.minor:
        return a.minor - b.minor
    return a.patch - b.patch


@dataclass(frozen=True)
class FirmwareInfo(DataClassDictMixin):
    version_string: str
    version: FirmwareVersion
    is_compatible: bool
    minimum_version: str

    @property
    def major(self) -> int:
        return self.version.major

    @property
    def minor(self) -> int:
        return self.version.minor

    @property
    def patch(self) -> int:
        return self.version.patch
