"""Canonical EEW alert model - Pure data structures.

Every inbound wire format is reduced to a CanonicalAlert. All downstream
logic (scoring, comparison, policy, delivery) works on this model only.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IntensityCode(str, Enum):
    """Seismic intensity levels, ordered by severity.

    Levels 5 and 6 split into a minor (-) and major (+) subgrade.
    """
    SHINDO_2 = "2"
    SHINDO_3 = "3"
    SHINDO_4 = "4"
    SHINDO_5_LOWER = "5-"
    SHINDO_5_UPPER = "5+"
    SHINDO_6_LOWER = "6-"
    SHINDO_6_UPPER = "6+"
    SHINDO_7 = "7"

    @classmethod
    def parse(cls, value: str) -> "IntensityCode":
        """Parse a wire code such as '5-' into an IntensityCode.

        Raises:
            ValueError: If the value is not one of the eight known codes
        """
        return cls(str(value).strip())


class LandOrSea(str, Enum):
    """Whether the epicenter is inland or offshore."""
    LAND = "LAND"
    SEA = "SEA"

    @classmethod
    def parse(cls, value: str | None) -> "LandOrSea":
        """Parse wire values ('内陸'/'海域', 'land'/'sea').

        Anything unrecognized is treated as LAND.
        """
        if value is None:
            return cls.LAND
        text = str(value).strip().lower()
        if text in ("海域", "sea"):
            return cls.SEA
        return cls.LAND


@dataclass(frozen=True)
class Epicenter:
    """Hypocenter location.

    Attributes:
        name: Epicenter region name (e.g. '能登半島沖')
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        land_or_sea: Inland or offshore
    """
    name: str
    latitude: float
    longitude: float
    land_or_sea: LandOrSea = LandOrSea.LAND


@dataclass(frozen=True)
class IntensityRange:
    """Forecast intensity range (from/to are equal for a single level)."""
    from_: IntensityCode
    to: IntensityCode


@dataclass(frozen=True)
class WarningRegion:
    """A region named in a warning.

    Attributes:
        code: Region code
        name: Region name
        intensity: Forecast intensity range for the region (optional)
        condition: Arrival condition text (e.g. '既に主要動到達と推測')
    """
    code: str
    name: str
    intensity: IntensityRange | None = None
    condition: str | None = None


@dataclass(frozen=True)
class CanonicalAlert:
    """Immutable normalized EEW alert.

    Attributes:
        is_final: Whether this is the last report for the event
        is_canceled: Whether this report cancels a previous warning
        is_warning: Whether this is a warning (警報) rather than a forecast
        origin_time: Earthquake origin time
        magnitude: Magnitude, finite and non-negative when present
        depth: Depth in kilometers
        epicenter: Epicenter location
        max_intensity: Forecast maximum intensity range
        warning_regions: Regions under warning, in report order
        affected_region_codes: Codes of all affected regions
        free_text: Free text such as a cancellation notice
        reported_at: Time the report was issued (envelope timestamp)
        warning_message: Forecast comment text
        prefecture_names: Names of affected prefectures
        serial_no: Report serial number
    """
    is_final: bool = False
    is_canceled: bool = False
    is_warning: bool = False
    origin_time: datetime | None = None
    magnitude: float | None = None
    depth: float | None = None
    epicenter: Epicenter | None = None
    max_intensity: IntensityRange | None = None
    warning_regions: tuple[WarningRegion, ...] = field(default_factory=tuple)
    affected_region_codes: frozenset[str] = field(default_factory=frozenset)
    free_text: str | None = None
    reported_at: datetime | None = None
    warning_message: str | None = None
    prefecture_names: tuple[str, ...] = field(default_factory=tuple)
    serial_no: str | None = None

    def __post_init__(self) -> None:
        if self.magnitude is not None:
            if not math.isfinite(self.magnitude) or self.magnitude < 0:
                raise ValueError(f"Invalid magnitude: {self.magnitude!r}")

    @property
    def has_earthquake(self) -> bool:
        """Returns True if the alert carries any earthquake data."""
        return (
            self.origin_time is not None
            or self.magnitude is not None
            or self.depth is not None
            or self.epicenter is not None
        )

    @property
    def warned_region_codes(self) -> frozenset[str]:
        """Codes of the regions under warning."""
        return frozenset(r.code for r in self.warning_regions)

    @property
    def kind(self) -> str:
        """Short label: 'cancel', 'warning' or 'forecast'."""
        if self.is_canceled:
            return "cancel"
        if self.is_warning:
            return "warning"
        return "forecast"
