"""
Data models for the ZIP index.

ZipRecord is validated once at load time and immutable afterwards; the
remaining types are plain frozen dataclasses handed back by queries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.errors import DataValidationError


def normalize_zip(zip_code: Any) -> str:
    """Left-zero-pad a ZIP to 5 characters ("501" -> "00501")."""
    return str(zip_code).strip().rjust(5, "0")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


class ZipRecord(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    zip: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    city: str = ""
    state_id: str = ""
    county_fips: str = ""
    county_name: str = ""
    population: int = Field(default=0, ge=0)
    density: float = Field(default=0.0, ge=0)
    timezone: str = ""
    zcta: bool = False

    @field_validator("zip", mode="before")
    @classmethod
    def _pad_zip(cls, value: Any) -> str:
        if _is_blank(value):
            raise ValueError("zip is required")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        zip_code = normalize_zip(value)
        if len(zip_code) != 5 or not zip_code.isdigit():
            raise ValueError(f"zip must be 5 digits, got {value!r}")
        return zip_code

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _blank_coordinate(cls, value: Any) -> Any:
        return None if _is_blank(value) else value

    @field_validator("lat")
    @classmethod
    def _check_lat(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not -90 <= value <= 90:
            raise ValueError(f"latitude out of range: {value}")
        return value

    @field_validator("lng")
    @classmethod
    def _check_lng(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not -180 <= value <= 180:
            raise ValueError(f"longitude out of range: {value}")
        return value

    @field_validator("city", "state_id", "county_fips", "county_name", "timezone", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> Any:
        if _is_blank(value):
            return ""
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value)

    @field_validator("state_id")
    @classmethod
    def _upper_state(cls, value: str) -> str:
        return value.upper()

    @field_validator("population", "density", mode="before")
    @classmethod
    def _blank_number(cls, value: Any) -> Any:
        return 0 if _is_blank(value) else value

    @field_validator("zcta", mode="before")
    @classmethod
    def _blank_flag(cls, value: Any) -> Any:
        return False if _is_blank(value) else value

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True, slots=True)
class GridStub:
    """Minimal copy of a record kept inside a grid cell."""
    zip: str
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class NearbyZip:
    """A radius-search hit: the record plus its distance from the query point."""
    record: ZipRecord
    distance_km: float

    @property
    def zip(self) -> str:
        return self.record.zip


@dataclass(frozen=True)
class RejectedRecord:
    """An input entry that failed validation during a load."""
    position: int
    zip: Optional[str]
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class LoadReport:
    """Outcome of a bulk load: counts, per-entry rejections and timings."""
    source: str
    received: int = 0
    loaded: int = 0
    rejected: list[RejectedRecord] = field(default_factory=list)
    parse_time_s: float = 0.0
    index_time_s: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.rejected

    def raise_for_rejections(self) -> None:
        """Raise DataValidationError if any entry was rejected."""
        if not self.rejected:
            return
        errors: list[dict[str, Any]] = []
        for rej in self.rejected:
            for err in rej.errors:
                errors.append({**err, "loc": (rej.position, *err.get("loc", ()))})
        raise DataValidationError(self.source, errors)


@dataclass(frozen=True)
class IndexStats:
    total_records: int
    states: int
    cities: int
    counties: int
    spatial_cells: int
    loaded: bool
    metrics: dict[str, float] = field(default_factory=dict)
