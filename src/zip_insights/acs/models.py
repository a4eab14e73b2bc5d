"""
Core data models for ACS fetch operations.

These dataclasses are the contract between the cache, the transport and
the fetch service, and are what callers get back from fetch_variables().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from hashlib import sha256
from typing import Any, Iterable, Optional


def variables_hash(variables: Iterable[str]) -> str:
    """
    Stable digest of a variable list.

    Names are de-duplicated and sorted first, so any ordering of the same
    set gives the same digest.

    Examples:
        variables_hash(["B19013_001E", "B01003_001E"])
        == variables_hash(["B01003_001E", "B19013_001E"])
    """
    key = ",".join(sorted({v.strip() for v in variables if v and v.strip()}))
    return sha256(key.encode("utf8")).hexdigest()[:16]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ValueSource(StrEnum):
    """Where a per-ZIP value came from."""
    API = "api"
    CACHE = "cache"


class AttemptOutcome(StrEnum):
    """Outcome of one network attempt."""
    OK = "ok"
    FAILED = "failed"


class CredentialStatus(StrEnum):
    VALID = "valid"
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass(frozen=True)
class ZipValues:
    """Variable values for one ZIP plus provenance metadata."""
    zip: str
    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    source: ValueSource = ValueSource.API


@dataclass(frozen=True)
class CacheEntry:
    """A persisted cache record. Expiry is always cached_at + TTL."""
    data: dict[str, Any]
    metadata: dict[str, Any]
    cached_at: float
    expiry: float

    def is_expired(self, now: float) -> bool:
        return now > self.expiry

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "metadata": self.metadata,
            "cached_at": self.cached_at,
            "expiry": self.expiry,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "CacheEntry":
        """Raises ValueError if `raw` is not a well-formed entry."""
        if not isinstance(raw, dict):
            raise ValueError("cache entry must be an object")
        try:
            entry = cls(
                data=dict(raw["data"]),
                metadata=dict(raw.get("metadata") or {}),
                cached_at=float(raw["cached_at"]),
                expiry=float(raw["expiry"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed cache entry: {e}") from e
        if entry.expiry <= 0:
            raise ValueError("cache entry has no expiry")
        return entry


@dataclass(frozen=True)
class CacheStats:
    count: int
    size_bytes: int
    expired: int

    @property
    def size_kb(self) -> int:
        return round(self.size_bytes / 1024)

    @property
    def size_mb(self) -> int:
        return round(self.size_bytes / (1024 * 1024))


@dataclass(frozen=True)
class FetchAttempt:
    """One network call made while fetching a batch."""
    zips: tuple[str, ...]
    variables: tuple[str, ...]
    attempt: int
    outcome: AttemptOutcome
    error: Optional[str] = None
    duration_s: float = 0.0


@dataclass(frozen=True)
class BatchFailure:
    """A batch that produced no values after all attempts (or a fatal error)."""
    zips: tuple[str, ...]
    error: str
    error_type: str
    attempts: list[FetchAttempt] = field(default_factory=list)


@dataclass
class FetchResult:
    """
    Merged outcome of fetch_variables().

    `values` holds cache hits and freshly fetched ZIPs, `missing` the ZIPs
    the provider had no row for, and `failures` the batches that gave up.
    """
    values: dict[str, ZipValues] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    requested: int = 0
    cached: int = 0
    fetched: int = 0
    duration_s: float = 0.0

    @property
    def failed_zips(self) -> list[str]:
        return [z for failure in self.failures for z in failure.zips]

    @property
    def is_complete(self) -> bool:
        return not self.missing and not self.failures

    def as_dict(self) -> dict[str, dict[str, Any]]:
        """{zip: {variable: value}} view of the successful ZIPs."""
        return {zip_code: dict(values.data) for zip_code, values in self.values.items()}


@dataclass(frozen=True)
class CredentialCheck:
    status: CredentialStatus
    message: str
    http_status: Optional[int] = None

    @property
    def valid(self) -> bool:
        return self.status is CredentialStatus.VALID


@dataclass
class ServiceStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    total_time_s: float = 0.0

    @property
    def avg_response_time_s(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.total_time_s / self.total_requests


@dataclass(frozen=True)
class ErrorLogEntry:
    timestamp: str
    message: str
    error: str
