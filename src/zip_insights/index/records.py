"""
Canonical ZIP -> record mapping plus the state / city / county indices.

Category sets are dicts with None values so iteration follows the order
in which ZIPs were indexed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from pydantic import ValidationError

from .models import LoadReport, RejectedRecord, ZipRecord, normalize_zip

logger = logging.getLogger(__name__)

RawRecord = Union[ZipRecord, Mapping[str, Any]]
CityKey = tuple[str, str]


class RecordStore:
    """
    In-memory record store with categorical indices.

    Loads overwrite by ZIP (last write wins). Every mutation happens under a
    lock and clear() swaps in fresh maps, so readers never see a half-cleared
    store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, ZipRecord] = {}
        self._by_state: dict[str, dict[str, None]] = {}
        self._by_city: dict[CityKey, dict[str, None]] = {}
        self._by_county: dict[str, dict[str, None]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, zip_code: object) -> bool:
        return normalize_zip(zip_code) in self._records

    def __iter__(self) -> Iterator[ZipRecord]:
        return iter(list(self._records.values()))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(
        self,
        records: Iterable[RawRecord],
        require_coordinates: bool = False,
        source: str = "records",
    ) -> LoadReport:
        """
        Validate and ingest records.

        Malformed entries are rejected one by one and listed in the report;
        they never abort the rest of the load.

        Args:
            records: ZipRecord instances or raw mappings
            require_coordinates: Reject entries lacking lat/lng instead of
                storing them as non-spatial records
            source: Label used in the report

        Returns:
            LoadReport with counts, rejections and timings
        """
        report = LoadReport(source=source)
        valid: list[ZipRecord] = []

        start = time.perf_counter()
        for position, raw in enumerate(records):
            report.received += 1
            record, rejection = self._validate(position, raw, require_coordinates)
            if rejection is not None:
                report.rejected.append(rejection)
            else:
                valid.append(record)
        report.parse_time_s = time.perf_counter() - start

        start = time.perf_counter()
        with self._lock:
            for record in valid:
                self._put(record)
        report.index_time_s = time.perf_counter() - start
        report.loaded = len(valid)

        if report.rejected:
            logger.warning(
                f"Rejected {len(report.rejected)}/{report.received} records from '{source}'"
            )
        logger.info(f"Loaded {report.loaded} records from '{source}' ({len(self._records)} total)")
        return report

    @staticmethod
    def _validate(
        position: int,
        raw: RawRecord,
        require_coordinates: bool,
    ) -> tuple[Optional[ZipRecord], Optional[RejectedRecord]]:
        if isinstance(raw, ZipRecord):
            record = raw
        else:
            try:
                record = ZipRecord.model_validate(dict(raw))
            except (ValidationError, TypeError, ValueError) as e:
                raw_zip = raw.get("zip") if isinstance(raw, Mapping) else None
                errors = (
                    e.errors(include_url=False, include_context=False)
                    if isinstance(e, ValidationError)
                    else [{"loc": (), "msg": str(e), "type": type(e).__name__}]
                )
                return None, RejectedRecord(
                    position=position,
                    zip=None if raw_zip is None else str(raw_zip),
                    errors=errors,
                )

        if require_coordinates and not record.has_coordinates:
            return None, RejectedRecord(
                position=position,
                zip=record.zip,
                errors=[{
                    "loc": ("lat", "lng"),
                    "msg": "latitude and longitude are required",
                    "type": "missing_coordinates",
                }],
            )
        return record, None

    def _put(self, record: ZipRecord) -> None:
        previous = self._records.get(record.zip)
        if previous is not None:
            self._unindex(previous)
        self._records[record.zip] = record
        self._index(record)

    def _index(self, record: ZipRecord) -> None:
        if record.state_id:
            self._by_state.setdefault(record.state_id, {})[record.zip] = None
        if record.city:
            self._by_city.setdefault(self._city_key(record), {})[record.zip] = None
        if record.county_fips:
            self._by_county.setdefault(record.county_fips, {})[record.zip] = None

    def _unindex(self, record: ZipRecord) -> None:
        for table, key in (
            (self._by_state, record.state_id),
            (self._by_city, self._city_key(record) if record.city else None),
            (self._by_county, record.county_fips),
        ):
            if not key or key not in table:
                continue
            table[key].pop(record.zip, None)
            if not table[key]:
                del table[key]

    @staticmethod
    def _city_key(record: ZipRecord) -> CityKey:
        return (record.city.lower(), record.state_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, zip_code: Any) -> Optional[ZipRecord]:
        """Return the record for a ZIP, padding short input ("501" -> "00501")."""
        return self._records.get(normalize_zip(zip_code))

    def by_state(self, state_id: str, limit: int = 100) -> list[ZipRecord]:
        zips = self._by_state.get(state_id.strip().upper(), {})
        return self._collect(zips, limit)

    def by_county(self, county_fips: str, limit: int = 100) -> list[ZipRecord]:
        zips = self._by_county.get(str(county_fips).strip(), {})
        return self._collect(zips, limit)

    def by_city(self, name: str, state_id: Optional[str] = None, limit: int = 50) -> list[ZipRecord]:
        """Case-insensitive substring match on city name, optionally within one state."""
        term = name.strip().lower()
        state = state_id.strip().upper() if state_id else None
        results: list[ZipRecord] = []

        for (city, city_state), zips in list(self._by_city.items()):
            if term not in city or (state and city_state != state):
                continue
            results.extend(self._collect(zips, limit - len(results)))
            if len(results) >= limit:
                break
        return results

    def _collect(self, zips: Mapping[str, None], limit: int) -> list[ZipRecord]:
        results: list[ZipRecord] = []
        if limit <= 0:
            return results
        for zip_code in list(zips):
            record = self._records.get(zip_code)
            if record is not None:
                results.append(record)
            if len(results) >= limit:
                break
        return results

    def category_counts(self) -> dict[str, int]:
        return {
            "states": len(self._by_state),
            "cities": len(self._by_city),
            "counties": len(self._by_county),
        }

    # ------------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._records = {}
            self._by_state = {}
            self._by_city = {}
            self._by_county = {}
