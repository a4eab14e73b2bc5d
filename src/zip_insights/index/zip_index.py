"""
ZipIndex: one query surface over the record store, the categorical
indices and the spatial grid.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Iterable, Optional

from .loaders import RecordLoader
from .models import IndexStats, LoadReport, NearbyZip, ZipRecord
from .records import RawRecord, RecordStore
from .spatial import GRID_SIZE, SpatialGridIndex

logger = logging.getLogger(__name__)


class ZipIndex:
    """
    ZIP code index with categorical and spatial search.

    Queries are synchronous and in-memory. Each load() triggers a full
    rebuild of the spatial grid, which is read-only between loads.

    Example:
        index = ZipIndex()
        index.load([{"zip": "10001", "lat": 40.75, "lng": -73.99, "state_id": "NY"}])
        index.search_radius(40.75, -73.99, radius_km=1)
    """

    def __init__(self, grid_size: float = GRID_SIZE):
        self.store = RecordStore()
        self.grid = SpatialGridIndex(grid_size)
        self.loaded = False
        self._metrics = {"load_time_s": 0.0, "parse_time_s": 0.0, "index_time_s": 0.0}

    @classmethod
    def from_source(cls, source: str, require_coordinates: bool = True, **kwargs: Any) -> "ZipIndex":
        """Build an index from a registered loader ('csv', 'json', 'records')."""
        index = cls()
        report = index.load(
            RecordLoader.from_source(source, **kwargs),
            require_coordinates=require_coordinates,
            source=source,
        )
        if report.rejected:
            logger.warning(f"{len(report.rejected)} records rejected while loading '{source}'")
        return index

    def load(
        self,
        records: Iterable[RawRecord],
        require_coordinates: bool = True,
        source: str = "records",
    ) -> LoadReport:
        """
        Ingest records and rebuild the spatial grid.

        Args:
            records: ZipRecord instances or raw mappings
            require_coordinates: Reject entries without lat/lng. With False
                they are stored and reachable by ZIP/category, but never
                returned by spatial queries.
            source: Label for logs and the report

        Returns:
            LoadReport describing accepted and rejected entries
        """
        start = time.perf_counter()
        report = self.store.load(records, require_coordinates=require_coordinates, source=source)

        grid_start = time.perf_counter()
        self.grid.build(self.store)
        report.index_time_s += time.perf_counter() - grid_start

        self.loaded = True
        self._metrics = {
            "load_time_s": time.perf_counter() - start,
            "parse_time_s": report.parse_time_s,
            "index_time_s": report.index_time_s,
        }
        return report

    def get(self, zip_code: Any) -> Optional[ZipRecord]:
        return self.store.get(zip_code)

    def by_state(self, state_id: str, limit: int = 100) -> list[ZipRecord]:
        return self.store.by_state(state_id, limit)

    def by_city(self, name: str, state_id: Optional[str] = None, limit: int = 50) -> list[ZipRecord]:
        return self.store.by_city(name, state_id, limit)

    def by_county(self, county_fips: str, limit: int = 100) -> list[ZipRecord]:
        return self.store.by_county(county_fips, limit)

    def search_radius(self, lat: float, lng: float, radius_km: float, limit: int = 100) -> list[NearbyZip]:
        """Records within radius_km; see SpatialGridIndex.search_radius for ordering."""
        results = []
        for stub, distance in self.grid.search_radius(lat, lng, radius_km, limit):
            record = self.store.get(stub.zip)
            if record is not None:
                results.append(NearbyZip(record=record, distance_km=distance))
        return results

    def search_bounding_box(
        self,
        min_lat: float,
        min_lng: float,
        max_lat: float,
        max_lng: float,
        limit: int = 200,
    ) -> list[ZipRecord]:
        results = []
        for stub in self.grid.search_bounding_box(min_lat, min_lng, max_lat, max_lng, limit):
            record = self.store.get(stub.zip)
            if record is not None:
                results.append(record)
        return results

    def random_sample(self, count: int = 10, rng: Optional[random.Random] = None) -> list[ZipRecord]:
        """Up to `count` distinct records picked at random."""
        records = list(self.store)
        rng = rng or random.Random()
        return rng.sample(records, min(count, len(records)))

    def export(self, limit: int = 1000) -> list[dict[str, Any]]:
        out = []
        for record in self.store:
            if len(out) >= limit:
                break
            out.append(record.model_dump())
        return out

    def stats(self) -> IndexStats:
        counts = self.store.category_counts()
        return IndexStats(
            total_records=len(self.store),
            states=counts["states"],
            cities=counts["cities"],
            counties=counts["counties"],
            spatial_cells=self.grid.cell_count,
            loaded=self.loaded,
            metrics=dict(self._metrics),
        )

    def clear(self) -> None:
        self.store.clear()
        self.grid.clear()
        self.loaded = False
        self._metrics = {"load_time_s": 0.0, "parse_time_s": 0.0, "index_time_s": 0.0}
