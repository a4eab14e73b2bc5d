"""
Grid-bucketed spatial index for radius and bounding-box searches.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Iterator

from ..utils.errors import QueryValidationError
from ..utils.geo import degree_deltas, haversine_km
from .models import GridStub, ZipRecord

logger = logging.getLogger(__name__)

GRID_SIZE = 0.5  # degrees

CellKey = tuple[int, int]


def grid_key(lat: float, lng: float, grid_size: float = GRID_SIZE) -> CellKey:
    return (math.floor(lat / grid_size), math.floor(lng / grid_size))


class SpatialGridIndex:
    """
    Buckets records into fixed grid_size x grid_size degree cells.

    Longitude buckets are not latitude-corrected. The index is rebuilt in
    full by build() and read-only afterwards.
    """

    def __init__(self, grid_size: float = GRID_SIZE):
        if grid_size <= 0:
            raise ValueError("grid_size must be > 0")
        self.grid_size = grid_size
        self._cells: dict[CellKey, list[GridStub]] = {}

    def __len__(self) -> int:
        return sum(len(stubs) for stubs in self._cells.values())

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    def build(self, records: Iterable[ZipRecord]) -> int:
        """
        Rebuild the grid from scratch.

        Records without both coordinates are skipped.

        Returns:
            Number of records placed in the grid
        """
        cells: dict[CellKey, list[GridStub]] = {}
        placed = 0
        for record in records:
            lat, lng = record.lat, record.lng
            if lat is None or lng is None:
                continue
            key = grid_key(lat, lng, self.grid_size)
            cells.setdefault(key, []).append(GridStub(record.zip, lat, lng))
            placed += 1

        self._cells = cells
        logger.info(f"Built spatial index with {len(cells)} grid cells ({placed} records)")
        return placed

    def clear(self) -> None:
        self._cells = {}

    def _cells_in_range(self, min_lat: float, min_lng: float, max_lat: float, max_lng: float) -> Iterator[list[GridStub]]:
        min_lat_grid, min_lng_grid = grid_key(min_lat, min_lng, self.grid_size)
        max_lat_grid, max_lng_grid = grid_key(max_lat, max_lng, self.grid_size)

        # Walking a huge empty range is slower than scanning occupied cells
        span = (max_lat_grid - min_lat_grid + 1) * (max_lng_grid - min_lng_grid + 1)
        if span > len(self._cells):
            for (lat_grid, lng_grid), stubs in list(self._cells.items()):
                if min_lat_grid <= lat_grid <= max_lat_grid and min_lng_grid <= lng_grid <= max_lng_grid:
                    yield stubs
            return

        for lat_grid in range(min_lat_grid, max_lat_grid + 1):
            for lng_grid in range(min_lng_grid, max_lng_grid + 1):
                stubs = self._cells.get((lat_grid, lng_grid))
                if stubs:
                    yield stubs

    def search_radius(self, lat: float, lng: float, radius_km: float, limit: int = 100) -> list[tuple[GridStub, float]]:
        """
        Find stubs within radius_km of (lat, lng).

        Candidate cells come from a bounding box (1 deg lat = 111.32 km,
        1 deg lng = 111.32 * cos(lat) km at the query latitude); every stub in
        those cells is then checked with the Haversine distance. The box only
        selects cells; stubs are never rejected by it.

        If `limit` matches are found the scan stops and the matches are
        returned in scan order. Otherwise all matches are returned sorted by
        ascending distance.

        Returns:
            List of (stub, distance_km) pairs
        """
        if radius_km < 0 or math.isnan(radius_km):
            raise QueryValidationError(f"radius_km must be >= 0, got {radius_km}")
        if limit < 1:
            raise QueryValidationError(f"limit must be >= 1, got {limit}")

        lat_delta, lng_delta = degree_deltas(lat, radius_km)
        min_lat, max_lat = lat - lat_delta, lat + lat_delta
        min_lng, max_lng = lng - lng_delta, lng + lng_delta

        results: list[tuple[GridStub, float]] = []
        for stubs in self._cells_in_range(min_lat, min_lng, max_lat, max_lng):
            for stub in stubs:
                distance = haversine_km(lat, lng, stub.lat, stub.lng)
                if distance > radius_km:
                    continue
                results.append((stub, distance))
                if len(results) >= limit:
                    return results

        results.sort(key=lambda hit: hit[1])
        return results

    def search_bounding_box(
        self,
        min_lat: float,
        min_lng: float,
        max_lat: float,
        max_lng: float,
        limit: int = 200,
    ) -> list[GridStub]:
        """Stubs inside the inclusive box, in cell scan order."""
        if min_lat > max_lat or min_lng > max_lng:
            raise QueryValidationError(
                f"Inverted bounding box: ({min_lat}, {min_lng}) - ({max_lat}, {max_lng})"
            )
        if limit < 1:
            raise QueryValidationError(f"limit must be >= 1, got {limit}")

        results: list[GridStub] = []
        for stubs in self._cells_in_range(min_lat, min_lng, max_lat, max_lng):
            for stub in stubs:
                if min_lat <= stub.lat <= max_lat and min_lng <= stub.lng <= max_lng:
                    results.append(stub)
                    if len(results) >= limit:
                        return results
        return results
