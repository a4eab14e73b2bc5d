from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Iterable, Sequence

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from zip_insights.acs.base import Transport  # noqa: E402
from zip_insights.utils.errors import TransientNetworkError  # noqa: E402


class FakeClock:
    """Manually advanced clock; sleep() moves time forward instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTransport(Transport):
    """
    Scripted provider: answers from `rows` ({zip: {variable: value}}).

    `fail_zips` makes any batch containing one of them raise `error`;
    `connected = False` makes every call raise.
    """

    def __init__(self, rows: dict[str, dict[str, Any]] | None = None, dataset: str = "acs/acs5", year: str = "2022"):
        self.rows = rows or {}
        self.dataset = dataset
        self.year = year
        self.connected = True
        self.fail_zips: set[str] = set()
        self.error: Exception = TransientNetworkError("HTTP 503: unavailable", status_code=503)
        self.calls: list[tuple[tuple[str, ...], tuple[str, ...]]] = []
        self.probe_status = 200

    async def fetch(self, zips: Sequence[str], variables: Sequence[str]) -> list[list[Any]]:
        self.calls.append((tuple(zips), tuple(variables)))
        await asyncio.sleep(0)
        if not self.connected:
            raise TransientNetworkError("connection refused")
        if self.fail_zips.intersection(zips):
            raise self.error

        table: list[list[Any]] = [["NAME", *variables, "zip code tabulation area"]]
        for zip_code in zips:
            if zip_code in self.rows:
                values = self.rows[zip_code]
                table.append([f"ZCTA5 {zip_code}", *[_cell(values.get(v)) for v in variables], zip_code])
        return table

    async def probe(self) -> int:
        if not self.connected:
            raise TransientNetworkError("connection refused")
        return self.probe_status


def _cell(value: Any) -> Any:
    return None if value is None else str(value)


def make_record(zip_code: str, lat: float | None, lng: float | None, **extra: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"zip": zip_code, "lat": lat, "lng": lng}
    record.update(extra)
    return record


def zips_of(records: Iterable[Any]) -> list[str]:
    return [r.zip for r in records]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def sample_records() -> list[dict[str, Any]]:
    return [
        make_record("10001", 40.7506, -73.9972, city="New York", state_id="NY",
                    county_fips="36061", county_name="New York", population=27613, density=34000.5,
                    timezone="America/New_York", zcta=True),
        make_record("10002", 40.7157, -73.9863, city="New York", state_id="NY",
                    county_fips="36061", county_name="New York", population=76807, density=36000.0,
                    timezone="America/New_York", zcta=True),
        make_record("11201", 40.6940, -73.9903, city="Brooklyn", state_id="NY",
                    county_fips="36047", county_name="Kings", population=62823, density=15000.0),
        make_record("07030", 40.7453, -74.0279, city="Hoboken", state_id="NJ",
                    county_fips="34017", county_name="Hudson", population=58690, density=19000.0),
        make_record("90012", 34.0614, -118.2385, city="Los Angeles", state_id="CA",
                    county_fips="06037", county_name="Los Angeles", population=38000, density=4700.0),
        make_record("94103", 37.7726, -122.4099, city="San Francisco", state_id="CA",
                    county_fips="06075", county_name="San Francisco", population=27000, density=9000.0),
    ]
