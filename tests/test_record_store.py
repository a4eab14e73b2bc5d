from __future__ import annotations

import pytest

from conftest import make_record, zips_of
from zip_insights.index import RecordStore, ZipRecord
from zip_insights.utils.errors import DataValidationError


@pytest.fixture
def store(sample_records) -> RecordStore:
    s = RecordStore()
    s.load(sample_records)
    return s


def test_get_pads_short_zip():
    store = RecordStore()
    store.load([make_record("1", 40.0, -70.0, state_id="ny")])

    assert store.get("1") is not None
    assert store.get("1") == store.get("00001")
    assert store.get("00001").zip == "00001"
    assert store.get("00001").state_id == "NY"


def test_get_unknown_zip_returns_none(store):
    assert store.get("99999") is None


def test_repeated_load_indexes_zip_once(sample_records):
    store = RecordStore()
    for _ in range(3):
        store.load(sample_records[:1])

    assert zips_of(store.by_state("NY")) == ["10001"]
    assert len(store) == 1


def test_last_write_wins_and_moves_categories():
    store = RecordStore()
    store.load([make_record("10001", 40.75, -73.99, city="New York", state_id="NY", county_fips="36061")])
    store.load([make_record("10001", 41.0, -74.0, city="Newark", state_id="NJ", county_fips="34013")])

    assert store.get("10001").city == "Newark"
    assert store.by_state("NY") == []
    assert zips_of(store.by_state("NJ")) == ["10001"]
    assert store.by_county("36061") == []
    assert store.by_city("new york") == []
    assert store.category_counts() == {"states": 1, "cities": 1, "counties": 1}


def test_by_state_is_case_insensitive_and_limited(store):
    assert zips_of(store.by_state("ny")) == ["10001", "10002", "11201"]
    assert zips_of(store.by_state("NY", limit=2)) == ["10001", "10002"]


def test_by_county(store):
    assert zips_of(store.by_county("36061")) == ["10001", "10002"]
    assert store.by_county("00000") == []


def test_by_city_substring_and_state_filter(store):
    assert zips_of(store.by_city("YORK")) == ["10001", "10002"]
    assert zips_of(store.by_city("san", state_id="ca")) == ["94103"]
    assert zips_of(store.by_city("o")) == ["10001", "10002", "11201", "07030", "90012", "94103"]
    assert zips_of(store.by_city("o", limit=4)) == ["10001", "10002", "11201", "07030"]
    assert store.by_city("brooklyn", state_id="NJ") == []


def test_malformed_entries_rejected_individually():
    store = RecordStore()
    report = store.load([
        {"lat": 40.0, "lng": -70.0},
        make_record("abc12", 40.0, -70.0),
        make_record("10001", 40.75, -73.99, state_id="NY"),
        make_record("10002", 40.71, -73.98, population=-5),
        "not a record",
    ])

    assert report.received == 5
    assert report.loaded == 1
    assert [r.position for r in report.rejected] == [0, 1, 3, 4]
    assert report.rejected[1].zip == "abc12"
    assert store.get("10001") is not None
    assert store.get("10002") is None


def test_raise_for_rejections_summarises_errors():
    store = RecordStore()
    report = store.load([make_record("10001", 95.0, -73.99)], source="demo")

    with pytest.raises(DataValidationError) as excinfo:
        report.raise_for_rejections()

    err = excinfo.value
    assert err.source == "demo"
    assert err.errors
    assert "lat" in err.summary()


def test_require_coordinates_rejects_missing_coordinates():
    store = RecordStore()
    report = store.load(
        [make_record("10001", None, None), make_record("10002", 40.7, -73.9)],
        require_coordinates=True,
    )

    assert report.loaded == 1
    assert report.rejected[0].errors[0]["type"] == "missing_coordinates"


def test_records_without_coordinates_are_stored_when_allowed():
    store = RecordStore()
    store.load([make_record("10001", float("nan"), "", state_id="NY")])

    record = store.get("10001")
    assert record is not None
    assert record.has_coordinates is False
    assert zips_of(store.by_state("NY")) == ["10001"]


def test_load_accepts_zip_record_instances():
    store = RecordStore()
    report = store.load([ZipRecord(zip="501", lat=40.8, lng=-73.0, state_id="NY")])

    assert report.loaded == 1
    assert store.get("501").zip == "00501"


def test_clear_empties_every_map(store):
    store.clear()

    assert len(store) == 0
    assert store.get("10001") is None
    assert store.by_state("NY") == []
    assert store.by_city("york") == []
    assert store.category_counts() == {"states": 0, "cities": 0, "counties": 0}
