"""Record loaders feeding the ZIP index.

Each loader registers itself under a SOURCE key and returns raw record
mappings. Validation is left to RecordStore.load() so that bad rows are
rejected individually.

Usage:
    raw = RecordLoader.from_source('csv', path='data/uszips.csv')
    index.load(raw)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Iterable, Mapping, Type

import pandas as pd

logger = logging.getLogger(__name__)

# Columns kept as text so leading zeros survive
TEXT_COLUMNS = ("zip", "county_fips", "state_id", "city", "county_name", "timezone")


class RecordLoader(ABC):
    """Abstract base for ZIP record loaders.

    Subclasses set a SOURCE and implement `_load_raw()`.
    """

    # Unique key for each subclass (e.g., 'csv', 'json')
    SOURCE: ClassVar[str]

    # Global registry of source loaders
    _REGISTRY: ClassVar[dict[str, Type['RecordLoader']]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        # Only register classes that define SOURCE themselves
        if "SOURCE" in cls.__dict__:
            key = str(cls.SOURCE).lower()
            if key in RecordLoader._REGISTRY and RecordLoader._REGISTRY[key] is not cls:
                raise RuntimeError(f"Duplicate loader SOURCE '{key}' for {cls.__name__}")
            RecordLoader._REGISTRY[key] = cls
            logger.debug(f"Registered RecordLoader: {cls.__name__} as '{key}'")

    @classmethod
    def known_sources(cls) -> list[str]:
        return sorted(cls._REGISTRY)

    @classmethod
    def from_source(cls, source: str, **kwargs: Any) -> list[dict[str, Any]]:
        """Factory to load raw records from a registered source.

        Args:
            source: The source identifier (e.g., 'csv', 'json', 'records')
            **kwargs: Arguments passed to the loader constructor

        Returns:
            List of raw record mappings
        """
        key = str(source).lower()
        try:
            loader_cls = cls._REGISTRY[key]
        except KeyError as e:
            raise ValueError(
                f"Unknown source '{source}'. "
                f"Known sources: {cls.known_sources()}"
            ) from e

        loader = loader_cls(**kwargs)
        records = loader.load()
        logger.info(f"Read {len(records)} raw records via '{key}'")
        return records

    def load(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._load_raw()]

    @abstractmethod
    def _load_raw(self) -> Iterable[Mapping[str, Any]]:
        ...


class MappingRecordLoader(RecordLoader):
    """Records already in memory: a sequence, or a {zip: record} mapping."""

    SOURCE = "records"

    def __init__(self, records: Iterable[Mapping[str, Any]] | Mapping[str, Mapping[str, Any]]):
        self.records = records

    def _load_raw(self) -> Iterable[Mapping[str, Any]]:
        if isinstance(self.records, Mapping):
            # Keyed form: the key stands in for a missing "zip" field
            return [{"zip": key, **value} for key, value in self.records.items()]
        return list(self.records)


class JSONRecordLoader(MappingRecordLoader):
    """JSON file holding either an array of records or a {zip: record} object."""

    SOURCE = "json"

    def __init__(self, path: Path | str):
        self.path = Path(path)
        with open(self.path, "r", encoding="utf8") as fh:
            data = json.load(fh)
        if not isinstance(data, (list, dict)):
            raise ValueError(f"{self.path}: expected a JSON array or object, got {type(data).__name__}")
        super().__init__(data)


class CSVRecordLoader(RecordLoader):
    """CSV export in the simplemaps uszips layout (zip, lat, lng, city, state_id, ...)."""

    SOURCE = "csv"

    def __init__(self, path: Path | str, limit: int | None = None):
        self.path = Path(path)
        self.limit = limit

    def _load_raw(self) -> Iterable[Mapping[str, Any]]:
        df = pd.read_csv(self.path, dtype={c: str for c in TEXT_COLUMNS}, nrows=self.limit)
        df.columns = [str(c).strip().strip('"') for c in df.columns]
        # NaN -> None so optional fields validate as missing
        df = df.astype(object).where(pd.notna(df), None)
        return df.to_dict(orient="records")
