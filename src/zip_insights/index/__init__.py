"""
- Models: ZipRecord, NearbyZip, LoadReport, IndexStats
- Records: Record store with state / city / county indices
- Spatial: Grid-bucketed radius and bounding-box search
- Loaders: Registered record sources (csv, json, records)
- ZipIndex: Facade combining all of the above
"""

from .models import (
    ZipRecord,
    GridStub,
    NearbyZip,
    RejectedRecord,
    LoadReport,
    IndexStats,
    normalize_zip,
)

from .records import RecordStore

from .spatial import (
    SpatialGridIndex,
    GRID_SIZE,
    grid_key,
)

from .loaders import (
    RecordLoader,
    MappingRecordLoader,
    JSONRecordLoader,
    CSVRecordLoader,
)

from .zip_index import ZipIndex

__all__ = [
    # Models
    "ZipRecord",
    "GridStub",
    "NearbyZip",
    "RejectedRecord",
    "LoadReport",
    "IndexStats",
    "normalize_zip",
    # Records
    "RecordStore",
    # Spatial
    "SpatialGridIndex",
    "GRID_SIZE",
    "grid_key",
    # Loaders
    "RecordLoader",
    "MappingRecordLoader",
    "JSONRecordLoader",
    "CSVRecordLoader",
    # Facade
    "ZipIndex",
]
