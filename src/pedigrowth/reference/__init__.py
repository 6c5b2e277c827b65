"""WHO reference data: table, store and cache."""

from .cache import ReferenceCache, utc_now
from .store import (
    CsvReferenceReader,
    InMemoryReferenceReader,
    ReferenceDatasetReader,
    ReferenceStore,
    row_to_point,
)
from .table import GrowthReferenceTable

__all__ = [
    "CsvReferenceReader",
    "GrowthReferenceTable",
    "InMemoryReferenceReader",
    "ReferenceCache",
    "ReferenceDatasetReader",
    "ReferenceStore",
    "row_to_point",
    "utc_now",
]
