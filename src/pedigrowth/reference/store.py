"""
Reference data store: reads WHO growth-standard rows for one chart type and
builds a GrowthReferenceTable.
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import pandas as pd
from pydantic import ValidationError

from ..config import REFERENCE_COLUMNS
from ..exceptions import ReferenceDataError
from ..models import ChartType, LMSReferencePoint
from .table import GrowthReferenceTable

logger = logging.getLogger(__name__)

LMS_FIELDS = ("l", "m", "s")
SD_FIELDS = ("sd0", "sd1neg", "sd1pos", "sd2neg", "sd2pos", "sd3neg", "sd3pos")
OPTIONAL_SD_FIELDS = ("sd4neg", "sd4pos")


class ReferenceDatasetReader(Protocol):
    """Source of raw reference rows (database, file, ...)."""

    async def fetch_rows(self, chart_type: ChartType) -> Sequence[Mapping[str, Any]]:
        ...


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(value)
    except TypeError:
        return False


def row_to_point(row: Mapping[str, Any]) -> Optional[LMSReferencePoint]:
    """
    Convert one raw row into a reference point.

    Returns None when L, M or S is missing: such rows cannot support the LMS
    transform and are skipped rather than defaulted. Missing SD bands become
    0.0, missing sd4 bands stay None.

    Raises:
        ReferenceDataError: If the row is otherwise malformed (bad sex, age).
    """
    if any(_is_missing(row.get(field)) for field in LMS_FIELDS):
        return None

    payload: Dict[str, Any] = {
        "age_days": row.get("age_days"),
        "sex": row.get("sex"),
        "l": row["l"],
        "m": row["m"],
        "s": row["s"],
    }
    for field in SD_FIELDS:
        value = row.get(field)
        payload[field] = 0.0 if _is_missing(value) else value
    for field in OPTIONAL_SD_FIELDS:
        value = row.get(field)
        payload[field] = None if _is_missing(value) else value

    try:
        if not _is_missing(payload["age_days"]):
            payload["age_days"] = int(payload["age_days"])
        return LMSReferencePoint(**payload)
    except (ValidationError, ValueError) as e:
        raise ReferenceDataError(f"Malformed reference row {dict(row)!r}: {e}") from e


class ReferenceStore:
    """
    Loads the reference table for a fixed chart type.

    Storage errors raised by the reader propagate unchanged; the caller owns
    the retry policy.
    """

    def __init__(
        self,
        reader: ReferenceDatasetReader,
        chart_type: ChartType = ChartType.WEIGHT_FOR_AGE,
    ):
        self.reader = reader
        self.chart_type = chart_type

    async def load(self) -> GrowthReferenceTable:
        rows = await self.reader.fetch_rows(self.chart_type)

        points: List[LMSReferencePoint] = []
        skipped = 0
        for row in rows:
            point = row_to_point(row)
            if point is None:
                skipped += 1
                continue
            points.append(point)

        if skipped:
            logger.warning(
                f"Skipped {skipped} {self.chart_type.value} reference rows with missing L/M/S"
            )

        table = GrowthReferenceTable.from_points(points)
        logger.info(f"Loaded {self.chart_type.value} reference table: {table!r}")
        return table


class InMemoryReferenceReader:
    """Reader over rows already in memory, keyed by chart type."""

    def __init__(self, rows: Union[Sequence[Mapping[str, Any]], Mapping[ChartType, Sequence[Mapping[str, Any]]]]):
        if isinstance(rows, Mapping):
            self._rows = {ChartType(k): list(v) for k, v in rows.items()}
        else:
            self._rows = {ChartType.WEIGHT_FOR_AGE: list(rows)}
        self.fetch_count = 0

    async def fetch_rows(self, chart_type: ChartType) -> Sequence[Mapping[str, Any]]:
        self.fetch_count += 1
        return list(self._rows.get(chart_type, []))


class CsvReferenceReader:
    """
    Reader for a reference CSV with columns age_days, sex, l, m, s, sd0..sd3pos
    and optionally sd4neg, sd4pos and chart_type.

    Without a chart_type column every row is taken to belong to the requested
    chart. Parsing runs in a worker thread.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self, chart_type: ChartType) -> List[Dict[str, Any]]:
        df = pd.read_csv(self.path)
        df.columns = [str(col).strip().lower() for col in df.columns]

        required = {"age_days", "sex", *LMS_FIELDS}
        missing_cols = required - set(df.columns)
        if missing_cols:
            raise ReferenceDataError(
                f"{self.path.name} missing columns: {sorted(missing_cols)}. Required={sorted(required)}"
            )

        absent_bands = [col for col in REFERENCE_COLUMNS if col not in df.columns]
        if absent_bands:
            logger.warning(f"{self.path.name}: no {absent_bands} columns, SD bands default to 0")

        if "chart_type" in df.columns:
            df = df[df["chart_type"].astype(str).str.upper() == chart_type.value]

        df = df.astype(object).where(pd.notna(df), None)
        return df.to_dict("records")

    async def fetch_rows(self, chart_type: ChartType) -> Sequence[Mapping[str, Any]]:
        return await asyncio.to_thread(self._read, chart_type)
