"""Collaborator interfaces and adapters: patient lookup and alert persistence."""

import asyncio
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Union

import pandas as pd

from .config import ALERTS_DIR
from .models import GrowthAlert, PatientRecord

logger = logging.getLogger(__name__)

PATIENT_COLUMNS = ["patient_id", "date_of_birth", "sex"]


class PatientLookup(Protocol):
    async def get_patient(self, patient_id: str) -> Optional[PatientRecord]:
        ...


class AlertRepository(Protocol):
    async def add_all(self, alerts: Sequence[GrowthAlert]) -> None:
        ...


class PatientDirectory:
    """In-memory patient lookup, optionally loaded from a DataFrame or CSV."""

    def __init__(self, patients: Iterable[PatientRecord] = ()):
        self._patients: Dict[str, PatientRecord] = {p.patient_id: p for p in patients}

    async def get_patient(self, patient_id: str) -> Optional[PatientRecord]:
        return self._patients.get(patient_id)

    def __len__(self) -> int:
        return len(self._patients)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "PatientDirectory":
        """
        Build a directory from patient rows.

        Parameters
        ----------
        df : pd.DataFrame
            Must contain patient_id, date_of_birth and sex columns.
            Sex may be M/F or Male/Female.

        Returns
        -------
        PatientDirectory

        Raises
        ------
        ValueError
            If required columns are missing or a row is invalid
        """
        missing_cols = set(PATIENT_COLUMNS) - set(df.columns)
        if missing_cols:
            raise ValueError(f"Missing required columns: {missing_cols}")
        if df.empty:
            return cls()

        dob = pd.to_datetime(df["date_of_birth"], errors="coerce")
        if dob.isna().any():
            bad = df.loc[dob.isna(), "patient_id"].tolist()
            raise ValueError(f"Invalid date_of_birth for patients: {bad}")

        patients = [
            PatientRecord(patient_id=str(pid), date_of_birth=born.date(), sex=sex)
            for pid, born, sex in zip(df["patient_id"], dob, df["sex"])
        ]
        return cls(patients)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "PatientDirectory":
        return cls.from_dataframe(pd.read_csv(path))


class InMemoryAlertRepository:
    """Append-only alert list. Used by tests and the CLI dry-run."""

    def __init__(self):
        self.alerts: List[GrowthAlert] = []
        self.batches = 0

    async def add_all(self, alerts: Sequence[GrowthAlert]) -> None:
        self.alerts.extend(alerts)
        self.batches += 1


class JsonAlertRepository:
    """
    Append-only alert store with one JSON file per patient.

    Existing entries are never rewritten in place: each batch reads the file,
    appends, and swaps a temporary file into place.
    """

    def __init__(self, directory: Union[str, Path] = ALERTS_DIR):
        self.directory = Path(directory)
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        # an asyncio.Lock is bound to the loop it first waits on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def get_alert_file_path(self, patient_id: str) -> Path:
        if patient_id in ("", ".", "..") or "/" in patient_id or "\\" in patient_id:
            raise ValueError(f"Invalid patient_id for an alert file name: {patient_id!r}")
        return self.directory / f"{patient_id}_alerts.json"

    def _read(self, patient_id: str) -> List[dict]:
        path = self.get_alert_file_path(patient_id)
        if not path.exists():
            return []
        with open(path, "r") as f:
            return json.load(f)

    def _append(self, patient_id: str, alerts: Sequence[GrowthAlert]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        records = self._read(patient_id)
        records.extend(alert.model_dump(mode="json") for alert in alerts)

        file_path = self.get_alert_file_path(patient_id)
        temp_path = file_path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(records, f, indent=2)
        temp_path.replace(file_path)

    async def add_all(self, alerts: Sequence[GrowthAlert]) -> None:
        by_patient: Dict[str, List[GrowthAlert]] = defaultdict(list)
        for alert in alerts:
            by_patient[alert.patient_id].append(alert)
        for patient_id in by_patient:
            self.get_alert_file_path(patient_id)

        async with self._get_lock():
            for patient_id, batch in by_patient.items():
                await asyncio.to_thread(self._append, patient_id, batch)
                logger.info(f"Persisted {len(batch)} growth alert(s) for patient {patient_id}")

    async def list_alerts(self, patient_id: str) -> List[GrowthAlert]:
        records = await asyncio.to_thread(self._read, patient_id)
        return [GrowthAlert.model_validate(record) for record in records]
