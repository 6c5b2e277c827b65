"""
Growth assessment orchestrator.

Resolves a patient's age and sex, looks up the WHO reference row for that
age, runs LMS -> percentile -> classification, and derives alerts for severe
deviations. Expected gaps come back as results; only a missing patient and
storage failures raise.
"""

import datetime as dt
import logging
import math
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .alerts import evaluate_height_alerts, evaluate_weight_alerts, evaluate_weight_loss
from .classification import (
    classify_height_for_age,
    classify_weight_for_age,
    determine_growth_status,
)
from .config import MAX_PLAUSIBLE_HEIGHT_CM, MAX_PLAUSIBLE_WEIGHT_KG, RESULT_DECIMALS, EngineConfig
from .exceptions import PatientNotFoundError, ReferenceDataError
from .models import (
    ChartType,
    Classification,
    DataGap,
    GapReason,
    GrowthAlert,
    GrowthAssessment,
    GrowthMeasurement,
    GrowthProjection,
    HistorySummary,
    PatientRecord,
    ReferenceMatch,
    ReferenceValues,
    Sex,
    ZScoreResult,
)
from .persistence import AlertRepository, PatientLookup
from .reference import GrowthReferenceTable, ReferenceCache, ReferenceDatasetReader, ReferenceStore, utc_now
from .velocity import growth_projection, measurements_to_frame
from .zscores import lms_zscore, lms_zscore_array, zscore_to_percentile

logger = logging.getLogger(__name__)

Classifier = Callable[[Optional[float]], Classification]


def _has_value(value: Optional[float]) -> bool:
    """Zero, None and non-finite readings all count as no measurement."""
    return bool(value) and math.isfinite(value)


def age_in_days(date_of_birth: dt.date, on: Union[dt.date, dt.datetime]) -> int:
    """Whole days from birth to the measurement, floored."""
    if isinstance(on, dt.datetime):
        born = dt.datetime.combine(date_of_birth, dt.time.min, tzinfo=on.tzinfo)
        return (on - born) // dt.timedelta(days=1)
    return (on - date_of_birth).days


class GrowthAssessmentEngine:
    """
    Per-measurement growth assessment against WHO reference tables.

    Usage:
        engine = GrowthAssessmentEngine.from_reader(reader, patients, alert_repo)
        result = await engine.assess("p1", measurement)
        if result.z_score is not None:
            await engine.check_alerts("p1", result.z_score)

    Attributes:
        weight_reference (ReferenceCache): Weight-for-age table cache.
        height_reference (Optional[ReferenceCache]): Height-for-age table cache, if configured.
    """

    def __init__(
        self,
        patients: PatientLookup,
        weight_reference: ReferenceCache,
        alerts: AlertRepository,
        height_reference: Optional[ReferenceCache] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], dt.datetime] = utc_now,
    ):
        self.patients = patients
        self.weight_reference = weight_reference
        self.height_reference = height_reference
        self.alerts = alerts
        self.config = config or EngineConfig()
        self.clock = clock

    @classmethod
    def from_reader(
        cls,
        reader: ReferenceDatasetReader,
        patients: PatientLookup,
        alerts: AlertRepository,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], dt.datetime] = utc_now,
        with_height: bool = False,
    ) -> "GrowthAssessmentEngine":
        """Wire stores and caches for one dataset reader."""
        config = config or EngineConfig()
        ttl = dt.timedelta(hours=config.reference_ttl_hours)
        weight_cache = ReferenceCache(ReferenceStore(reader, ChartType.WEIGHT_FOR_AGE), ttl=ttl, clock=clock)
        height_cache = None
        if with_height:
            height_cache = ReferenceCache(ReferenceStore(reader, ChartType.HEIGHT_FOR_AGE), ttl=ttl, clock=clock)
        return cls(
            patients,
            weight_cache,
            alerts,
            height_reference=height_cache,
            config=config,
            clock=clock,
        )

    async def _get_patient(self, patient_id: str) -> PatientRecord:
        patient = await self.patients.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    def _resolve_reference(
        self, table: GrowthReferenceTable, sex: Sex, age_days: int
    ) -> Union[ReferenceMatch, DataGap]:
        point = table.find(sex, age_days)
        if point is not None:
            return ReferenceMatch(point=point)

        if self.config.interpolate_missing_ages:
            point = table.interpolate(sex, age_days)
            if point is not None:
                return ReferenceMatch(point=point, interpolated=True)

        covered = table.age_range(sex)
        if covered is None:
            detail = f"no {sex.value} reference rows loaded"
        else:
            detail = (
                f"no {sex.value} reference row for age {age_days} days "
                f"(table covers {covered[0]}-{covered[1]})"
            )
        return DataGap(reason=GapReason.NO_REFERENCE, detail=detail)

    async def _score(
        self,
        patient: PatientRecord,
        value: float,
        measured_on: Union[dt.date, dt.datetime],
        cache: ReferenceCache,
        classifier: Classifier,
    ) -> ZScoreResult:
        table = await cache.get()

        try:
            age_days = age_in_days(patient.date_of_birth, measured_on)
            if age_days < 0:
                logger.warning(
                    f"Measurement for patient {patient.patient_id} is dated before birth ({age_days} days)"
                )

            match = self._resolve_reference(table, patient.sex, age_days)
            if isinstance(match, DataGap):
                logger.debug(f"Patient {patient.patient_id}: {match.detail}")
                return match.to_result()

            point = match.point
            z_score = lms_zscore(value, point.l, point.m, point.s)
            percentile = zscore_to_percentile(z_score)
            classification = classifier(z_score)

            return ZScoreResult(
                z_score=round(z_score, RESULT_DECIMALS),
                percentile=round(percentile, RESULT_DECIMALS),
                classification=classification.classification,
                severity=classification.severity,
                recommendation=classification.recommendation,
                exact_match=not match.interpolated,
                interpolated=match.interpolated,
                reference_values=ReferenceValues.from_point(point),
            )
        except Exception:
            logger.exception(f"Error calculating Z-score for patient {patient.patient_id}")
            return DataGap(reason=GapReason.CALCULATION_ERROR).to_result()

    async def assess(self, patient_id: str, measurement: GrowthMeasurement) -> ZScoreResult:
        """
        Weight-for-age assessment of one measurement.

        Raises:
            PatientNotFoundError: If the patient does not exist.
        """
        patient = await self._get_patient(patient_id)

        if not _has_value(measurement.weight):
            return DataGap(reason=GapReason.NO_WEIGHT).to_result()
        if measurement.weight > MAX_PLAUSIBLE_WEIGHT_KG:
            logger.warning(
                f"Weight {measurement.weight} for patient {patient_id} - may be lbs instead of kg"
            )

        return await self._score(
            patient,
            measurement.weight,
            measurement.date,
            self.weight_reference,
            classify_weight_for_age,
        )

    async def assess_height(self, patient_id: str, measurement: GrowthMeasurement) -> ZScoreResult:
        """
        Height-for-age assessment of one measurement.

        Raises:
            ReferenceDataError: If the engine has no height-for-age reference.
            PatientNotFoundError: If the patient does not exist.
        """
        if self.height_reference is None:
            raise ReferenceDataError("No height-for-age reference configured")
        patient = await self._get_patient(patient_id)

        if not _has_value(measurement.height):
            return DataGap(reason=GapReason.NO_HEIGHT).to_result()
        if measurement.height > MAX_PLAUSIBLE_HEIGHT_CM:
            logger.warning(
                f"Height {measurement.height} for patient {patient_id} - may be mm instead of cm"
            )

        return await self._score(
            patient,
            measurement.height,
            measurement.date,
            self.height_reference,
            classify_height_for_age,
        )

    async def assess_growth(self, patient_id: str, measurement: GrowthMeasurement) -> GrowthAssessment:
        """Weight-for-age, height-for-age when configured, and overall status."""
        weight_for_age = await self.assess(patient_id, measurement)
        height_for_age = None
        if self.height_reference is not None:
            height_for_age = await self.assess_height(patient_id, measurement)

        status = determine_growth_status(
            weight_for_age.z_score,
            height_for_age.z_score if height_for_age is not None else None,
        )
        return GrowthAssessment(
            weight_for_age=weight_for_age,
            height_for_age=height_for_age,
            status=status,
        )

    async def _persist(self, alerts: List[GrowthAlert]) -> List[GrowthAlert]:
        if alerts:
            await self.alerts.add_all(alerts)
            for alert in alerts:
                logger.info(
                    f"{alert.severity.value} {alert.type.value} alert for patient {alert.patient_id}"
                )
        return alerts

    async def check_alerts(self, patient_id: str, z_score: float) -> List[GrowthAlert]:
        """Weight-for-age alerts; a non-empty batch is appended to the alert repository."""
        return await self._persist(evaluate_weight_alerts(patient_id, z_score, self.clock()))

    async def check_height_alerts(self, patient_id: str, z_score: float) -> List[GrowthAlert]:
        return await self._persist(evaluate_height_alerts(patient_id, z_score, self.clock()))

    async def check_velocity_alerts(
        self, patient_id: str, history: Sequence[GrowthMeasurement]
    ) -> List[GrowthAlert]:
        alerts = evaluate_weight_loss(
            patient_id,
            history,
            self.clock(),
            loss_fraction=self.config.rapid_loss_fraction,
            min_days=self.config.min_velocity_days,
        )
        return await self._persist(alerts)

    def invalidate_reference_cache(self) -> None:
        self.weight_reference.invalidate()
        if self.height_reference is not None:
            self.height_reference.invalidate()

    async def score_history(
        self, patient_id: str, measurements: Sequence[GrowthMeasurement]
    ) -> pd.DataFrame:
        """
        Weight-for-age Z-scores for a whole visit history in one vectorized pass.

        Returns a DataFrame sorted by date with columns date, age_days, weight,
        z_score, percentile, classification. Visits without weight or without a
        reference row have NaN z_score and a None classification.
        """
        patient = await self._get_patient(patient_id)
        table = await self.weight_reference.get()

        columns = ["date", "age_days", "weight", "z_score", "percentile", "classification"]
        df = measurements_to_frame(measurements)[["date", "weight"]].copy()
        if df.empty:
            return pd.DataFrame(columns=columns)

        born = pd.Timestamp(patient.date_of_birth)
        if df["date"].dt.tz is not None:
            born = born.tz_localize(df["date"].dt.tz)
        df["age_days"] = ((df["date"] - born) // pd.Timedelta(days=1)).astype(int)

        n = len(df)
        L = np.full(n, np.nan)
        M = np.full(n, np.nan)
        S = np.full(n, np.nan)
        for i, age in enumerate(df["age_days"]):
            try:
                match = self._resolve_reference(table, patient.sex, int(age))
            except ValueError as e:
                logger.warning(f"Skipping visit at age {age} days for patient {patient_id}: {e}")
                continue
            if isinstance(match, ReferenceMatch):
                L[i], M[i], S[i] = match.point.l, match.point.m, match.point.s

        weights = df["weight"].to_numpy(dtype=np.float64)
        z = lms_zscore_array(weights, L, M, S)

        df["z_score"] = np.round(z, RESULT_DECIMALS)
        df["percentile"] = [
            round(zscore_to_percentile(v), RESULT_DECIMALS) if np.isfinite(v) else np.nan for v in z
        ]
        df["classification"] = [
            classify_weight_for_age(float(v)).classification if np.isfinite(v) else None for v in z
        ]
        return df[columns]

    async def project_growth(
        self,
        patient_id: str,
        measurements: Sequence[GrowthMeasurement],
        metric: str = "weight",
        projection_months: int = 12,
    ) -> GrowthProjection:
        """Extrapolate the patient's recent monthly gain; see `growth_projection`."""
        patient = await self._get_patient(patient_id)
        return growth_projection(measurements, patient.date_of_birth, metric, projection_months)


def summarize_history(history: pd.DataFrame) -> HistorySummary:
    """
    Aggregate a `score_history` frame.

    Averages and classification counts cover only visits with a Z-score.
    Average Z is rounded to 3 decimals and average percentile to 1.
    """
    valid = history[history["z_score"].notna()]
    if valid.empty:
        return HistorySummary(total=len(history), valid=0)
    counts = valid["classification"].value_counts()
    return HistorySummary(
        total=len(history),
        valid=len(valid),
        average_z_score=round(float(valid["z_score"].mean()), 3),
        average_percentile=round(float(valid["percentile"].mean()), 1),
        classifications={str(k): int(v) for k, v in counts.items()},
    )
