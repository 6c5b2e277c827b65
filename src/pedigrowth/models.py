"""
Data model for the growth assessment engine.

Reference rows, measurements, results and alerts are pydantic models so that
collaborator payloads are validated once at the boundary. Reference points and
alerts are frozen: they are never mutated after creation.
"""

import datetime as dt
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import SEX_ALIASES


class Sex(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"

    @classmethod
    def parse(cls, value: object) -> "Sex":
        """Normalise 'M', 'male', 'Boy', 1, ... to a Sex member."""
        if isinstance(value, Sex):
            return value
        key = str(value).strip().upper()
        if key.endswith(".0"):
            key = key[:-2]
        try:
            return cls(SEX_ALIASES[key])
        except KeyError:
            raise ValueError(
                f"Invalid sex value: {value!r}. Must be one of: M, F, Male, Female"
            ) from None


class Severity(str, Enum):
    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class AlertType(str, Enum):
    SEVERE_UNDERWEIGHT = "SEVERE_UNDERWEIGHT"
    SEVERE_STUNTING = "SEVERE_STUNTING"
    OBESE = "OBESE"
    RAPID_WEIGHT_LOSS = "RAPID_WEIGHT_LOSS"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class GrowthStatus(str, Enum):
    NORMAL = "NORMAL"
    UNDERWEIGHT = "UNDERWEIGHT"
    STUNTED = "STUNTED"
    WASTED = "WASTED"
    OVERWEIGHT = "OVERWEIGHT"
    OBESE = "OBESE"


class ChartType(str, Enum):
    WEIGHT_FOR_AGE = "WFA"
    HEIGHT_FOR_AGE = "HFA"


class GapReason(str, Enum):
    NO_WEIGHT = "NO_WEIGHT"
    NO_HEIGHT = "NO_HEIGHT"
    NO_REFERENCE = "NO_REFERENCE"
    CALCULATION_ERROR = "CALCULATION_ERROR"


class LMSReferencePoint(BaseModel):
    """
    One WHO growth-standard row.

    Identity is (sex, age_days). L, M and S are required; M > 0 and S > 0 are
    checked by the calculator when the row is used, so one bad row only
    affects the assessments that hit it.
    """

    model_config = ConfigDict(frozen=True)

    age_days: int = Field(ge=0)
    sex: Sex
    l: float
    m: float
    s: float
    sd0: float = 0.0
    sd1neg: float = 0.0
    sd1pos: float = 0.0
    sd2neg: float = 0.0
    sd2pos: float = 0.0
    sd3neg: float = 0.0
    sd3pos: float = 0.0
    sd4neg: Optional[float] = None
    sd4pos: Optional[float] = None

    @field_validator("sex", mode="before")
    @classmethod
    def normalise_sex(cls, v: object) -> Sex:
        return Sex.parse(v)

    @property
    def key(self) -> tuple[Sex, int]:
        return (self.sex, self.age_days)


class GrowthMeasurement(BaseModel):
    """A single visit measurement. Any metric may be absent."""

    patient_id: str
    date: Union[dt.datetime, dt.date]
    weight: Optional[float] = None
    height: Optional[float] = None
    head_circumference: Optional[float] = None
    bmi: Optional[float] = None


class PatientRecord(BaseModel):
    """What the engine needs to know about a patient."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    date_of_birth: dt.date
    sex: Sex

    @field_validator("sex", mode="before")
    @classmethod
    def normalise_sex(cls, v: object) -> Sex:
        return Sex.parse(v)


class ReferenceValues(BaseModel):
    median: float = 0.0
    sd1neg: float = 0.0
    sd1pos: float = 0.0
    sd2neg: float = 0.0
    sd2pos: float = 0.0
    sd3neg: float = 0.0
    sd3pos: float = 0.0

    @classmethod
    def from_point(cls, point: LMSReferencePoint) -> "ReferenceValues":
        return cls(
            median=point.m,
            sd1neg=point.sd1neg,
            sd1pos=point.sd1pos,
            sd2neg=point.sd2neg,
            sd2pos=point.sd2pos,
            sd3neg=point.sd3neg,
            sd3pos=point.sd3pos,
        )


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    classification: str
    severity: Severity
    recommendation: str


class ZScoreResult(BaseModel):
    """Outcome of one assessment. Produced fresh per call, never persisted."""

    z_score: Optional[float] = None
    percentile: Optional[float] = None
    classification: str
    severity: Severity
    recommendation: str
    exact_match: bool = False
    interpolated: bool = False
    reference_values: ReferenceValues = Field(default_factory=ReferenceValues)


class GrowthAlert(BaseModel):
    """An alert for a severe deviation. Append-only once persisted."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    z_score: Optional[float] = None
    date: dt.datetime


_GAP_TEXT = {
    GapReason.NO_WEIGHT: ("No weight data", "Weight measurement required"),
    GapReason.NO_HEIGHT: ("No height data", "Height measurement required"),
    GapReason.NO_REFERENCE: ("No reference data", "Growth reference data unavailable"),
    GapReason.CALCULATION_ERROR: ("Calculation error", "Unable to calculate growth metrics"),
}


class DataGap(BaseModel):
    """An expected absence of data: reported, never raised."""

    model_config = ConfigDict(frozen=True)

    reason: GapReason
    detail: str = ""

    def to_result(self) -> ZScoreResult:
        classification, recommendation = _GAP_TEXT[self.reason]
        return ZScoreResult(
            classification=classification,
            severity=Severity.NORMAL,
            recommendation=recommendation,
        )


class ReferenceMatch(BaseModel):
    """A reference row resolved for a (sex, age) lookup."""

    model_config = ConfigDict(frozen=True)

    point: LMSReferencePoint
    interpolated: bool = False


class GrowthAssessment(BaseModel):
    weight_for_age: ZScoreResult
    height_for_age: Optional[ZScoreResult] = None
    status: GrowthStatus


class MetricTrend(BaseModel):
    gain: float
    gain_per_day: float


class GrowthTrend(BaseModel):
    start: dt.date
    end: dt.date
    days: float
    weight: Optional[MetricTrend] = None
    height: Optional[MetricTrend] = None


class MetricVelocity(BaseModel):
    value: float
    unit: str
    status: str


class GrowthVelocity(BaseModel):
    start: dt.date
    end: dt.date
    days: float
    weight: Optional[MetricVelocity] = None
    height: Optional[MetricVelocity] = None


class HistorySummary(BaseModel):
    """Aggregate over a scored visit history. Averages cover valid visits only."""

    total: int
    valid: int
    average_z_score: Optional[float] = None
    average_percentile: Optional[float] = None
    classifications: Dict[str, int] = Field(default_factory=dict)


class ProjectedValue(BaseModel):
    age_months: float
    projected_value: float
    confidence: float


class GrowthProjection(BaseModel):
    metric: str
    projections: List[ProjectedValue] = Field(default_factory=list)
    confidence: str = "low"
    message: Optional[str] = None
    current_age_months: float = 0.0
    current_value: float = 0.0
    average_monthly_growth: float = 0.0
