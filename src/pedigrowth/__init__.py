"""
pedigrowth: WHO growth-standard assessment for pediatric measurements.

Weight-for-age (and optionally height-for-age) Z-scores via the LMS method,
percentiles, nutritional classification and alerts for severe deviations.
"""

from .classification import classify_height_for_age, classify_weight_for_age, determine_growth_status
from .config import EngineConfig
from .engine import GrowthAssessmentEngine, age_in_days, summarize_history
from .exceptions import (
    GrowthEngineError,
    InvalidLMSParametersError,
    PatientNotFoundError,
    ReferenceDataError,
)
from .models import (
    AlertSeverity,
    AlertType,
    ChartType,
    DataGap,
    GrowthAlert,
    GrowthAssessment,
    GrowthMeasurement,
    GrowthProjection,
    GrowthStatus,
    HistorySummary,
    LMSReferencePoint,
    PatientRecord,
    Severity,
    Sex,
    ZScoreResult,
)
from .reference import GrowthReferenceTable, ReferenceCache, ReferenceStore
from .velocity import growth_projection, growth_trend, growth_velocity
from .zscores import lms_zscore, percentile_to_zscore, value_at_zscore, zscore_to_percentile

__version__ = "0.1.0"

__all__ = [
    "AlertSeverity",
    "AlertType",
    "ChartType",
    "DataGap",
    "EngineConfig",
    "GrowthAlert",
    "GrowthAssessment",
    "GrowthAssessmentEngine",
    "GrowthEngineError",
    "GrowthMeasurement",
    "GrowthProjection",
    "GrowthReferenceTable",
    "GrowthStatus",
    "HistorySummary",
    "InvalidLMSParametersError",
    "LMSReferencePoint",
    "PatientNotFoundError",
    "PatientRecord",
    "ReferenceCache",
    "ReferenceDataError",
    "ReferenceStore",
    "Severity",
    "Sex",
    "ZScoreResult",
    "age_in_days",
    "classify_height_for_age",
    "classify_weight_for_age",
    "determine_growth_status",
    "growth_projection",
    "growth_trend",
    "growth_velocity",
    "lms_zscore",
    "percentile_to_zscore",
    "summarize_history",
    "value_at_zscore",
    "zscore_to_percentile",
]
