"""
Configuration constants for the growth assessment engine.
"""

from pathlib import Path

from pydantic import BaseModel, field_validator

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
REFERENCE_DIR = DATA_DIR / "reference"
ALERTS_DIR = DATA_DIR / "alerts"

# Reference data
REFERENCE_TTL_HOURS = 24
REFERENCE_COLUMNS = [
    "age_days",
    "sex",
    "l",
    "m",
    "s",
    "sd0",
    "sd1neg",
    "sd1pos",
    "sd2neg",
    "sd2pos",
    "sd3neg",
    "sd3pos",
]

SEX_ALIASES = {
    "M": "MALE",
    "MALE": "MALE",
    "BOY": "MALE",
    "1": "MALE",
    "F": "FEMALE",
    "FEMALE": "FEMALE",
    "GIRL": "FEMALE",
    "2": "FEMALE",
}

# Percentile conversion
PERCENTILE_FLOOR = 0.01
PERCENTILE_CEILING = 99.99
PERCENTILE_SATURATION_Z = 6.0
RESULT_DECIMALS = 2

# Alert thresholds (|Z| > 3)
SEVERE_LOW_Z = -3.0
SEVERE_HIGH_Z = 3.0

# Velocity
DAYS_PER_MONTH = 30.44
MIN_VELOCITY_DAYS = 7
WEIGHT_VELOCITY_SLOW = 0.1  # kg/month
WEIGHT_VELOCITY_RAPID = 0.5  # kg/month
HEIGHT_VELOCITY_SLOW = 0.3  # cm/month
HEIGHT_VELOCITY_RAPID = 1.5  # cm/month
RAPID_LOSS_FRACTION = 0.05

# Growth projection
PROJECTION_VISITS = 3
PROJECTION_STEP_MONTHS = 3
BASE_PROJECTION_CONFIDENCE = 0.7
PROJECTION_CONFIDENCE_DECAY = 0.05
MIN_PROJECTION_CONFIDENCE = 0.3

# Plausibility limits used for unit warnings
MAX_PLAUSIBLE_WEIGHT_KG = 150.0
MAX_PLAUSIBLE_HEIGHT_CM = 200.0


class EngineConfig(BaseModel):
    """
    Runtime configuration for GrowthAssessmentEngine.

    Attributes:
        reference_ttl_hours (float): How long a loaded reference table stays fresh.
        interpolate_missing_ages (bool): Fill ages missing from the reference table by
            linear interpolation between the bracketing rows. Off by default; an exact
            age match is required otherwise.
        rapid_loss_fraction (float): Fractional weight loss between two visits that
            raises a RAPID_WEIGHT_LOSS alert.
        min_velocity_days (int): Minimum spacing between visits for velocity and
            weight-loss checks.
    """

    reference_ttl_hours: float = REFERENCE_TTL_HOURS
    interpolate_missing_ages: bool = False
    rapid_loss_fraction: float = RAPID_LOSS_FRACTION
    min_velocity_days: int = MIN_VELOCITY_DAYS

    @field_validator("reference_ttl_hours")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        """TTL must be positive."""
        if v <= 0:
            raise ValueError("reference_ttl_hours must be positive")
        return v

    @field_validator("rapid_loss_fraction")
    @classmethod
    def validate_loss_fraction(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("rapid_loss_fraction must be between 0 and 1")
        return v

    @field_validator("min_velocity_days")
    @classmethod
    def validate_min_days(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_velocity_days must be at least 1")
        return v
