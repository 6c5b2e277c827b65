"""
Clinical classification of growth Z-scores.

Cutoffs are applied most-severe first. Boundaries are inclusive exactly as in
the WHO tiers: -3.0 is Moderate Underweight, 1.0 is Normal Weight.
"""

import math
from typing import Optional

from .models import Classification, GrowthStatus, Severity

UNABLE_TO_ASSESS = Classification(
    classification="Unable to assess",
    severity=Severity.NORMAL,
    recommendation="Please verify age and measurement data",
)

SEVERE_UNDERWEIGHT = Classification(
    classification="Severe Underweight",
    severity=Severity.SEVERE,
    recommendation="Urgent medical assessment required. Consider referral to pediatric nutrition specialist.",
)
MODERATE_UNDERWEIGHT = Classification(
    classification="Moderate Underweight",
    severity=Severity.MODERATE,
    recommendation="Nutritional intervention needed. Monitor growth closely and provide dietary counseling.",
)
MILD_UNDERWEIGHT = Classification(
    classification="Mild Underweight",
    severity=Severity.MILD,
    recommendation="Monitor growth pattern. Provide nutritional education and follow up in 1 month.",
)
NORMAL_WEIGHT = Classification(
    classification="Normal Weight",
    severity=Severity.NORMAL,
    recommendation="Continue current feeding practices. Regular growth monitoring recommended.",
)
OVERWEIGHT = Classification(
    classification="Overweight",
    severity=Severity.MILD,
    recommendation="Monitor growth pattern. Encourage balanced diet and physical activity.",
)
OBESE = Classification(
    classification="Obese",
    severity=Severity.MODERATE,
    recommendation="Nutritional counseling required. Assess dietary habits and physical activity levels.",
)
SEVERELY_OBESE = Classification(
    classification="Severely Obese",
    severity=Severity.SEVERE,
    recommendation="Urgent medical assessment. Comprehensive management plan needed.",
)

SEVERELY_STUNTED = Classification(
    classification="Severely Stunted",
    severity=Severity.SEVERE,
    recommendation="Urgent assessment for chronic malnutrition or underlying disease. Refer to pediatric specialist.",
)
STUNTED = Classification(
    classification="Stunted",
    severity=Severity.MODERATE,
    recommendation="Evaluate diet and feeding history. Re-measure length/height and follow up in 1 month.",
)
NORMAL_HEIGHT = Classification(
    classification="Normal Height",
    severity=Severity.NORMAL,
    recommendation="Regular growth monitoring recommended.",
)
VERY_TALL = Classification(
    classification="Very Tall",
    severity=Severity.MILD,
    recommendation="Usually not a concern. Consider endocrine evaluation if parents are of average height.",
)


def _require_number(z_score: float) -> None:
    if math.isnan(z_score):
        raise ValueError("Cannot classify a NaN Z-score")


def classify_weight_for_age(z_score: Optional[float]) -> Classification:
    """
    Classify a weight-for-age Z-score.

    | Z-score range | classification       | severity |
    |---------------|----------------------|----------|
    | Z < -3        | Severe Underweight   | severe   |
    | -3 <= Z < -2  | Moderate Underweight | moderate |
    | -2 <= Z < -1  | Mild Underweight     | mild     |
    | -1 <= Z <= 1  | Normal Weight        | normal   |
    | 1 < Z <= 2    | Overweight           | mild     |
    | 2 < Z <= 3    | Obese                | moderate |
    | Z > 3         | Severely Obese       | severe   |

    None means no usable measurement or reference; the result is a data-quality
    signal ("Unable to assess"), not a clinical judgement. NaN is rejected
    with ValueError rather than falling through to a tier.
    """
    if z_score is None:
        return UNABLE_TO_ASSESS
    _require_number(z_score)
    if z_score < -3:
        return SEVERE_UNDERWEIGHT
    if z_score < -2:
        return MODERATE_UNDERWEIGHT
    if z_score < -1:
        return MILD_UNDERWEIGHT
    if z_score <= 1:
        return NORMAL_WEIGHT
    if z_score <= 2:
        return OVERWEIGHT
    if z_score <= 3:
        return OBESE
    return SEVERELY_OBESE


def classify_height_for_age(z_score: Optional[float]) -> Classification:
    """Classify a height-for-age Z-score (stunting tiers)."""
    if z_score is None:
        return UNABLE_TO_ASSESS
    _require_number(z_score)
    if z_score < -3:
        return SEVERELY_STUNTED
    if z_score < -2:
        return STUNTED
    if z_score <= 3:
        return NORMAL_HEIGHT
    return VERY_TALL


def determine_growth_status(
    weight_z: Optional[float],
    height_z: Optional[float] = None,
    bmi_z: Optional[float] = None,
) -> GrowthStatus:
    """
    Overall growth status from whichever Z-scores are available.

    BMI-for-age takes precedence, then weight-for-age, then a stunting check
    on height-for-age.
    """
    if bmi_z is not None:
        if bmi_z < -2:
            return GrowthStatus.WASTED
        if bmi_z > 3:
            return GrowthStatus.OBESE
        if bmi_z > 2:
            return GrowthStatus.OVERWEIGHT
        return GrowthStatus.NORMAL

    if weight_z is not None:
        if weight_z < -2:
            return GrowthStatus.UNDERWEIGHT
        if weight_z > 3:
            return GrowthStatus.OBESE
        if weight_z > 2:
            return GrowthStatus.OVERWEIGHT

    if height_z is not None and height_z < -2:
        return GrowthStatus.STUNTED

    return GrowthStatus.NORMAL
