"""
Growth trend, velocity and projection from a visit history.
"""

import datetime as dt
from typing import Optional, Sequence

import pandas as pd

from .config import (
    BASE_PROJECTION_CONFIDENCE,
    DAYS_PER_MONTH,
    HEIGHT_VELOCITY_RAPID,
    HEIGHT_VELOCITY_SLOW,
    MIN_VELOCITY_DAYS,
    MIN_PROJECTION_CONFIDENCE,
    PROJECTION_CONFIDENCE_DECAY,
    PROJECTION_STEP_MONTHS,
    PROJECTION_VISITS,
    WEIGHT_VELOCITY_RAPID,
    WEIGHT_VELOCITY_SLOW,
)
from .models import (
    GrowthMeasurement,
    GrowthProjection,
    GrowthTrend,
    GrowthVelocity,
    MetricTrend,
    MetricVelocity,
    ProjectedValue,
)


def measurements_to_frame(measurements: Sequence[GrowthMeasurement]) -> pd.DataFrame:
    """
    Visits as a DataFrame sorted by date.

    Columns: date (Timestamp), weight, height, head_circumference, bmi.
    Missing metrics are NaN.
    """
    columns = ["date", "weight", "height", "head_circumference", "bmi"]
    if not measurements:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(
        [
            {
                "date": pd.Timestamp(m.date),
                "weight": m.weight,
                "height": m.height,
                "head_circumference": m.head_circumference,
                "bmi": m.bmi,
            }
            for m in measurements
        ],
        columns=columns,
    )
    for col in columns[1:]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df.sort_values("date", kind="stable").reset_index(drop=True)


def _days_between(start: pd.Timestamp, end: pd.Timestamp) -> float:
    return (end - start).total_seconds() / 86400.0


def _velocity_status(value: float, slow: float, rapid: float) -> str:
    if value < slow:
        return "slow"
    if value > rapid:
        return "rapid"
    return "normal"


def growth_trend(measurements: Sequence[GrowthMeasurement]) -> Optional[GrowthTrend]:
    """
    Gain between the first and last visit.

    Returns None with fewer than two visits. Each metric is reported only when
    both end visits recorded it.
    """
    if len(measurements) < 2:
        return None
    df = measurements_to_frame(measurements)
    first, last = df.iloc[0], df.iloc[-1]
    days = _days_between(first["date"], last["date"])

    def _trend(col: str) -> Optional[MetricTrend]:
        if pd.isna(first[col]) or pd.isna(last[col]):
            return None
        gain = float(last[col] - first[col])
        return MetricTrend(gain=gain, gain_per_day=gain / days if days > 0 else 0.0)

    return GrowthTrend(
        start=first["date"].date(),
        end=last["date"].date(),
        days=days,
        weight=_trend("weight"),
        height=_trend("height"),
    )


def growth_velocity(
    measurements: Sequence[GrowthMeasurement],
    min_days: int = MIN_VELOCITY_DAYS,
) -> Optional[GrowthVelocity]:
    """
    Velocity between the two most recent visits.

    Weight in kg/month, height in cm/month (30.44 days per month). Visits less
    than `min_days` apart give no meaningful velocity and return None.
    """
    if len(measurements) < 2:
        return None
    df = measurements_to_frame(measurements)
    previous, latest = df.iloc[-2], df.iloc[-1]
    days = _days_between(previous["date"], latest["date"])
    if days < min_days:
        return None

    months = days / DAYS_PER_MONTH
    weight = None
    if not (pd.isna(previous["weight"]) or pd.isna(latest["weight"])):
        value = float(latest["weight"] - previous["weight"]) / months
        weight = MetricVelocity(
            value=value,
            unit="kg/month",
            status=_velocity_status(value, WEIGHT_VELOCITY_SLOW, WEIGHT_VELOCITY_RAPID),
        )

    height = None
    if not (pd.isna(previous["height"]) or pd.isna(latest["height"])):
        value = float(latest["height"] - previous["height"]) / months
        height = MetricVelocity(
            value=value,
            unit="cm/month",
            status=_velocity_status(value, HEIGHT_VELOCITY_SLOW, HEIGHT_VELOCITY_RAPID),
        )

    return GrowthVelocity(
        start=previous["date"].date(),
        end=latest["date"].date(),
        days=days,
        weight=weight,
        height=height,
    )


def growth_projection(
    measurements: Sequence[GrowthMeasurement],
    date_of_birth: dt.date,
    metric: str = "weight",
    projection_months: int = 12,
) -> GrowthProjection:
    """
    Extrapolate a metric from its mean monthly gain over the recent visits.

    The gain is averaged over consecutive pairs of the last three visits that
    recorded `metric`; pairs at the same age are skipped but still count in the
    divisor. Projections are made every 3 months starting one month after the
    latest visit, each with confidence 0.7 - 0.05 * months ahead (floor 0.3).
    Overall confidence is "moderate" for a positive gain, "low" otherwise.
    """
    if metric not in ("weight", "height", "head_circumference", "bmi"):
        raise ValueError(f"Unknown metric: {metric}")
    if projection_months < 1:
        raise ValueError(f"projection_months must be at least 1, got {projection_months}")

    df = measurements_to_frame(measurements)
    df = df[df[metric].notna()]
    if len(df) < 2:
        return GrowthProjection(metric=metric, message="Insufficient data for projection")

    recent = df.tail(PROJECTION_VISITS)
    born = pd.Timestamp(date_of_birth)
    if recent["date"].dt.tz is not None:
        born = born.tz_localize(recent["date"].dt.tz)
    ages = ((recent["date"] - born).dt.total_seconds() / 86400.0 / DAYS_PER_MONTH).to_numpy()
    values = recent[metric].to_numpy(dtype=float)

    total = 0.0
    for i in range(1, len(values)):
        age_diff = ages[i] - ages[i - 1]
        if age_diff == 0:
            continue
        total += (values[i] - values[i - 1]) / age_diff
    average = total / max(len(values) - 1, 1)

    current_age, current_value = float(ages[-1]), float(values[-1])
    projections = [
        ProjectedValue(
            age_months=current_age + months,
            projected_value=current_value + average * months,
            confidence=max(
                BASE_PROJECTION_CONFIDENCE - PROJECTION_CONFIDENCE_DECAY * months,
                MIN_PROJECTION_CONFIDENCE,
            ),
        )
        for months in range(1, projection_months + 1, PROJECTION_STEP_MONTHS)
    ]
    return GrowthProjection(
        metric=metric,
        projections=projections,
        confidence="moderate" if average > 0 else "low",
        current_age_months=current_age,
        current_value=current_value,
        average_monthly_growth=float(average),
    )
