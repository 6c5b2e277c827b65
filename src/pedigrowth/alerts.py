"""
Alert rules for severe growth deviations.

These rules run separately from classification even where they share a
boundary (|Z| > 3): classification describes a measurement, alerts feed the
append-only audit trail.
"""

import datetime as dt
from typing import List, Sequence

from .config import MIN_VELOCITY_DAYS, RAPID_LOSS_FRACTION, SEVERE_HIGH_Z, SEVERE_LOW_Z
from .models import AlertSeverity, AlertType, GrowthAlert, GrowthMeasurement
from .velocity import measurements_to_frame


def evaluate_weight_alerts(
    patient_id: str, z_score: float, now: dt.datetime
) -> List[GrowthAlert]:
    """At most one alert: critical SEVERE_UNDERWEIGHT below -3, warning OBESE above 3."""
    if z_score < SEVERE_LOW_Z:
        return [
            GrowthAlert(
                patient_id=patient_id,
                type=AlertType.SEVERE_UNDERWEIGHT,
                severity=AlertSeverity.CRITICAL,
                message="Severe underweight detected - immediate intervention required",
                z_score=z_score,
                date=now,
            )
        ]
    if z_score > SEVERE_HIGH_Z:
        return [
            GrowthAlert(
                patient_id=patient_id,
                type=AlertType.OBESE,
                severity=AlertSeverity.WARNING,
                message="Severe obesity detected - nutritional counseling needed",
                z_score=z_score,
                date=now,
            )
        ]
    return []


def evaluate_height_alerts(
    patient_id: str, z_score: float, now: dt.datetime
) -> List[GrowthAlert]:
    if z_score < SEVERE_LOW_Z:
        return [
            GrowthAlert(
                patient_id=patient_id,
                type=AlertType.SEVERE_STUNTING,
                severity=AlertSeverity.CRITICAL,
                message="Severe stunting detected - specialist referral recommended",
                z_score=z_score,
                date=now,
            )
        ]
    return []


def evaluate_weight_loss(
    patient_id: str,
    measurements: Sequence[GrowthMeasurement],
    now: dt.datetime,
    loss_fraction: float = RAPID_LOSS_FRACTION,
    min_days: int = MIN_VELOCITY_DAYS,
) -> List[GrowthAlert]:
    """
    RAPID_WEIGHT_LOSS when the latest weight is at least `loss_fraction` below
    the most recent earlier weight taken `min_days` or more before it.
    """
    df = measurements_to_frame(measurements)
    df = df[df["weight"].notna() & (df["weight"] > 0)]
    if len(df) < 2:
        return []

    latest = df.iloc[-1]
    cutoff = latest["date"] - dt.timedelta(days=min_days)
    earlier = df[df["date"] <= cutoff]
    if earlier.empty:
        return []
    previous = earlier.iloc[-1]

    loss = (previous["weight"] - latest["weight"]) / previous["weight"]
    if loss < loss_fraction:
        return []

    days = (latest["date"] - previous["date"]).days
    return [
        GrowthAlert(
            patient_id=patient_id,
            type=AlertType.RAPID_WEIGHT_LOSS,
            severity=AlertSeverity.WARNING,
            message=f"Weight dropped {loss * 100:.1f}% in {days} days - evaluate for acute illness or feeding problems",
            z_score=None,
            date=now,
        )
    ]

