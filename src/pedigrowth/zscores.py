"""
Z-Score and Percentile Utilities for Growth Metrics

LMS (Box-Cox) transformation of anthropometric measurements against WHO
reference rows, its inverse, and conversion between Z-scores and percentiles.

References:
- Cole, T.J. (1990). "The LMS method for constructing normalized growth standards."
  European Journal of Clinical Nutrition, 44(1), 45-60.
- Abramowitz, M. and Stegun, I.A. (1964). Handbook of Mathematical Functions, 7.1.26.
"""

import math

import numpy as np
from numba import jit
from scipy import stats

from .config import PERCENTILE_CEILING, PERCENTILE_FLOOR, PERCENTILE_SATURATION_Z
from .exceptions import InvalidLMSParametersError

# Abramowitz-Stegun 7.1.26 coefficients (max abs error 1.5e-7)
_AS_P = 0.3275911
_AS_A1 = 0.254829592
_AS_A2 = -0.284496736
_AS_A3 = 1.421413741
_AS_A4 = -1.453152027
_AS_A5 = 1.061405429


def lms_zscore(value: float, l: float, m: float, s: float) -> float:
    """
    Calculate the LMS Z-score of a single measurement.

    For L != 0: z = ((X/M)^L - 1) / (L * S)
    For L == 0: z = ln(X/M) / S, the logarithmic limit of the Box-Cox family.

    Args:
        value: Observed measurement (kg or cm)
        l: Box-Cox power
        m: Median at age/sex
        s: Coefficient of variation at age/sex

    Returns:
        Z-score (0 at the median)

    Raises:
        InvalidLMSParametersError: If M <= 0, S <= 0 or any parameter is not finite.
            Never clamped.
        ValueError: If the measurement is not a positive finite number.
    """
    if not (math.isfinite(l) and math.isfinite(m) and math.isfinite(s)) or m <= 0 or s <= 0:
        raise InvalidLMSParametersError(l, m, s)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Measurement must be positive and finite, got {value}")

    if l == 0:
        return math.log(value / m) / s
    return ((value / m) ** l - 1.0) / (l * s)


@jit(nopython=True, cache=True)
def lms_zscore_array(
    X: np.ndarray, L: np.ndarray, M: np.ndarray, S: np.ndarray
) -> np.ndarray:
    """
    Vectorized LMS Z-scores for a batch of measurements.

    Rows with a non-finite value, M <= 0, S <= 0 or X <= 0 come back as NaN
    instead of raising, so a history can be scored in one pass.

    Args:
        X: Observed values
        L: Box-Cox power per row
        M: Median per row
        S: Coefficient of variation per row

    Returns:
        Z-scores with the shape of X
    """
    original_shape = X.shape
    X_flat = X.ravel()
    L_flat = L.ravel()
    M_flat = M.ravel()
    S_flat = S.ravel()

    z_flat = np.full(X_flat.shape[0], np.nan, dtype=np.float64)
    for i in range(X_flat.shape[0]):
        x = X_flat[i]
        lam = L_flat[i]
        mu = M_flat[i]
        sigma = S_flat[i]
        if not (np.isfinite(x) and np.isfinite(lam) and np.isfinite(mu) and np.isfinite(sigma)):
            continue
        if mu <= 0 or sigma <= 0 or x <= 0:
            continue
        if lam == 0:
            z_flat[i] = np.log(x / mu) / sigma
        else:
            z_flat[i] = ((x / mu) ** lam - 1.0) / (lam * sigma)

    return z_flat.reshape(original_shape)


def value_at_zscore(z: float, l: float, m: float, s: float) -> float:
    """
    Inverse LMS: the measurement that sits at a given Z-score.

    Formula: M * (1 + L*S*z)^(1/L), or M * exp(S*z) when L == 0.
    Used to derive SD band values for interpolated reference rows.
    """
    if m <= 0 or s <= 0:
        raise InvalidLMSParametersError(l, m, s)
    if l == 0:
        return m * math.exp(s * z)
    base = 1.0 + l * s * z
    if base <= 0:
        return float("nan")
    return m * base ** (1.0 / l)


def _erf(x: float) -> float:
    """Abramowitz-Stegun 7.1.26 approximation of erf for x >= 0."""
    t = 1.0 / (1.0 + _AS_P * x)
    poly = t * (_AS_A1 + t * (_AS_A2 + t * (_AS_A3 + t * (_AS_A4 + t * _AS_A5))))
    # the coefficients sum to 1.000000001, so erf(0) would dip just below zero
    return max(0.0, 1.0 - poly * math.exp(-x * x))


def zscore_to_percentile(z_score: float) -> float:
    """
    Convert a Z-score to a percentile in [0.01, 99.99].

    |z| > 6 saturates directly to the clamps; otherwise the standard normal
    CDF is computed from the Abramowitz-Stegun erf approximation. The result
    is symmetric: p(z) + p(-z) == 100.

    Raises:
        ValueError: If z_score is NaN.
    """
    if math.isnan(z_score):
        raise ValueError("Cannot convert a NaN Z-score to a percentile")
    if z_score < -PERCENTILE_SATURATION_Z:
        return PERCENTILE_FLOOR
    if z_score > PERCENTILE_SATURATION_Z:
        return PERCENTILE_CEILING

    sign = -1.0 if z_score < 0 else 1.0
    erf = _erf(abs(z_score) / math.sqrt(2.0))
    percentile = 50.0 * (1.0 + sign * erf)
    return max(PERCENTILE_FLOOR, min(PERCENTILE_CEILING, percentile))


def percentile_to_zscore(percentile: float) -> float:
    """
    Inverse of zscore_to_percentile using the exact normal quantile.

    Args:
        percentile: Percentile in the open interval (0, 100)

    Returns:
        Z-score at that percentile
    """
    if not 0 < percentile < 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {percentile}")
    return float(stats.norm.ppf(percentile / 100.0))
