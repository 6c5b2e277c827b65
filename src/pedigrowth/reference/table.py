"""In-memory WHO reference table, one age-sorted sequence of rows per sex."""

from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..models import LMSReferencePoint, Sex
from ..zscores import value_at_zscore

_SD_BANDS = {
    "sd0": 0.0,
    "sd1neg": -1.0,
    "sd1pos": 1.0,
    "sd2neg": -2.0,
    "sd2pos": 2.0,
    "sd3neg": -3.0,
    "sd3pos": 3.0,
}


class GrowthReferenceTable:
    """
    Immutable mapping of Sex to reference points sorted ascending by age_days.

    Build with `from_points`, which keeps the last point for a duplicated
    (sex, age_days) identity. Lookups binary-search a per-sex age array.
    """

    def __init__(self, points_by_sex: Mapping[Sex, Sequence[LMSReferencePoint]]):
        self._points: Dict[Sex, Tuple[LMSReferencePoint, ...]] = {}
        self._ages: Dict[Sex, np.ndarray] = {}
        for sex, points in points_by_sex.items():
            ordered = tuple(points)
            ages = np.array([p.age_days for p in ordered], dtype=np.int64)
            if len(ages) > 1 and not np.all(ages[:-1] < ages[1:]):
                raise ValueError(f"Reference points for {sex.value} must be strictly ascending by age_days")
            self._points[sex] = ordered
            self._ages[sex] = ages

    @classmethod
    def from_points(cls, points: Iterable[LMSReferencePoint]) -> "GrowthReferenceTable":
        """Group by sex, de-duplicate (last write wins) and sort by age."""
        by_identity: Dict[Tuple[Sex, int], LMSReferencePoint] = {}
        for point in points:
            by_identity[point.key] = point

        grouped: Dict[Sex, list] = {}
        for point in by_identity.values():
            grouped.setdefault(point.sex, []).append(point)
        return cls({sex: sorted(pts, key=lambda p: p.age_days) for sex, pts in grouped.items()})

    def __len__(self) -> int:
        return sum(len(points) for points in self._points.values())

    def __repr__(self) -> str:
        counts = ", ".join(f"{sex.value}={len(pts)}" for sex, pts in self._points.items())
        return f"GrowthReferenceTable({counts})"

    def points(self, sex: Sex) -> Tuple[LMSReferencePoint, ...]:
        return self._points.get(sex, ())

    def age_range(self, sex: Sex) -> Optional[Tuple[int, int]]:
        ages = self._ages.get(sex)
        if ages is None or len(ages) == 0:
            return None
        return int(ages[0]), int(ages[-1])

    def find(self, sex: Sex, age_days: int) -> Optional[LMSReferencePoint]:
        """Exact-age lookup. No neighbouring row is ever substituted."""
        ages = self._ages.get(sex)
        if ages is None or len(ages) == 0:
            return None
        idx = int(np.searchsorted(ages, age_days, side="left"))
        if idx < len(ages) and ages[idx] == age_days:
            return self._points[sex][idx]
        return None

    def bracket(
        self, sex: Sex, age_days: int
    ) -> Optional[Tuple[LMSReferencePoint, LMSReferencePoint]]:
        """
        The rows on either side of age_days, or None when the age is outside
        the table. An exact hit returns the same row twice.
        """
        ages = self._ages.get(sex)
        if ages is None or len(ages) == 0:
            return None
        if age_days < ages[0] or age_days > ages[-1]:
            return None
        idx = int(np.searchsorted(ages, age_days, side="left"))
        points = self._points[sex]
        if ages[idx] == age_days:
            return points[idx], points[idx]
        return points[idx - 1], points[idx]

    def interpolate(self, sex: Sex, age_days: int) -> Optional[LMSReferencePoint]:
        """
        Linear interpolation of L, M and S between the bracketing rows.

        SD band values are recomputed from the interpolated LMS through the
        inverse transform so they stay consistent with the Z-score.
        """
        pair = self.bracket(sex, age_days)
        if pair is None:
            return None
        lower, upper = pair
        if lower is upper:
            return lower

        xs = [lower.age_days, upper.age_days]
        l = float(np.interp(age_days, xs, [lower.l, upper.l]))
        m = float(np.interp(age_days, xs, [lower.m, upper.m]))
        s = float(np.interp(age_days, xs, [lower.s, upper.s]))

        bands = {name: value_at_zscore(z, l, m, s) for name, z in _SD_BANDS.items()}
        return LMSReferencePoint(age_days=age_days, sex=sex, l=l, m=m, s=s, **bands)
