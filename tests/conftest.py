import datetime as dt

import pytest

from pedigrowth.config import EngineConfig
from pedigrowth.engine import GrowthAssessmentEngine
from pedigrowth.models import PatientRecord, Sex
from pedigrowth.persistence import InMemoryAlertRepository, PatientDirectory
from pedigrowth.reference import InMemoryReferenceReader


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: dt.datetime):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += dt.timedelta(**kwargs)


def make_row(age_days, sex="MALE", l=0.1, m=6.5, s=0.09, **extra):
    row = {
        "age_days": age_days,
        "sex": sex,
        "l": l,
        "m": m,
        "s": s,
        "sd0": m,
        "sd1neg": round(m * 0.91, 3),
        "sd1pos": round(m * 1.09, 3),
        "sd2neg": round(m * 0.83, 3),
        "sd2pos": round(m * 1.19, 3),
        "sd3neg": round(m * 0.75, 3),
        "sd3pos": round(m * 1.30, 3),
    }
    row.update(extra)
    return row


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2024, 6, 1, 9, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def reference_rows() -> list:
    """
    Weight-for-age rows. MALE has 98, 100, 102 (no 101), an L=0 row at 200,
    an invalid M at 300 and an incomplete row at 150 that must be skipped.
    """
    return [
        make_row(98, m=6.45),
        make_row(100, l=0.1, m=6.5, s=0.09),
        make_row(102, m=6.55),
        make_row(150, l=None),
        make_row(200, l=0.0, m=8.0, s=0.1),
        make_row(300, l=0.1, m=-1.0, s=0.1),
        make_row(100, sex="FEMALE", l=0.2, m=6.0, s=0.1),
    ]


@pytest.fixture
def height_rows() -> list:
    return [
        make_row(100, l=1.0, m=62.0, s=0.035),
        make_row(100, sex="FEMALE", l=1.0, m=60.5, s=0.036),
    ]


@pytest.fixture
def reader(reference_rows, height_rows) -> InMemoryReferenceReader:
    return InMemoryReferenceReader({"WFA": reference_rows, "HFA": height_rows})


@pytest.fixture
def patients() -> PatientDirectory:
    return PatientDirectory(
        [
            PatientRecord(patient_id="P1", date_of_birth=dt.date(2024, 1, 1), sex=Sex.MALE),
            PatientRecord(patient_id="P2", date_of_birth=dt.date(2024, 1, 1), sex="F"),
        ]
    )


@pytest.fixture
def alert_repo() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def engine(reader, patients, alert_repo, clock) -> GrowthAssessmentEngine:
    return GrowthAssessmentEngine.from_reader(reader, patients, alert_repo, clock=clock)


@pytest.fixture
def full_engine(reader, patients, alert_repo, clock) -> GrowthAssessmentEngine:
    """Engine with height-for-age and interpolation enabled."""
    return GrowthAssessmentEngine.from_reader(
        reader,
        patients,
        alert_repo,
        config=EngineConfig(interpolate_missing_ages=True),
        clock=clock,
        with_height=True,
    )
