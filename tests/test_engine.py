import datetime as dt
import logging
import math

import pandas as pd
import pytest

from pedigrowth.engine import GrowthAssessmentEngine, age_in_days, summarize_history
from pedigrowth.exceptions import PatientNotFoundError, ReferenceDataError
from pedigrowth.models import (
    AlertSeverity,
    AlertType,
    GrowthMeasurement,
    GrowthStatus,
    ReferenceValues,
    Severity,
)
from pedigrowth.persistence import InMemoryAlertRepository
from pedigrowth.zscores import lms_zscore, zscore_to_percentile

DOB = dt.date(2024, 1, 1)


def on_day(age_days: int) -> dt.date:
    return DOB + dt.timedelta(days=age_days)


def measurement(age_days: int, weight=None, height=None, patient_id="P1") -> GrowthMeasurement:
    return GrowthMeasurement(patient_id=patient_id, date=on_day(age_days), weight=weight, height=height)


def assert_gap(result, classification, recommendation) -> None:
    assert result.z_score is None
    assert result.percentile is None
    assert result.classification == classification
    assert result.recommendation == recommendation
    assert result.severity == Severity.NORMAL
    assert result.exact_match is False
    assert result.reference_values == ReferenceValues()


class TestAgeInDays:
    def test_tc001_leap_year(self) -> None:
        assert age_in_days(DOB, dt.date(2024, 4, 10)) == 100

    def test_tc002_datetime_floors(self) -> None:
        on = dt.datetime(2024, 4, 10, 23, 59, tzinfo=dt.timezone.utc)
        assert age_in_days(DOB, on) == 100

    def test_tc003_before_birth_is_negative(self) -> None:
        assert age_in_days(DOB, dt.date(2023, 12, 31)) == -1


class TestAssess:
    async def test_tc004_end_to_end(self, engine) -> None:
        """P1, 100 days old, 6.2 kg against L=0.1 M=6.5 S=0.09"""
        result = await engine.assess("P1", measurement(100, weight=6.2))

        z = lms_zscore(6.2, 0.1, 6.5, 0.09)
        assert result.z_score == round(z, 2) == -0.52
        assert result.percentile == round(zscore_to_percentile(z), 2)
        assert 29.0 < result.percentile < 31.0
        assert result.classification == "Normal Weight"
        assert result.severity == Severity.NORMAL
        assert result.exact_match is True
        assert result.interpolated is False
        assert result.reference_values.median == 6.5
        assert result.reference_values.sd2neg == pytest.approx(5.395)

    async def test_tc005_no_weight(self, engine, reader) -> None:
        result = await engine.assess("P1", measurement(100))
        assert_gap(result, "No weight data", "Weight measurement required")

    async def test_tc006_zero_weight_is_no_weight(self, engine) -> None:
        result = await engine.assess("P1", measurement(100, weight=0))
        assert result.classification == "No weight data"

    async def test_tc007_missing_age_is_not_substituted(self, engine) -> None:
        """Day 101 sits between 100 and 102 but neither neighbour is used"""
        result = await engine.assess("P1", measurement(101, weight=6.2))
        assert_gap(result, "No reference data", "Growth reference data unavailable")

    async def test_tc008_incomplete_row_was_skipped(self, engine) -> None:
        result = await engine.assess("P1", measurement(150, weight=7.0))
        assert result.classification == "No reference data"

    async def test_tc009_invalid_reference_row(self, engine, caplog) -> None:
        result = await engine.assess("P1", measurement(300, weight=9.0))
        assert_gap(result, "Calculation error", "Unable to calculate growth metrics")
        assert "Error calculating Z-score for patient P1" in caplog.text

    async def test_tc010_unknown_patient(self, engine) -> None:
        with pytest.raises(PatientNotFoundError, match="Patient not found: nobody"):
            await engine.assess("nobody", measurement(100, weight=6.2, patient_id="nobody"))

    async def test_tc011_unknown_patient_checked_before_weight(self, engine) -> None:
        with pytest.raises(PatientNotFoundError):
            await engine.assess("nobody", measurement(100, patient_id="nobody"))

    async def test_tc012_log_branch_row(self, engine) -> None:
        assert on_day(200) == dt.date(2024, 7, 19)
        result = await engine.assess("P1", measurement(200, weight=8.8))
        assert result.z_score == round(math.log(1.1) / 0.1, 2)
        assert result.classification == "Normal Weight"

    async def test_tc013_female_reference(self, engine) -> None:
        result = await engine.assess("P2", measurement(100, weight=6.0, patient_id="P2"))
        assert result.z_score == 0.0
        assert result.percentile == 50.0

    async def test_tc014_severe_classification(self, engine) -> None:
        result = await engine.assess("P1", measurement(100, weight=4.2))
        assert result.z_score < -3
        assert result.classification == "Severe Underweight"
        assert result.severity == Severity.SEVERE

    async def test_tc015_datetime_measurement(self, engine) -> None:
        m = GrowthMeasurement(
            patient_id="P1",
            date=dt.datetime(2024, 4, 10, 15, 30, tzinfo=dt.timezone.utc),
            weight=6.2,
        )
        result = await engine.assess("P1", m)
        assert result.exact_match is True

    async def test_tc016_before_birth(self, engine, caplog) -> None:
        result = await engine.assess("P1", GrowthMeasurement(patient_id="P1", date=dt.date(2023, 12, 1), weight=3.0))
        assert result.classification == "No reference data"
        assert "dated before birth" in caplog.text

    async def test_tc017_storage_errors_propagate(self, patients, alert_repo) -> None:
        class BrokenReader:
            async def fetch_rows(self, chart_type):
                raise ConnectionError("reference store unavailable")

        engine = GrowthAssessmentEngine.from_reader(BrokenReader(), patients, alert_repo)
        with pytest.raises(ConnectionError):
            await engine.assess("P1", measurement(100, weight=6.2))

    async def test_tc018_reference_loaded_once(self, engine, reader) -> None:
        for _ in range(3):
            await engine.assess("P1", measurement(100, weight=6.2))
        assert reader.fetch_count == 1

    async def test_tc019_invalidate_reference_cache(self, engine, reader) -> None:
        await engine.assess("P1", measurement(100, weight=6.2))
        engine.invalidate_reference_cache()
        await engine.assess("P1", measurement(100, weight=6.2))
        assert reader.fetch_count == 2


class TestInterpolation:
    async def test_tc020_interpolated_result(self, full_engine) -> None:
        result = await full_engine.assess("P1", measurement(101, weight=6.525))
        assert result.z_score == 0.0
        assert result.exact_match is False
        assert result.interpolated is True
        assert result.reference_values.median == pytest.approx(6.525)

    async def test_tc021_exact_rows_still_preferred(self, full_engine) -> None:
        result = await full_engine.assess("P1", measurement(100, weight=6.2))
        assert result.exact_match is True
        assert result.interpolated is False
        assert result.z_score == -0.52

    async def test_tc022_outside_table_is_still_a_gap(self, full_engine) -> None:
        result = await full_engine.assess("P1", measurement(400, weight=9.0))
        assert result.classification == "No reference data"


class TestHeightAndGrowth:
    async def test_tc023_height_for_age(self, full_engine) -> None:
        result = await full_engine.assess_height("P1", measurement(100, height=62.0))
        assert result.z_score == 0.0
        assert result.classification == "Normal Height"

        result = await full_engine.assess_height("P1", measurement(100, height=55.0))
        assert result.z_score == round((55.0 / 62.0 - 1) / 0.035, 2)
        assert result.classification == "Severely Stunted"

    async def test_tc024_no_height(self, full_engine) -> None:
        result = await full_engine.assess_height("P1", measurement(100, weight=6.2))
        assert_gap(result, "No height data", "Height measurement required")

    async def test_tc025_height_needs_reference(self, engine) -> None:
        with pytest.raises(ReferenceDataError):
            await engine.assess_height("P1", measurement(100, height=62.0))

    async def test_tc026_assess_growth(self, full_engine) -> None:
        assessment = await full_engine.assess_growth("P1", measurement(100, weight=6.2, height=55.0))
        assert assessment.weight_for_age.classification == "Normal Weight"
        assert assessment.height_for_age.classification == "Severely Stunted"
        assert assessment.status == GrowthStatus.STUNTED

    async def test_tc027_assess_growth_weight_only(self, engine) -> None:
        assessment = await engine.assess_growth("P1", measurement(100, weight=4.2))
        assert assessment.height_for_age is None
        assert assessment.status == GrowthStatus.UNDERWEIGHT


class TestAlerts:
    async def test_tc028_severe_underweight_alert(self, engine, alert_repo, clock) -> None:
        alerts = await engine.check_alerts("P1", -3.5)
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == AlertType.SEVERE_UNDERWEIGHT
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.message == "Severe underweight detected - immediate intervention required"
        assert alert.z_score == -3.5
        assert alert.date == clock.now
        assert alert_repo.alerts == alerts
        assert alert_repo.batches == 1

    async def test_tc029_no_alert_within_range(self, engine, alert_repo) -> None:
        assert await engine.check_alerts("P1", -2.9) == []
        assert await engine.check_alerts("P1", 3.0) == []
        assert alert_repo.batches == 0

    async def test_tc030_obesity_alert(self, engine, alert_repo) -> None:
        alerts = await engine.check_alerts("P1", 3.5)
        assert [a.type for a in alerts] == [AlertType.OBESE]
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].message == "Severe obesity detected - nutritional counseling needed"
        assert len(alert_repo.alerts) == 1

    async def test_tc031_assess_then_alert(self, engine, alert_repo) -> None:
        result = await engine.assess("P1", measurement(100, weight=4.2))
        alerts = await engine.check_alerts("P1", result.z_score)
        assert alerts[0].z_score == result.z_score
        assert len(alert_repo.alerts) == 1

    async def test_tc032_height_alert(self, full_engine, alert_repo) -> None:
        alerts = await full_engine.check_height_alerts("P1", -3.2)
        assert [a.type for a in alerts] == [AlertType.SEVERE_STUNTING]
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alert_repo.batches == 1

    async def test_tc033_velocity_alert(self, engine, alert_repo) -> None:
        history = [measurement(80, weight=7.0), measurement(100, weight=6.5)]
        alerts = await engine.check_velocity_alerts("P1", history)
        assert [a.type for a in alerts] == [AlertType.RAPID_WEIGHT_LOSS]
        assert alerts[0].z_score is None
        assert alert_repo.batches == 1

    async def test_tc034_alert_repository_failure_propagates(self, reader, patients, clock) -> None:
        class FailingRepository(InMemoryAlertRepository):
            async def add_all(self, alerts):
                raise OSError("disk full")

        engine = GrowthAssessmentEngine.from_reader(reader, patients, FailingRepository(), clock=clock)
        with pytest.raises(OSError):
            await engine.check_alerts("P1", -3.5)


class TestScoreHistory:
    async def test_tc035_history_frame(self, engine) -> None:
        visits = [
            measurement(100, weight=6.2),
            measurement(98, weight=6.45),
            measurement(101, weight=6.3),
            measurement(102),
            measurement(300, weight=9.0),
        ]
        df = await engine.score_history("P1", visits)

        assert list(df.columns) == ["date", "age_days", "weight", "z_score", "percentile", "classification"]
        assert df["age_days"].tolist() == [98, 100, 101, 102, 300]
        assert df.loc[0, "z_score"] == 0.0
        assert df.loc[0, "classification"] == "Normal Weight"
        assert df.loc[1, "z_score"] == -0.52
        assert df.loc[1, "percentile"] == round(zscore_to_percentile(lms_zscore(6.2, 0.1, 6.5, 0.09)), 2)
        # no reference row, no weight, invalid row
        for i in (2, 3, 4):
            assert pd.isna(df.loc[i, "z_score"])
            assert pd.isna(df.loc[i, "percentile"])
            assert df.loc[i, "classification"] is None

    async def test_tc036_history_matches_single_assessments(self, full_engine) -> None:
        visits = [measurement(101, weight=6.4), measurement(200, weight=7.5)]
        df = await full_engine.score_history("P1", visits)
        for visit, z in zip(visits, df["z_score"]):
            result = await full_engine.assess("P1", visit)
            assert result.z_score == pytest.approx(z)

    async def test_tc037_empty_history(self, engine) -> None:
        df = await engine.score_history("P1", [])
        assert df.empty
        assert "z_score" in df.columns

    async def test_tc038_unknown_patient(self, engine) -> None:
        with pytest.raises(PatientNotFoundError):
            await engine.score_history("nobody", [])


class TestNonFiniteReadings:
    @pytest.mark.parametrize("weight", [float("nan"), float("inf"), float("-inf")])
    async def test_tc039_non_finite_weight_is_no_weight(self, engine, alert_repo, weight) -> None:
        result = await engine.assess("P1", measurement(100, weight=weight))
        assert_gap(result, "No weight data", "Weight measurement required")
        assert result.classification != "Severely Obese"
        assert alert_repo.alerts == []

    @pytest.mark.parametrize("height", [float("nan"), float("inf")])
    async def test_tc040_non_finite_height_is_no_height(self, full_engine, height) -> None:
        result = await full_engine.assess_height("P1", measurement(100, height=height))
        assert_gap(result, "No height data", "Height measurement required")

    async def test_tc041_nan_weight_in_growth_assessment(self, full_engine) -> None:
        assessment = await full_engine.assess_growth(
            "P1", measurement(100, weight=float("nan"), height=62.0)
        )
        assert assessment.weight_for_age.classification == "No weight data"
        assert assessment.status == GrowthStatus.NORMAL


class TestHistorySummary:
    async def test_tc042_summary_over_valid_visits(self, engine) -> None:
        visits = [
            measurement(98, weight=6.45),
            measurement(100, weight=6.2),
            measurement(101, weight=6.3),
            measurement(102),
        ]
        df = await engine.score_history("P1", visits)
        summary = summarize_history(df)

        assert summary.total == 4
        assert summary.valid == 2
        assert summary.average_z_score == round((0.0 + -0.52) / 2, 3)
        assert summary.average_percentile == round(df["percentile"].iloc[:2].mean(), 1)
        assert summary.classifications == {"Normal Weight": 2}

    async def test_tc043_summary_without_valid_visits(self, engine) -> None:
        df = await engine.score_history("P1", [measurement(101, weight=6.3), measurement(102)])
        summary = summarize_history(df)
        assert summary.total == 2
        assert summary.valid == 0
        assert summary.average_z_score is None
        assert summary.average_percentile is None
        assert summary.classifications == {}

    async def test_tc044_summary_of_empty_history(self, engine) -> None:
        summary = summarize_history(await engine.score_history("P1", []))
        assert summary.total == 0
        assert summary.valid == 0

    async def test_tc045_counts_each_classification(self, engine) -> None:
        visits = [
            measurement(98, weight=6.45),
            measurement(100, weight=4.2),
            measurement(100, weight=9.5),
        ]
        summary = summarize_history(await engine.score_history("P1", visits))
        assert summary.valid == 3
        assert sum(summary.classifications.values()) == 3
        assert summary.classifications["Normal Weight"] == 1
        assert summary.classifications["Severe Underweight"] == 1
        assert summary.classifications["Severely Obese"] == 1


class TestProjection:
    async def test_tc046_project_growth_uses_patient_birth_date(self, engine) -> None:
        visits = [measurement(61, weight=5.5), measurement(122, weight=6.5), measurement(183, weight=7.2)]
        projection = await engine.project_growth("P1", visits)

        months = 61 / 30.44
        assert projection.current_age_months == pytest.approx(183 / 30.44)
        assert projection.current_value == 7.2
        assert projection.average_monthly_growth == pytest.approx((1.0 / months + 0.7 / months) / 2)
        assert [p.age_months for p in projection.projections] == pytest.approx(
            [183 / 30.44 + i for i in (1, 4, 7, 10)]
        )
        assert projection.confidence == "moderate"

    async def test_tc047_project_growth_unknown_patient(self, engine) -> None:
        with pytest.raises(PatientNotFoundError):
            await engine.project_growth("nobody", [])


class TestGapDetail:
    async def test_tc048_missing_row_logs_covered_range(self, engine, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger="pedigrowth.engine"):
            result = await engine.assess("P1", measurement(101, weight=6.2))
        assert result.classification == "No reference data"
        assert "no MALE reference row for age 101 days (table covers 98-300)" in caplog.text
