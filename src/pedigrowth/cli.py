"""
Command line entry point: assess one measurement from CSV reference and
patient files and print the result as JSON.
"""

import argparse
import asyncio
import datetime as dt
import json
import logging
from pathlib import Path
from typing import List, Optional

from .config import ALERTS_DIR, REFERENCE_DIR, EngineConfig
from .engine import GrowthAssessmentEngine
from .models import GrowthMeasurement
from .persistence import InMemoryAlertRepository, JsonAlertRepository, PatientDirectory
from .reference import CsvReferenceReader

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pedigrowth",
        description="Assess a pediatric measurement against WHO growth standards.",
    )
    parser.add_argument(
        "--reference",
        type=Path,
        default=REFERENCE_DIR / "who_reference.csv",
        help="Reference CSV (age_days, sex, l, m, s, sd bands)",
    )
    parser.add_argument("--patients", type=Path, required=True, help="Patients CSV (patient_id, date_of_birth, sex)")
    parser.add_argument("--patient-id", required=True)
    parser.add_argument("--date", type=dt.date.fromisoformat, required=True, help="Measurement date (YYYY-MM-DD)")
    parser.add_argument("--weight", type=float, help="Weight in kg")
    parser.add_argument("--height", type=float, help="Height/length in cm")
    parser.add_argument(
        "--with-height",
        action="store_true",
        help="Also assess height-for-age (reference CSV needs a chart_type column with HFA rows)",
    )
    parser.add_argument(
        "--interpolate",
        action="store_true",
        help="Interpolate reference rows for ages missing from the table",
    )
    parser.add_argument(
        "--alerts-dir",
        type=Path,
        default=ALERTS_DIR,
        help="Directory for persisted alerts",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate alerts without persisting them",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


async def run(args: argparse.Namespace) -> dict:
    alerts_repo = InMemoryAlertRepository() if args.dry_run else JsonAlertRepository(args.alerts_dir)
    engine = GrowthAssessmentEngine.from_reader(
        CsvReferenceReader(args.reference),
        PatientDirectory.from_csv(args.patients),
        alerts_repo,
        config=EngineConfig(interpolate_missing_ages=args.interpolate),
        with_height=args.with_height,
    )
    measurement = GrowthMeasurement(
        patient_id=args.patient_id,
        date=args.date,
        weight=args.weight,
        height=args.height,
    )

    logger.debug(f"Assessing patient {args.patient_id} on {args.date} against {args.reference}")
    assessment = await engine.assess_growth(args.patient_id, measurement)
    alerts = []
    if assessment.weight_for_age.z_score is not None:
        alerts += await engine.check_alerts(args.patient_id, assessment.weight_for_age.z_score)
    if assessment.height_for_age is not None and assessment.height_for_age.z_score is not None:
        alerts += await engine.check_height_alerts(args.patient_id, assessment.height_for_age.z_score)

    return {
        "assessment": assessment.model_dump(mode="json"),
        "alerts": [alert.model_dump(mode="json") for alert in alerts],
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    output = asyncio.run(run(args))
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
