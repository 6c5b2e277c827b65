#!/usr/bin/env python3
"""
Download WHO growth-standard LMS tables and write the reference CSV used by
pedigrowth's CsvReferenceReader.

The CDC-hosted WHO tables are monthly (0-24 months). Each month is converted
to age_days (month * 30.4375, rounded) and the SD bands are derived from
L, M and S with the inverse LMS transform. Because the rows are monthly, most
daily ages have no exact row; run the engine with interpolation enabled when
using this file.
"""

import argparse
import hashlib
import io
import logging
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from pedigrowth.zscores import value_at_zscore

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.4375

SD_BANDS = {
    "sd0": 0,
    "sd1neg": -1,
    "sd1pos": 1,
    "sd2neg": -2,
    "sd2pos": 2,
    "sd3neg": -3,
    "sd3pos": 3,
    "sd4neg": -4,
    "sd4pos": 4,
}

OUTPUT_COLUMNS = ["chart_type", "sex", "age_days", "l", "m", "s", *SD_BANDS]

# (name, chart_type, sex, url)
DATA_SOURCES: List[Tuple[str, str, str, str]] = [
    (
        "boys_wtage",
        "WFA",
        "MALE",
        "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts/WHO-Boys-Weight-for-age-Percentiles.csv",
    ),
    (
        "girls_wtage",
        "WFA",
        "FEMALE",
        "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts/WHO-Girls-Weight-for-age%20Percentiles.csv",
    ),
    (
        "boys_lenage",
        "HFA",
        "MALE",
        "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts/WHO-Boys-Length-for-age-Percentiles.csv",
    ),
    (
        "girls_lenage",
        "HFA",
        "FEMALE",
        "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts/WHO-Girls-Length-for-age-Percentiles.csv",
    ),
]


def download_csv(url: str, timeout: int = 30) -> str:
    """Download CSV content from URL with retries."""
    try:
        retry_strategy = Retry(
            total=3,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=2,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)

        with requests.Session() as session:
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            response = session.get(url, timeout=timeout, verify=True)
            response.raise_for_status()
            return response.text
    except Exception as e:
        logger.error(f"Failed to download {url}: {e}")
        raise


def compute_sha256(content: str) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_who_csv(content: str, name: str, chart_type: str, sex: str) -> pd.DataFrame:
    """
    Parse a WHO percentile CSV (Month, L, M, S, P01...) into reference rows.

    Raises:
        ValueError: If Month/L/M/S columns are missing or ages are not increasing.
    """
    df = pd.read_csv(io.StringIO(content.strip()))
    df.columns = [str(col).replace("\ufeff", "").strip() for col in df.columns]

    missing = {"Month", "L", "M", "S"} - set(df.columns)
    if missing:
        raise ValueError(f"{name}: missing columns {sorted(missing)}")

    df = df[["Month", "L", "M", "S"]].apply(pd.to_numeric, errors="coerce")
    df = df.dropna(subset=["Month"])

    months = df["Month"].to_numpy()
    if len(months) > 1 and not np.all(months[:-1] < months[1:]):
        raise ValueError(f"{name}: Month not monotonically increasing")

    out = pd.DataFrame(
        {
            "chart_type": chart_type,
            "sex": sex,
            "age_days": np.rint(months * DAYS_PER_MONTH).astype(int),
            "l": df["L"].to_numpy(),
            "m": df["M"].to_numpy(),
            "s": df["S"].to_numpy(),
        }
    )

    incomplete = out[["l", "m", "s"]].isna().any(axis=1)
    if incomplete.any():
        logger.warning(f"{name}: {int(incomplete.sum())} rows without L/M/S")

    for band, z in SD_BANDS.items():
        out[band] = [
            np.nan if pd.isna(l) else value_at_zscore(z, l, m, s)
            for l, m, s in zip(out["l"], out["m"], out["s"])
        ]
    return out[OUTPUT_COLUMNS]


def main(output_path: Path, strict_mode: bool = False, chart_filter: str = None) -> Path:
    """Download every source, combine and write the reference CSV."""
    frames: List[pd.DataFrame] = []
    hashes: Dict[str, str] = {}
    failed_sources = []

    sources = [src for src in DATA_SOURCES if chart_filter is None or src[1] == chart_filter]
    with tqdm(total=len(sources), desc="Fetching sources") as pbar:
        for name, chart_type, sex, url in sources:
            pbar.set_postfix({"source": name})
            try:
                content = download_csv(url)
                hashes[name] = compute_sha256(content)
                frames.append(parse_who_csv(content, name, chart_type, sex))
            except Exception as e:
                failed_sources.append(name)
                logger.error(f"Failed to process {name}: {e}")
            pbar.update(1)

    if strict_mode and failed_sources:
        raise RuntimeError(
            f"Strict mode failed: Unable to process sources: {', '.join(failed_sources)}"
        )
    if not frames:
        raise RuntimeError("No reference sources could be processed")

    combined = pd.concat(frames, ignore_index=True)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    combined.to_csv(output_path, index=False)

    logger.info(f"Saved {len(combined)} reference rows to {output_path}")
    for name, digest in hashes.items():
        logger.info(f"  {name}: sha256 {digest}")
    return output_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Download WHO growth reference data into a pedigrowth reference CSV."
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path(__file__).parent.parent / "data" / "reference" / "who_reference.csv",
        help="Output CSV path",
    )
    parser.add_argument(
        "--chart",
        choices=["WFA", "HFA"],
        help="Download only one chart type",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Strict mode: exit on any error instead of continuing with warnings",
    )
    args = parser.parse_args()

    main(args.output, strict_mode=args.strict, chart_filter=args.chart)
