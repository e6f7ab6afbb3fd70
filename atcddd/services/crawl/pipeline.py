from __future__ import annotations

import csv
import logging
import os
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from atcddd.errors import ValidationError

from .base import CODE_COLUMNS, DOSE_COLUMNS, sha256_hexdigest
from .engine import CrawlResult

logger = logging.getLogger(__name__)

CODES_PREFIX = "WHO_ATC_codes"
DOSES_PREFIX = "WHO_ATC_DDD"
MANIFEST_COLUMNS = ("file", "size", "sha256")


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _write_rows(path: str, columns: Sequence[str], rows: Iterable[Dict]) -> int:
    n = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(columns), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            # None is written as an empty cell.
            writer.writerow({c: ("" if row.get(c) is None else row.get(c)) for c in columns})
            n += 1
    return n


def write_csv(result: CrawlResult, out_dir: str = ".", *, stamp: bool = True, today: Optional[date] = None) -> List[str]:
    """Write the code and dose tables to two CSV files.

    Files are named WHO_ATC_codes[_YYYY-MM-DD].csv and WHO_ATC_DDD[_YYYY-MM-DD].csv.
    Returns both paths, codes first.
    """
    if not isinstance(result, CrawlResult):
        raise ValidationError("result must be a CrawlResult (output of crawl())")
    ensure_dir(out_dir)
    suffix = f"_{(today or date.today()).isoformat()}" if stamp else ""
    f_codes = os.path.join(out_dir, f"{CODES_PREFIX}{suffix}.csv")
    f_doses = os.path.join(out_dir, f"{DOSES_PREFIX}{suffix}.csv")

    n_codes = _write_rows(f_codes, CODE_COLUMNS, result.codes_as_dicts())
    n_doses = _write_rows(f_doses, DOSE_COLUMNS, result.doses_as_dicts())
    logger.info("Wrote %s (%d rows)", os.path.basename(f_codes), n_codes)
    logger.info("Wrote %s (%d rows)", os.path.basename(f_doses), n_doses)
    return [f_codes, f_doses]


def build_manifest(paths: Sequence[str]) -> List[Dict]:
    """Size and SHA-256 of each output file."""
    if not paths:
        raise ValidationError("paths must be a non-empty list of files")
    missing = [p for p in paths if not os.path.isfile(p)]
    if missing:
        raise ValidationError(f"Files not found: {', '.join(missing)}")
    out: List[Dict] = []
    for p in paths:
        with open(p, "rb") as f:
            digest = sha256_hexdigest(f.read())
        out.append({"file": os.path.abspath(p).replace(os.sep, "/"), "size": os.path.getsize(p), "sha256": digest})
    return out


def write_manifest(paths: Sequence[str], manifest_path: Optional[str] = None) -> str:
    """Write MANIFEST.csv (next to the first path unless manifest_path is given)."""
    rows = build_manifest(paths)
    out = manifest_path or os.path.join(os.path.dirname(os.path.abspath(paths[0])), "MANIFEST.csv")
    _write_rows(out, MANIFEST_COLUMNS, rows)
    logger.info("Wrote manifest: %s", out)
    return out
