"""Lookup API over the crawler.

- get_atc_data(codes, include_children=False)
- get_atc_hierarchy(codes, max_levels=5)

Row schema:
{
    "code": str,
    "name": str,
    "level": int | None,       # 1..5 from code length, None for odd lengths
    "dose_value": str | None,
    "unit": str | None,
    "route": str | None,
    "note": str | None,
}
Hierarchy rows add "parent_code" (str | None) and "has_children" (bool).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from atcddd.config import DEFAULT_ROOTS, Settings
from atcddd.errors import ValidationError
from atcddd.services.crawl.base import code_level, is_valid_code, parent_of
from atcddd.services.crawl.engine import CrawlResult, crawl
from atcddd.services.crawl.http import RateLimitedFetcher

logger = logging.getLogger(__name__)

DATA_COLUMNS = ("code", "name", "level", "dose_value", "unit", "route", "note")
_DOSE_KEYS = ("dose_value", "unit", "route", "note")


def _as_code_list(codes: Union[None, str, Iterable[str]]) -> List[str]:
    if codes is None:
        return list(DEFAULT_ROOTS)
    if isinstance(codes, str):
        codes = [codes]
    codes = list(codes)
    invalid = [c for c in codes if not is_valid_code(c)]
    if invalid:
        raise ValidationError(
            "Invalid ATC code format: %s. Codes must be uppercase alphanumeric (e.g. 'N02BE01')."
            % ", ".join(map(str, invalid))
        )
    if not codes:
        raise ValidationError("At least one ATC code is required")
    return codes


def _join_rows(result: CrawlResult) -> List[Dict[str, Any]]:
    doses_by_code: Dict[str, List[Dict[str, Any]]] = {}
    for d in result.doses:
        doses_by_code.setdefault(d.code, []).append(d.to_dict())
    rows: List[Dict[str, Any]] = []
    for c in result.codes:
        base = {"code": c.code, "name": c.name, "level": code_level(c.code)}
        matches = doses_by_code.get(c.code) or [dict.fromkeys(_DOSE_KEYS)]
        for d in matches:
            rows.append({**base, **{k: d.get(k) for k in _DOSE_KEYS}})
    return rows


def get_atc_data(
    codes: Union[None, str, Iterable[str]] = None,
    *,
    include_children: bool = False,
    fetcher: Optional[RateLimitedFetcher] = None,
    settings: Optional[Settings] = None,
) -> List[Dict[str, Any]]:
    """Fetch ATC rows for one or more codes.

    Without include_children only the requested code's own page is read; the
    rows for the requested code are returned when that page lists it, otherwise
    the page's direct entries. With include_children the whole subtree is crawled.
    Rows are deduplicated by code (first wins) and sorted by code.
    """
    code_list = _as_code_list(codes)
    max_codes = None if include_children else 1

    combined: List[Dict[str, Any]] = []
    for code in code_list:
        result = crawl([code], fetcher=fetcher, settings=settings, max_codes=max_codes, quiet=True)
        rows = _join_rows(result)
        if not include_children:
            own = [r for r in rows if r["code"] == code]
            rows = own or rows
        if not rows:
            logger.info("No data returned for ATC code %s", code)
        combined.extend(rows)

    seen = set()
    out: List[Dict[str, Any]] = []
    for row in combined:
        if row["code"] in seen:
            continue
        seen.add(row["code"])
        out.append({k: row.get(k) for k in DATA_COLUMNS})
    out.sort(key=lambda r: r["code"])
    return out


def get_atc_hierarchy(
    codes: Union[None, str, Iterable[str]] = None,
    *,
    max_levels: int = 5,
    fetcher: Optional[RateLimitedFetcher] = None,
    settings: Optional[Settings] = None,
) -> List[Dict[str, Any]]:
    """Subtree rows with parent links, limited to levels <= max_levels."""
    if isinstance(max_levels, bool) or not isinstance(max_levels, int) or not 1 <= max_levels <= 5:
        raise ValidationError(f"max_levels must be an integer between 1 and 5, got {max_levels!r}")
    data = get_atc_data(codes, include_children=True, fetcher=fetcher, settings=settings)
    data = [r for r in data if r["level"] is not None and r["level"] <= max_levels]

    all_codes = [r["code"] for r in data]
    out: List[Dict[str, Any]] = []
    for r in data:
        code = r["code"]
        row = {
            "code": code,
            "name": r["name"],
            "level": r["level"],
            "parent_code": parent_of(code),
            "has_children": any(c != code and c.startswith(code) for c in all_codes),
        }
        row.update({k: r[k] for k in _DOSE_KEYS})
        out.append(row)
    return out
