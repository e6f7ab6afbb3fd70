"""WHO ATC/DDD index spider.

Index pages come in two shapes:

- parent pages list links to the next level (``?code=D01A`` ...) and no DDD table
- leaf pages carry a table with columns like ``ATC code | Name | DDD | U | Adm.R | Note``

The DDD tables print the code and name only on the first of several dose rows
(one per route of administration), so both columns are filled down before the
rows are emitted.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from selectolax.parser import HTMLParser, Node

from atcddd.config import Settings
from atcddd.errors import AtcError, ParseError, ValidationError

from ..base import CodeRecord, DoseRecord, PageResult, Spider, is_valid_code, squish

logger = logging.getLogger(__name__)

_CODE_PARAM_RE = re.compile(r"[?&]code=([A-Za-z0-9]+)")

# Normalized header text -> canonical field.
HEADER_MAP: Dict[str, str] = {
    "atc code": "code",
    "atc_code": "code",
    "code": "code",
    "name": "name",
    "ddd": "dose_value",
    "u": "unit",
    "unit": "unit",
    "adm.r": "route",
    "adm r": "route",
    "route": "route",
    "note": "note",
    "notes": "note",
}

DOSE_FIELDS = ("code", "name", "dose_value", "unit", "route", "note")
FILL_FIELDS = ("code", "name")

Row = Dict[str, Optional[str]]


@dataclass
class ParsedTable:
    """A table as read from the page, before canonical column selection.

    headers keeps every header verbatim (normalized); fields holds the
    canonical tag of each column, or None for headers we don't recognise.
    """

    headers: List[str]
    fields: List[Optional[str]]
    rows: List[List[Optional[str]]] = field(default_factory=list)

    @property
    def has_code_column(self) -> bool:
        return any("code" in h for h in self.headers)

    @property
    def has_name_column(self) -> bool:
        return any("name" in h for h in self.headers)

    def canonical_rows(self) -> List[Row]:
        positions: Dict[str, int] = {}
        for i, f in enumerate(self.fields):
            if f is not None and f not in positions:
                positions[f] = i
        out: List[Row] = []
        for cells in self.rows:
            row = {f: (cells[positions[f]] if f in positions and positions[f] < len(cells) else None) for f in DOSE_FIELDS}
            out.append(row)
        return out


def normalize_header(text: Optional[str]) -> str:
    return (squish(text) or "").lower()


def _cells(tr: Node) -> List[Node]:
    return [c for c in tr.iter() if c.tag in ("td", "th")]


def _cell_text(node: Node) -> Optional[str]:
    return squish(node.text(deep=True, separator=" "))


def read_table(table: Node) -> ParsedTable:
    """Read a <table> with its first row taken as the header."""
    trs = table.css("tr")
    if not trs:
        return ParsedTable(headers=[], fields=[])
    headers = [normalize_header(c.text(deep=True, separator=" ")) for c in _cells(trs[0])]
    fields = [HEADER_MAP.get(h) for h in headers]
    parsed = ParsedTable(headers=headers, fields=fields)
    width = len(headers)
    for tr in trs[1:]:
        cells = [_cell_text(c) for c in _cells(tr)]
        if not any(cells):
            continue
        if len(cells) < width:
            cells = cells + [None] * (width - len(cells))
        parsed.rows.append(cells[:width] if width else cells)
    return parsed


def _tables(document: HTMLParser) -> List[ParsedTable]:
    return [read_table(t) for t in document.css("table")]


def is_leaf(document: HTMLParser) -> bool:
    """True when some table pairs a code column with dose-table columns."""
    for t in _tables(document):
        if not t.has_code_column:
            continue
        others = {f for h, f in zip(t.headers, t.fields) if f is not None and "code" not in h}
        if others:
            return True
    return False


def parse_children(document: HTMLParser, parent_code: str) -> List[CodeRecord]:
    if not is_valid_code(parent_code):
        raise ValidationError(f"Invalid parent code: {parent_code!r}")
    seen = set()
    out: List[CodeRecord] = []
    for a in document.css("a[href*='code=']"):
        href = a.attributes.get("href") or ""
        m = _CODE_PARAM_RE.search(href)
        if not m:
            continue
        code = m.group(1).upper()
        # Skip self links, breadcrumbs to ancestors and cross-branch links.
        if code == parent_code or not code.startswith(parent_code) or code in seen:
            continue
        seen.add(code)
        out.append(CodeRecord(code=code, name=squish(a.text(deep=True, separator=" "))))
    return out


def forward_fill(rows: Iterable[Row], columns: Sequence[str] = FILL_FIELDS) -> List[Row]:
    """Carry the last non-None value of each column down into later rows."""
    last: Dict[str, Optional[str]] = {c: None for c in columns}
    out: List[Row] = []
    for row in rows:
        filled = dict(row)
        for c in columns:
            if filled.get(c) is None:
                filled[c] = last[c]
            else:
                last[c] = filled[c]
        out.append(filled)
    return out


def parse_dose_table(document: HTMLParser) -> Optional[List[Row]]:
    """Extract canonical dose rows from the page's DDD table.

    Returns None when the page has no tables at all.
    """
    tables = _tables(document)
    if not tables:
        return None
    target = next((t for t in tables if t.has_code_column and t.has_name_column), tables[0])
    rows = forward_fill(target.canonical_rows(), FILL_FIELDS)
    out: List[Row] = []
    for row in rows:
        if row.get("code") is None:
            continue
        row["code"] = row["code"].upper()
        out.append(row)
    return out


class AtcSpider(Spider):
    name = "who_atc_ddd"

    def __init__(self, fetcher, *, settings: Optional[Settings] = None, min_delay: Optional[float] = None) -> None:
        self.fetcher = fetcher
        self.settings = settings or Settings()
        self.min_delay = min_delay

    def url_for(self, code: str) -> str:
        return self.settings.code_url(code)

    def fetch(self, code: str) -> PageResult:
        if not is_valid_code(code):
            raise ValidationError(f"Invalid ATC code: {code!r}")
        if self.min_delay is None:
            document = self.fetcher.fetch(self.url_for(code))
        else:
            document = self.fetcher.fetch(self.url_for(code), min_delay=self.min_delay)
        return self.parse_page(code, document)

    def parse_page(self, code: str, document: HTMLParser) -> PageResult:
        try:
            if is_leaf(document):
                return self._leaf_result(code, document)
            children = parse_children(document, code)
        except AtcError:
            raise
        except Exception as exc:
            raise ParseError(f"Unexpected page shape for {code}: {exc}") from exc
        return PageResult(code=code, type="parent", codes=list(children), children=children)

    @staticmethod
    def _leaf_result(code: str, document: HTMLParser) -> PageResult:
        rows = parse_dose_table(document) or []
        doses = [DoseRecord(source_code=code, **row) for row in rows]
        codes: List[CodeRecord] = []
        seen = set()
        for d in doses:
            key = (d.code, d.name)
            if key not in seen:
                seen.add(key)
                codes.append(CodeRecord(code=d.code, name=d.name))
        if not codes:
            logger.warning("Leaf page %s has no extractable dose rows; registering code without a name", code)
            codes = [CodeRecord(code=code, name=None)]
        return PageResult(code=code, type="leaf", codes=codes, doses=doses)
