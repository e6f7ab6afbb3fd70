from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Optional

_CODE_RE = re.compile(r"^[A-Z0-9]+$")
_WS_RE = re.compile(r"\s+")

# Code length -> hierarchy level (1..5). Other lengths are anomalies.
_LEVEL_BY_LENGTH = {1: 1, 3: 2, 4: 3, 5: 4, 7: 5}
_LENGTH_BY_LEVEL = {v: k for k, v in _LEVEL_BY_LENGTH.items()}

CODE_COLUMNS = ("code", "name")
DOSE_COLUMNS = ("source_code", "code", "name", "dose_value", "unit", "route", "note")


def sha256_hexdigest(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def squish(text: Optional[str]) -> Optional[str]:
    """Trim and collapse whitespace runs; empty results become None."""
    if text is None:
        return None
    s = _WS_RE.sub(" ", text).strip()
    return s or None


def is_valid_code(value: Any) -> bool:
    return isinstance(value, str) and bool(_CODE_RE.match(value))


def code_level(code: str) -> Optional[int]:
    return _LEVEL_BY_LENGTH.get(len(code or ""))


def parent_of(code: str) -> Optional[str]:
    """Parent code derived from length, None for level 1 and anomalies."""
    level = code_level(code)
    if level is None or level == 1:
        return None
    return code[: _LENGTH_BY_LEVEL[level - 1]]


@dataclass(frozen=True)
class CodeRecord:
    code: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DoseRecord:
    source_code: str
    code: str
    name: Optional[str] = None
    dose_value: Optional[str] = None
    unit: Optional[str] = None
    route: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageResult:
    """What a single code page contributed to the crawl."""

    code: str
    type: str  # "leaf" | "parent"
    codes: List[CodeRecord] = field(default_factory=list)
    children: List[CodeRecord] = field(default_factory=list)
    doses: List[DoseRecord] = field(default_factory=list)


class Spider:
    """Minimal spider contract.

    Subclasses implement fetch(code) and return a PageResult for that code.
    """

    name: str = "base"

    def fetch(self, code: str) -> PageResult:
        raise NotImplementedError

    @staticmethod
    def normalize_records(items: Iterable[Any]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for x in items:
            if hasattr(x, "to_dict"):
                out.append(x.to_dict())
            elif isinstance(x, dict):
                out.append(x)
            else:
                raise TypeError(f"Unsupported record type: {type(x)}")
        return out
