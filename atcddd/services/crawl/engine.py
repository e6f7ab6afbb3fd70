"""Breadth-first traversal over the ATC hierarchy.

The crawler pulls one code at a time from a FIFO queue, asks the spider for
its page and either enqueues the children (parent page) or keeps the dose rows
(leaf page). A failing node is logged and skipped; the run always finishes
with whatever was collected.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Set

from atcddd.config import DEFAULT_ROOTS, Settings, get_settings
from atcddd.errors import FetchError, ParseError, ValidationError

from .base import CodeRecord, DoseRecord, PageResult, Spider, is_valid_code
from .http import RateLimitedFetcher
from .spiders.atc_spider import AtcSpider

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 25


class CrawlState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


@dataclass
class CrawlResult:
    codes: List[CodeRecord] = field(default_factory=list)
    doses: List[DoseRecord] = field(default_factory=list)
    processed: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0

    def codes_as_dicts(self) -> List[Dict]:
        return Spider.normalize_records(self.codes)

    def doses_as_dicts(self) -> List[Dict]:
        return Spider.normalize_records(self.doses)


class ResultAccumulator:
    def __init__(self) -> None:
        self.codes: List[CodeRecord] = []
        self.doses: List[DoseRecord] = []

    def add_codes(self, records: Iterable[CodeRecord]) -> None:
        self.codes.extend(records)

    def add_doses(self, records: Iterable[DoseRecord]) -> None:
        self.doses.extend(records)

    def finalize(self) -> CrawlResult:
        """Dedup codes (first seen wins), uppercase codes, blank out missing names.

        Missing names become "" in the code table only; the dose table keeps None.
        """
        seen: Set[str] = set()
        codes: List[CodeRecord] = []
        for rec in self.codes:
            code = rec.code.upper()
            if code in seen:
                continue
            seen.add(code)
            codes.append(CodeRecord(code=code, name=rec.name if rec.name is not None else ""))
        doses = [
            DoseRecord(
                source_code=d.source_code.upper(),
                code=d.code.upper(),
                name=d.name,
                dose_value=d.dose_value,
                unit=d.unit,
                route=d.route,
                note=d.note,
            )
            for d in self.doses
        ]
        return CrawlResult(codes=codes, doses=doses)


def validate_roots(roots: Iterable[str]) -> List[str]:
    """Uppercase and dedupe roots (order kept); every root must be alphanumeric."""
    if isinstance(roots, str):
        roots = [roots]
    out: List[str] = []
    for r in roots:
        if not isinstance(r, str):
            raise ValidationError(f"Root codes must be strings, got {r!r}")
        code = r.strip().upper()
        if not is_valid_code(code):
            raise ValidationError(f"All roots must be uppercase alphanumeric codes, got {r!r}")
        if code not in out:
            out.append(code)
    if not out:
        raise ValidationError("At least one root code is required")
    return out


def _validate_ceiling(max_codes: Optional[int]) -> Optional[int]:
    if max_codes is None:
        return None
    if isinstance(max_codes, bool) or not isinstance(max_codes, int) or max_codes < 1:
        raise ValidationError(f"max_codes must be a positive integer or None, got {max_codes!r}")
    return max_codes


def _validate_min_delay(min_delay: Optional[float]) -> None:
    if min_delay is None:
        return
    if isinstance(min_delay, bool) or not isinstance(min_delay, (int, float)) or not math.isfinite(min_delay) or min_delay < 0:
        raise ValidationError(f"min_delay must be a finite number >= 0, got {min_delay!r}")


class Crawler:
    """Single-threaded BFS driver. One instance per run."""

    def __init__(self, spider: Spider, *, max_codes: Optional[int] = None, progress: bool = False, quiet: bool = False) -> None:
        self.spider = spider
        self.max_codes = _validate_ceiling(max_codes)
        self.progress = progress
        self.quiet = quiet
        self.state = CrawlState.IDLE
        self.visited: Set[str] = set()
        self.queue: Deque[str] = deque()
        self._queued: Set[str] = set()

    def _enqueue(self, code: str) -> None:
        if code in self.visited or code in self._queued:
            return
        self.queue.append(code)
        self._queued.add(code)

    def _below_ceiling(self, processed: int) -> bool:
        return self.max_codes is None or processed < self.max_codes

    def run(self, roots: Iterable[str]) -> CrawlResult:
        roots = validate_roots(roots)
        started = time.monotonic()
        acc = ResultAccumulator()
        failures: Dict[str, str] = {}
        processed = 0
        page_log = logger.debug if self.quiet else logger.info

        self.state = CrawlState.RUNNING
        for r in roots:
            self._enqueue(r)

        while self.queue and self._below_ceiling(processed):
            code = self.queue.popleft()
            self._queued.discard(code)
            if code in self.visited:
                continue
            self.visited.add(code)
            processed += 1

            page_log("Crawling %s (%d processed, %d queued)", code, processed, len(self.queue))
            try:
                page = self.spider.fetch(code)
            except (FetchError, ParseError) as exc:
                logger.warning("Skipping %s: %s", code, exc)
                failures[code] = str(exc)
                continue
            except Exception as exc:
                logger.exception("Unexpected error while processing %s", code)
                failures[code] = f"{type(exc).__name__}: {exc}"
                continue

            self._absorb(page, acc)
            if self.progress and processed % PROGRESS_EVERY == 0:
                logger.info("Progress: %d codes processed, %d queued, %d failures", processed, len(self.queue), len(failures))

        self.state = CrawlState.DONE
        result = acc.finalize()
        result.processed = processed
        result.failures = failures
        result.elapsed = time.monotonic() - started
        if self.queue:
            logger.info("Stopped at max_codes=%d with %d codes still queued", self.max_codes, len(self.queue))
        logger.info(
            "Crawl finished: %d codes processed, %d registry codes, %d dose rows, %d failures",
            processed,
            len(result.codes),
            len(result.doses),
            len(failures),
        )
        return result

    def _absorb(self, page: PageResult, acc: ResultAccumulator) -> None:
        acc.add_codes(page.codes)
        if page.type == "leaf":
            acc.add_doses(page.doses)
            return
        for child in page.children:
            self._enqueue(child.code)


def crawl(
    roots: Iterable[str] = DEFAULT_ROOTS,
    *,
    fetcher: Optional[RateLimitedFetcher] = None,
    settings: Optional[Settings] = None,
    min_delay: Optional[float] = None,
    max_codes: Optional[int] = None,
    progress: bool = False,
    quiet: bool = False,
) -> CrawlResult:
    """Crawl the WHO ATC/DDD index from the given roots.

    Validation of roots and max_codes happens before any network activity.
    When no fetcher is passed, one is built from settings (or the environment)
    and closed after the run; min_delay then overrides settings.min_delay.
    A passed fetcher keeps its own delay unless min_delay is given, in which
    case it applies to every request of this run.
    """
    roots = validate_roots(roots)
    _validate_ceiling(max_codes)
    _validate_min_delay(min_delay)
    if settings is None:
        settings = get_settings()
    if min_delay is not None:
        settings = dataclasses.replace(settings, min_delay=min_delay)
    own_fetcher = fetcher is None
    fetcher = fetcher or RateLimitedFetcher.from_settings(settings)
    try:
        spider = AtcSpider(fetcher, settings=settings, min_delay=min_delay)
        crawler = Crawler(spider, max_codes=max_codes, progress=progress, quiet=quiet)
        return crawler.run(roots)
    finally:
        if own_fetcher:
            fetcher.close()
