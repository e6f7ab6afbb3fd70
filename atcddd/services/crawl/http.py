from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional

import httpx
from selectolax.parser import HTMLParser
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from atcddd.config import DEFAULT_USER_AGENT, Settings, get_settings
from atcddd.errors import FetchError, StoreError, ValidationError

from .cache import CacheStore, FileCache

logger = logging.getLogger(__name__)

# Statuses worth another attempt; other 4xx fail immediately.
_RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


class _TransientFetchError(FetchError):
    pass


class RateLimitedFetcher:
    """HTTP GET with a global minimum delay, retries and a raw-bytes cache.

    The last-request timestamp is held on the instance, so two fetchers never
    throttle each other. Cache hits skip both the delay and the network.

    Usage::

        with RateLimitedFetcher(cache=FileCache("~/.cache/atcddd"), min_delay=1.0) as f:
            doc = f.fetch("https://www.whocc.no/atc_ddd_index/?code=D01&showdescription=no")
    """

    def __init__(
        self,
        *,
        cache: Optional[CacheStore] = None,
        min_delay: float = 0.5,
        timeout: float = 30.0,
        max_attempts: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
        backoff: float = 0.5,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        _check_params(min_delay, timeout, max_attempts)
        self.cache = cache
        self.min_delay = float(min_delay)
        self.timeout = float(timeout)
        self.max_attempts = int(max_attempts)
        self.user_agent = user_agent
        self.backoff = float(backoff)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        self._sleep = sleep
        self._clock = clock
        # Held from the delay check until the timestamp is updated, so threads
        # sharing one fetcher still space their requests.
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None
        self.requests_sent = 0

    @classmethod
    def from_settings(cls, settings: Settings, *, use_cache: bool = True, **kwargs) -> "RateLimitedFetcher":
        cache = FileCache(settings.cache_dir) if use_cache else None
        return cls(
            cache=cache,
            min_delay=settings.min_delay,
            timeout=settings.timeout,
            max_attempts=settings.max_attempts,
            user_agent=settings.user_agent,
            **kwargs,
        )

    # --- Public API ---
    def fetch(
        self,
        url: str,
        *,
        min_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> HTMLParser:
        """Return a freshly parsed document for url."""
        data = self.fetch_bytes(url, min_delay=min_delay, timeout=timeout, max_attempts=max_attempts)
        return HTMLParser(data)

    def fetch_bytes(
        self,
        url: str,
        *,
        min_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> bytes:
        min_delay = self.min_delay if min_delay is None else min_delay
        timeout = self.timeout if timeout is None else timeout
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        _check_params(min_delay, timeout, max_attempts)

        if self.cache is not None:
            cached = self.cache.get(url)
            if cached is not None:
                logger.debug("Cache hit %s", url)
                return cached

        data = self._download(url, min_delay=min_delay, timeout=timeout, max_attempts=max_attempts)

        if self.cache is not None:
            try:
                self.cache.put(url, data)
            except StoreError as exc:
                logger.warning("Proceeding uncached: %s", exc)
        return data

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RateLimitedFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- Internals ---
    def _download(self, url: str, *, min_delay: float, timeout: float, max_attempts: int) -> bytes:
        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=30),
            retry=retry_if_exception_type(_TransientFetchError),
            sleep=self._sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.info("Retrying %s (attempt %d/%d)", url, n, max_attempts)
                return self._request_once(url, min_delay=min_delay, timeout=timeout)
        raise FetchError(f"No attempt made for {url}", url=url)  # pragma: no cover

    def _request_once(self, url: str, *, min_delay: float, timeout: float) -> bytes:
        with self._lock:
            self._wait_for_slot(min_delay)
            logger.debug("GET %s", url)
            try:
                resp = self._client.get(url, headers={"User-Agent": self.user_agent}, timeout=timeout)
            except httpx.HTTPError as exc:
                raise _TransientFetchError(f"Request to {url} failed: {exc}", url=url) from exc
            finally:
                self._last_request = self._clock()
                self.requests_sent += 1

        status = resp.status_code
        if status in _RETRY_STATUSES:
            raise _TransientFetchError(f"HTTP error {status} at {url}", url=url, status=status)
        if status >= 400:
            raise FetchError(f"HTTP error {status} at {url}", url=url, status=status)
        return resp.content

    def _wait_for_slot(self, min_delay: float) -> None:
        if self._last_request is None or min_delay <= 0:
            return
        elapsed = self._clock() - self._last_request
        if elapsed < min_delay:
            self._sleep(min_delay - elapsed)


def _check_params(min_delay: float, timeout: float, max_attempts: int) -> None:
    if min_delay is None or not math.isfinite(min_delay) or min_delay < 0:
        raise ValidationError(f"min_delay must be >= 0, got {min_delay!r}")
    if timeout is None or not math.isfinite(timeout) or timeout <= 0:
        raise ValidationError(f"timeout must be > 0, got {timeout!r}")
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
        raise ValidationError(f"max_attempts must be a positive integer, got {max_attempts!r}")


_shared_fetcher: Optional[RateLimitedFetcher] = None
_shared_lock = threading.Lock()


def get_fetcher() -> RateLimitedFetcher:
    """Return the process-wide fetcher used by the HTTP API, creating it on first use."""
    global _shared_fetcher
    with _shared_lock:
        if _shared_fetcher is None:
            _shared_fetcher = RateLimitedFetcher.from_settings(get_settings())
        return _shared_fetcher


def close_fetcher() -> None:
    global _shared_fetcher
    with _shared_lock:
        if _shared_fetcher is not None:
            _shared_fetcher.close()
            _shared_fetcher = None
