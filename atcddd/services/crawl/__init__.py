"""WHO ATC/DDD crawling subsystem.

Structure:
- base.py: record types and code helpers
- cache.py: URL-keyed raw response store
- http.py: rate-limited, retrying, cache-aware fetcher (httpx + selectolax)
- spiders/atc_spider.py: page classification and table/link parsing
- engine.py: breadth-first traversal and result accumulation
- pipeline.py: CSV export and checksum manifest
- runner.py: CLI entrypoint
"""

__all__ = [
    "crawl",
    "CrawlResult",
]

from .engine import CrawlResult, crawl
