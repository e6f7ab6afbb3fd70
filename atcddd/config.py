"""Runtime configuration.

Values come from the process environment, optionally seeded from a ``.env``
file at the project root:

- ATCDDD_BASE_URL: index endpoint, the code is appended to it
- ATCDDD_CACHE_DIR: directory of cached raw responses (default ~/.cache/atcddd)
- ATCDDD_MIN_DELAY: minimum seconds between outbound requests (default 0.5)
- ATCDDD_TIMEOUT: per-request timeout in seconds (default 30)
- ATCDDD_MAX_ATTEMPTS: attempts per URL before giving up (default 5)
- ATCDDD_USER_AGENT: client identifier sent with every request
"""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

from atcddd.errors import ValidationError

DEFAULT_BASE_URL = "https://www.whocc.no/atc_ddd_index/"
DEFAULT_USER_AGENT = "atcddd-crawler/0.1 (+https://www.whocc.no/atc_ddd_index/; research use)"

# The 14 anatomical main groups (level 1).
DEFAULT_ROOTS = ("A", "B", "C", "D", "G", "H", "J", "L", "M", "N", "P", "R", "S", "V")


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    cache_dir: str = os.path.join("~", ".cache", "atcddd")
    min_delay: float = 0.5
    timeout: float = 30.0
    max_attempts: int = 5
    user_agent: str = DEFAULT_USER_AGENT

    def code_url(self, code: str) -> str:
        return f"{self.base_url}?code={code}&showdescription=no"


def _load_env_from_file(root_dir: Optional[str] = None) -> None:
    """Load variables from a .env file at the project root if present.

    Only sets variables that aren't already present in the process environment.
    """
    root_dir = root_dir or os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    env_path = os.path.join(root_dir, ".env")
    if not os.path.isfile(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s or s.startswith("#") or "=" not in s:
                continue
            key, val = s.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            if key and not os.environ.get(key):
                os.environ[key] = val


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from exc
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number, got {raw!r}")
    if value < 0:
        raise ValidationError(f"{name} must not be negative, got {raw!r}")
    return value


def get_settings(*, load_dotenv: bool = True) -> Settings:
    """Build Settings from the environment, applying defaults for unset keys."""
    if load_dotenv:
        _load_env_from_file()
    base = Settings()
    max_attempts = _env_number("ATCDDD_MAX_ATTEMPTS", base.max_attempts, int)
    if max_attempts < 1:
        raise ValidationError("ATCDDD_MAX_ATTEMPTS must be at least 1")
    return Settings(
        base_url=os.getenv("ATCDDD_BASE_URL") or base.base_url,
        cache_dir=os.path.expanduser(os.getenv("ATCDDD_CACHE_DIR") or base.cache_dir),
        min_delay=_env_number("ATCDDD_MIN_DELAY", base.min_delay, float),
        timeout=_env_number("ATCDDD_TIMEOUT", base.timeout, float),
        max_attempts=max_attempts,
        user_agent=os.getenv("ATCDDD_USER_AGENT") or base.user_agent,
    )
