from typing import Optional


class AtcError(Exception):
    """Base class for all crawler errors."""


class ValidationError(AtcError, ValueError):
    """Malformed root code or parameter. Raised before any I/O happens."""


class FetchError(AtcError):
    """Network or HTTP failure after all retry attempts were used."""

    def __init__(self, message: str, *, url: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(AtcError):
    """Unexpected page or table shape."""


class StoreError(AtcError):
    """Cache write failure. Callers log it and carry on uncached."""
