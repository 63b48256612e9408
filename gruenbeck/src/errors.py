"""
Error taxonomy for the collector.

Fetch and parse failures abort the current poll cycle and leave the
watermark untouched. Storage failures are non-fatal: the scheduler degrades
to single-value mode for that cycle instead of failing it.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for all collector errors."""


class NetworkError(CollectorError):
    """Device fetch failed after exhausting retries, or the response overflowed."""


class ParseError(CollectorError):
    """Device response is not usable XML or carries no daily value."""


class DeviceError(CollectorError):
    """Device reported a non-ok status in its ``code`` field.

    Args:
        message: Human-readable description.
        code: The raw status text returned by the device.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class StorageError(CollectorError):
    """Watermark file could not be read or written."""
