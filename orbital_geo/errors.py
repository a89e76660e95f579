"""
Exception types.

Only InvalidDistance is a programming error. Everything else is recoverable
and is absorbed by the extraction orchestrator.
"""

from __future__ import annotations


class OrbitalGeoError(Exception):
    """Base class for errors raised by this package."""


class GeocodingUnavailable(OrbitalGeoError):
    """The provider was unreachable, timed out, or returned an unusable payload."""

    def __init__(self, query: str, reason: str):
        super().__init__(f"geocoding unavailable for {query!r}: {reason}")
        self.query = query
        self.reason = reason


class InvalidDistance(OrbitalGeoError, ValueError):
    """A negative, NaN or infinite distance was passed to the tier classifier."""

    def __init__(self, value: float):
        super().__init__(f"invalid distance: {value!r} km")
        self.value = value
