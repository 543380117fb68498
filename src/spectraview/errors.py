"""
Custom exceptions for the SpectraView pipeline.

None of these escape the public capture API; they travel through the
diagnostics bus so failures stay observable without reaching the host.
"""

from __future__ import annotations


class SpectraViewError(Exception):
    """Base error for the capture pipeline."""

    pass


class DeliveryError(SpectraViewError):
    """Collector rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OverflowStoreError(SpectraViewError):
    """Overflow store unavailable, over quota, or holding a corrupt record."""

    pass


class CompressionError(SpectraViewError):
    """Visual events could not be encoded for transport."""

    pass
