"""Exception hierarchy for the resolver."""

from __future__ import annotations

from typing import List, Optional


class PersonGroupError(Exception):
    """Base class for resolver errors."""


class InvalidCaptureError(PersonGroupError):
    """Capture cannot be resolved as stored (missing schema, missing image)."""


class CaptureNotFoundError(InvalidCaptureError):
    def __init__(self, capture_id: int) -> None:
        super().__init__(f"Capture {capture_id} not found")
        self.capture_id = capture_id


class ExternalServiceError(PersonGroupError):
    """An external describer/classifier/comparator call failed."""


class ExternalTimeoutError(ExternalServiceError):
    """An external call exceeded its caller-enforced timeout."""


class VerificationError(PersonGroupError):
    """Vision verification aborted because the comparator failed."""

    def __init__(self, message: str, group_id: Optional[int] = None, comparisons: Optional[List] = None) -> None:
        super().__init__(message)
        self.group_id = group_id
        self.comparisons = list(comparisons or [])


class StorageError(PersonGroupError):
    """A store transaction could not be committed."""
