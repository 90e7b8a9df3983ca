"""
core/errors.py -- Error taxonomy for ThreatMap.

Every failure the domain layer raises on purpose is one of these. The API
layer maps them to HTTP responses in api/main.py; nothing below api/ knows
about status codes.

  ValidationError    -- bad input (out-of-range probability/impact, missing
                        required fields, malformed alert id). 422. Never retried.
  InvalidRangeError  -- ValidationError raised by the scorer itself.
  NotFoundError      -- referenced entity does not exist (or belongs to
                        another user). 404.
  RepositoryError    -- storage failure. 500. Never retried automatically:
                        scoring side effects make blind retries unsafe.

Layer rule: core/ is the kernel. No imports from api/, auth/, posture/, or alerts/.
"""

from __future__ import annotations

from typing import Optional


class ThreatMapError(Exception):
    """Base class for all domain errors."""


class ValidationError(ThreatMapError):
    """Input failed domain validation.

    errors is a list of {"field": ..., "message": ...} dicts so the API can
    return structured per-field detail.
    """

    def __init__(self, message: str, errors: Optional[list[dict]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors: list[dict] = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"field": field, "message": message}])


class InvalidRangeError(ValidationError):
    """probability or impact outside its domain when handed to the scorer."""


class NotFoundError(ThreatMapError):
    def __init__(self, entity: str, entity_id: object = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            message = f"{entity.capitalize()} not found."
        else:
            message = f"{entity.capitalize()} {entity_id} not found."
        super().__init__(message)
        self.message = message


class RepositoryError(ThreatMapError):
    """Wraps a storage-layer exception. The original is kept as __cause__."""
