"""
Exceptions raised by the order engine.

Payment declines are not exceptions: they come back as a failed
``PaymentOutcome``.  Notification failures are recorded, never raised.
"""

from __future__ import annotations


class OrderError(Exception):
    """Base class for errors surfaced to API callers."""


class ValidationError(OrderError, ValueError):
    """Malformed or inconsistent input, e.g. totals that do not add up."""


class InvalidTransitionError(ValidationError):
    """A status change the state machine does not allow."""


class NotFoundError(OrderError, LookupError):
    """Unknown order or prescription id."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity.capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
