# deficiency_engine/errors.py
from __future__ import annotations

from enum import Enum


class DeficiencyEngineError(Exception):
    """Base for every error this package raises on purpose."""

    retryable = True


class PreconditionViolation(DeficiencyEngineError):
    """Contract breach by the caller (e.g. deriving DIs from an incomplete inspection). Never retried."""

    retryable = False


class NotFoundError(DeficiencyEngineError):
    """A referenced inspection, property or DI is gone; skip that unit of work."""


class RepositoryWriteError(DeficiencyEngineError):
    """
    One side of a dual-store write failed.

    The other side is NOT rolled back; the next reconciliation pass converges.
    """

    def __init__(self, message: str, *, store: str) -> None:
        super().__init__(message)
        self.store = store


class IntegrationErrorKind(str, Enum):
    CARD_DELETED = "card_deleted"
    NOT_AUTHORIZED = "not_authorized"
    NOT_CONFIGURED = "not_configured"
    REQUEST_FAILED = "request_failed"


class ExternalIntegrationError(DeficiencyEngineError):
    def __init__(self, message: str, *, kind: IntegrationErrorKind) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def removed_upstream(self) -> bool:
        return self.kind is IntegrationErrorKind.CARD_DELETED


class TicketBoardError(ExternalIntegrationError):
    pass
