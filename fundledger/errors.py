"""
Error taxonomy shared by services and routers.

Services raise these; ``main`` maps them onto HTTP responses. Batch
operations (rollover sweeps, recalculation sweeps) catch them per item and
report the failure in their result instead of raising.
"""

from typing import Any, Dict, Optional


class FundLedgerError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FundLedgerError):
    """Malformed or out-of-range input."""

    kind = "validation_error"
    status_code = 400


class NotFound(FundLedgerError):
    """A referenced investor, year, distribution or transaction does not exist."""

    kind = "not_found"
    status_code = 404


class InvalidState(FundLedgerError):
    """The operation is not legal for the current lifecycle state."""

    kind = "invalid_state"
    status_code = 409


class ExternalServiceError(FundLedgerError):
    """FX lookup or notification dispatch failed."""

    kind = "external_service_error"
    status_code = 502


class PersistenceError(FundLedgerError):
    """The record store failed."""

    kind = "persistence_error"
    status_code = 503
