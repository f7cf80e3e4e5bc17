from __future__ import annotations


class FinanceTrackerError(Exception):
    """Base class for errors that are reported to API callers."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinanceTrackerError, ValueError):
    kind = "validation_error"
    status_code = 400


class AuthenticationError(FinanceTrackerError):
    kind = "unauthorized"
    status_code = 401


class NotFoundError(FinanceTrackerError):
    kind = "not_found"
    status_code = 404


class ConflictError(FinanceTrackerError):
    kind = "conflict"
    status_code = 409


class StoreError(FinanceTrackerError):
    """Raised when the persisted store fails inside a unit of work.

    The unit of work has already been rolled back when this is raised.
    """

    kind = "internal_error"
    status_code = 500


class UpstreamRateError(RuntimeError):
    """Raised when the exchange-rate provider cannot deliver usable rates.

    Never surfaced to API callers; the rate cache resolves it internally.
    """
