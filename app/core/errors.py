from __future__ import annotations


class AccountingError(Exception):
    """Base class for errors raised by the accounting services."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(AccountingError):
    status_code = 401


class NotFoundError(AccountingError):
    status_code = 404


class ValidationError(AccountingError):
    status_code = 400


class InvalidStateError(AccountingError):
    """The record exists but its current status does not allow the operation."""

    status_code = 409
