# Overview: Domain error taxonomy shared by services and the HTTP layer.

"""
Every failure a service can report derives from DomainError.

Routes never inspect messages; they map the error class to an HTTP status
through `status_code` and `code`, and services never import Flask response
helpers. A failed operation always leaves entity state unchanged (see
services/concurrency.run_with_retry, which rolls the session back).
"""

from __future__ import annotations


class DomainError(Exception):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, *, errors: dict | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}


class ValidationError(DomainError):
    """400-level input problem (field-level detail in `errors`)."""
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(DomainError):
    """Missing, invalid or expired credentials."""
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(DomainError):
    """Principal lacks authorization for the resource/action."""
    status_code = 403
    code = "FORBIDDEN"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class IllegalTransition(DomainError):
    """Requested status change is not in the legal-successor set."""
    status_code = 409
    code = "ILLEGAL_TRANSITION"


class AlreadyConverted(DomainError):
    """Quote has already produced an order."""
    status_code = 409
    code = "ALREADY_CONVERTED"


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., duplicate email)."""
    status_code = 409
    code = "CONFLICT"


class StorageUnavailable(DomainError):
    """Persistence layer unreachable after retries."""
    status_code = 503
    code = "STORAGE_UNAVAILABLE"


class ConcurrencyConflict(Exception):
    """
    Internal signal that a unit of work lost a race and should be retried
    from the top (e.g., two callers creating the same sequence counter row).

    Never surfaces to callers: run_with_retry either retries it or converts
    it to StorageUnavailable.
    """
