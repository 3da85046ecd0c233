# Overview: Domain exception hierarchy shared by services and routes.

"""
Every service raises a ServiceError subclass; route handlers translate
them with `e.status_code`. Anything that is not a ServiceError is an
internal failure: it is logged and surfaced as a bare 500.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(ServiceError):
    """Missing or malformed input."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    """Business rule conflict (duplicate name, duplicate invoice number...)."""
    status_code = 409


class InsufficientStockError(ValidationError):
    """One or more invoice lines exceed available stock."""


class AlreadyVoidedError(ValidationError):
    pass


class HasReturnsError(ValidationError):
    pass
