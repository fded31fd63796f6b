# notifier/api/errors.py
"""
Typed errors raised by the notification and subscription services.

The transport layer maps every ``ServiceError`` to an HTTP response using its
``status_code``, so route handlers carry no business rules.
"""
from __future__ import annotations


class ServiceError(Exception):
    """Base class for service-layer errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(ServiceError):
    """Request rejected by a business rule (400)."""

    status_code = 400


class NotFoundError(ServiceError):
    """Resource not found (404)."""

    status_code = 404
