# switchboard/admin/errors.py
"""
Typed domain errors for the connection admin service.

Each error carries the HTTP status code a transport layer would map it to,
so route handlers stay free of business logic.
"""
from __future__ import annotations


class AdminError(Exception):
    """Base class for all admin domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(AdminError):
    """Invalid request payload (400)."""

    status_code = 400


class NotFoundError(AdminError):
    """Resource not found (404)."""

    status_code = 404
