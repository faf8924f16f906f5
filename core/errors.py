"""
core/errors.py -- Error kinds shared by every layer.

Stores and domain services raise these; api/main.py maps them to HTTP
responses in one exception handler. The message is what the client sees, so
it must stay user-safe. Anything detailed belongs in the server log.

Layer rule: core/ imports nothing from the other packages.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class. Subclasses pin the HTTP status and the machine-readable code."""

    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(StorefrontError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Unauthorized(StorefrontError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class InvalidInput(StorefrontError):
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid request."


class NotFound(StorefrontError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class Conflict(StorefrontError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicts with existing data."


class Misconfigured(StorefrontError):
    status_code = 500
    code = "server_configuration_error"
    default_message = "Server configuration error."


class Internal(StorefrontError):
    pass
