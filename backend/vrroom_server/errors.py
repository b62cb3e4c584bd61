"""
Error taxonomy for VRroom Server.

Every failure that reaches a front end is one of these types. Each carries
the HTTP status it maps to, so both surfaces render the same envelope:

    {"success": false, "error": "<message>"}

Invariants:
    - All domain errors inherit from VrroomError
    - AuthenticationError always carries the same message
    - InternalError never exposes the underlying cause to callers

How to change safely:
    - New error types must pick an existing status class
    - Do not put internal detail (paths, SQL, tracebacks) in messages
"""

from __future__ import annotations

from typing import Any


class VrroomError(Exception):
    """Base exception for all VRroom domain errors.

    Attributes:
        message: Client-safe error message
        code: Error code for programmatic handling
        status: HTTP status code
    """

    default_code = "VRROOM_ERROR"
    default_status = 400

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status or self.default_status

    def to_dict(self) -> dict[str, Any]:
        """Render as the shared error envelope."""
        return {"success": False, "error": self.message}


class ValidationError(VrroomError):
    """Malformed id or enum, missing field, invalid value."""

    default_code = "VALIDATION_ERROR"
    default_status = 400


class AuthenticationError(VrroomError):
    """Missing, invalid or expired bearer token, or bad credentials."""

    default_code = "UNAUTHENTICATED"
    default_status = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class AuthorizationError(VrroomError):
    """Valid identity without the required ownership.

    Only raised where the target's existence is not itself sensitive;
    otherwise callers get NotFoundError.
    """

    default_code = "FORBIDDEN"
    default_status = 403


class NotFoundError(VrroomError):
    default_code = "NOT_FOUND"
    default_status = 404


class ConflictError(VrroomError):
    """Duplicate handle/email or conflicting relationship state.

    Some relationship conflicts are reported as a domain-specific 400.
    """

    default_code = "CONFLICT"
    default_status = 409


class InternalError(VrroomError):
    """Store failure or unexpected fault."""

    default_code = "INTERNAL"
    default_status = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
