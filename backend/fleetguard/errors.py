# Overview: Typed failures raised by the authorization core and mapped to HTTP responses.

"""
Authorization Error Taxonomy

Every failure the core reports to a caller is one of these types. Routes
translate them into JSON bodies with the matching status code; nothing in
this module is ever downgraded to a generic 500.

- UnauthenticatedError: no resolvable principal
- ForbiddenError: authorize() returned deny
- NotFoundError: company / membership / token absent
- ConflictError: uniqueness violation that retries could not resolve
- ExpiredError: verification token past its expiry
- TransientStoreError: retryable infrastructure fault that exhausted retries
"""

from flask import jsonify


class AuthzError(Exception):
    """Base class: carries an HTTP status and a machine-readable reason."""

    status_code = 400
    default_reason = "error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class UnauthenticatedError(AuthzError):
    status_code = 401
    default_reason = "unauthenticated"


class ForbiddenError(AuthzError):
    status_code = 403
    default_reason = "forbidden"


class NotFoundError(AuthzError):
    status_code = 404
    default_reason = "not_found"


class ConflictError(AuthzError):
    status_code = 409
    default_reason = "conflict"


class ExpiredError(AuthzError):
    status_code = 410
    default_reason = "expired"


class TransientStoreError(AuthzError):
    status_code = 503
    default_reason = "transient_store_error"


def error_response(exc: AuthzError):
    """(body, status) pair for a route handler."""
    return jsonify(exc.to_dict()), exc.status_code
