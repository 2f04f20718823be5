"""Standardised API error responses.

Usage
-----
    from fulfillment.utils.errors import api_error, error_response, E

    return api_error(E.NOT_FOUND, "Project not found")
    return error_response(exc)        # any exception in SERVICE_ERRORS

Every body has the shape ``{"error": <message>, "code": <E.*>, "details": {...}}``.
A gate block is not an exception: the project blueprint renders it with
the gate code, status 409 and ``GateBlock.to_dict()`` as details.
"""

from __future__ import annotations

from typing import Callable

from flask import jsonify

from fulfillment.core.exceptions import (
    ConflictError,
    FrozenProjectError,
    InvalidStateTransition,
    LineageConflict,
    NotFoundError,
    ProjectOnHoldError,
    UnauthorizedError,
    ValidationError,
)


class E:
    """Machine-readable error codes.

    ERR_ codes are generic application errors; PROJECT_ codes name overlay
    states the portals react to (offer release / reactivate).
    """

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    LINEAGE_CONFLICT = "ERR_LINEAGE_CONFLICT"
    FORBIDDEN = "ERR_FORBIDDEN"
    PROJECT_ON_HOLD = "PROJECT_ON_HOLD"
    PROJECT_CANCELLED = "PROJECT_CANCELLED"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.UNAUTHENTICATED: 401,
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.LINEAGE_CONFLICT: 409,
    E.FORBIDDEN: 403,
    E.PROJECT_ON_HOLD: 423,
    E.PROJECT_CANCELLED: 423,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(jsonify(body), http_status)``.

    The status falls back to the code's default, then to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


# exception type -> (code, message, details)
SERVICE_ERRORS: dict[type, tuple[str, Callable, Callable]] = {
    NotFoundError: (E.NOT_FOUND, str, lambda e: None),
    ValidationError: (E.VALIDATION_INVALID, str, lambda e: e.details),
    ConflictError: (E.CONFLICT_DUPLICATE, str, lambda e: {"field": e.field, "value": e.value}),
    UnauthorizedError: (E.FORBIDDEN, str, lambda e: {"action": e.action}),
    InvalidStateTransition: (E.INVALID_TRANSITION, str, lambda e: {
        "current_status": e.current_status,
        "requested_status": e.requested_status,
    }),
    ProjectOnHoldError: (E.PROJECT_ON_HOLD, lambda e: e.message, lambda e: {"hold": e.hold}),
    FrozenProjectError: (E.PROJECT_CANCELLED, lambda e: e.message,
                         lambda e: {"cancellation": e.cancellation}),
    LineageConflict: (E.LINEAGE_CONFLICT, str, lambda e: {
        "lineage_id": e.lineage_id,
        "latest_project_id": e.latest_project_id,
    }),
}


def error_response(exc: Exception):
    """Render a service exception registered in ``SERVICE_ERRORS``."""
    for exc_type in type(exc).__mro__:
        entry = SERVICE_ERRORS.get(exc_type)
        if entry is not None:
            code, message, details = entry
            return api_error(code, message(exc), details=details(exc))
    return api_error(E.INTERNAL, "Internal server error")
