"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent error codes and HTTP statuses everywhere.

Usage:
    from fulfillment.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise FrozenProjectError(project_id=42)

A failed approval gate is NOT an exception: the lifecycle engine returns a
``GateBlock`` result so the caller can show ``missing[]`` and offer an
override.
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "Reminder").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a rule (unknown status, missing
    reason, approval on a stale mockup version, ...).  Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.  Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class UnauthorizedError(Exception):
    """Role or department check failed.  Maps to HTTP 403; never retried."""

    def __init__(self, user_id: str | None, action: str, reason: str | None = None) -> None:
        msg = f"User {user_id} is not allowed to {action}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.user_id = user_id
        self.action = action
        self.reason = reason


class InvalidStateTransition(Exception):
    """The project is not in the state the requested change expects.

    Maps to HTTP 409 and is surfaced verbatim to the client.
    """

    def __init__(self, current: str | None, requested: str | None, reason: str | None = None) -> None:
        msg = f"Cannot move from '{current}' to '{requested}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.current_status = current
        self.requested_status = requested
        self.reason = reason


class ProjectOnHoldError(Exception):
    """Mutation attempted while the project is on hold.  Maps to HTTP 423."""

    message = "This project is currently on hold. Release it before making changes."

    def __init__(self, project_id: int, hold: dict | None = None) -> None:
        super().__init__(self.message)
        self.project_id = project_id
        self.hold = hold or {}


class FrozenProjectError(Exception):
    """Mutation attempted while the project is cancelled.

    Carries its own code so the UI can offer "reactivate" instead of a
    generic failure.  Maps to HTTP 423.
    """

    message = "This project is cancelled. Reactivate it before making changes."

    def __init__(self, project_id: int, cancellation: dict | None = None) -> None:
        super().__init__(self.message)
        self.project_id = project_id
        self.cancellation = cancellation or {}


class LineageConflict(Exception):
    """Revision lineage precondition failed (non-latest reopen, concurrent write).

    Not retried automatically: the caller has to re-read the latest-version
    pointer first.  Maps to HTTP 409.
    """

    def __init__(self, lineage_id: int | None, message: str, latest_project_id: int | None = None) -> None:
        super().__init__(message)
        self.lineage_id = lineage_id
        self.latest_project_id = latest_project_id
