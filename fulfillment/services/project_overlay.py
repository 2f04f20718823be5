"""
Hold / Cancel overlay service.

Two overlays sit on top of the pipeline status:

    hold    status is forced to "On Hold"; the previous status is snapshotted
            and restored (or replaced by an explicit release status) later.
    cancel  freezes every mutation except reactivate.  The status and the
            whole hold sub-document are snapshotted and restored verbatim,
            so a held project that is cancelled and reactivated is held again.

Both are admin-portal-only and both leave an activity entry plus a
stakeholder notification.

Usage:
    from fulfillment.services.project_overlay import ensure_mutable, set_hold

    ensure_mutable(project)          # raises FrozenProjectError / ProjectOnHoldError
    set_hold(project_id, actor, on_hold=True, reason="Client unreachable")
"""

import logging

from flask import current_app

from fulfillment.core.exceptions import (
    FrozenProjectError,
    InvalidStateTransition,
    ProjectOnHoldError,
    ValidationError,
)
from fulfillment.core.workflow import ProjectStatus, is_status_valid_for_type, parse_status
from fulfillment.models.activity import record_activity
from fulfillment.services.helpers.project_queries import commit_project, get_project
from fulfillment.services.notification import NotificationService
from fulfillment.services.permission import require_admin_portal
from fulfillment.utils.helpers import parse_datetime, utcnow

logger = logging.getLogger(__name__)


def ensure_mutable(project) -> None:
    """Precondition for every mutating entry point except the overlay itself."""
    if project.is_cancelled:
        raise FrozenProjectError(project.id, project.cancellation_state())
    if project.is_on_hold:
        raise ProjectOnHoldError(project.id, project.hold_state())


def _concurrent_change(current, requested):
    return lambda: InvalidStateTransition(
        current, requested, "the project was modified concurrently; reload and retry",
    )


def _restorable(status, project_type) -> bool:
    parsed = parse_status(status)
    return (
        parsed is not None
        and parsed != ProjectStatus.ON_HOLD
        and is_status_valid_for_type(parsed, project_type)
    )


def _resolve_release_status(project, release_status) -> str:
    default = current_app.config.get("DEFAULT_RELEASE_STATUS", ProjectStatus.IN_PROGRESS.value)
    if release_status:
        if _restorable(release_status, project.project_type):
            return parse_status(release_status).value
        logger.info(
            "Release status %r rejected for project %s, using %r",
            release_status, project.id, default,
            extra={"project_id": project.id, "event_type": "hold_release"},
        )
        return default
    if _restorable(project.hold_previous_status, project.project_type):
        return parse_status(project.hold_previous_status).value
    return default


def _notify_stakeholders(project, actor, type, title, message):
    result = NotificationService.broadcast(
        NotificationService.project_stakeholders(project),
        actor.user_id, project.id, type, title, message,
    )
    if not result.ok:
        logger.warning(
            "Overlay notification partially failed for project %s", project.id,
            extra={"project_id": project.id, "event_type": type},
        )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Hold
# ═════════════════════════════════════════════════════════════════════════════

def set_hold(project_id, actor, *, on_hold: bool, reason=None, release_status=None):
    """Enter, update or release the hold overlay."""
    project = get_project(project_id)
    if project.is_cancelled:
        raise FrozenProjectError(project.id, project.cancellation_state())
    require_admin_portal(actor, project, "change the hold state")

    now = utcnow()
    reason = (reason or "").strip()

    if on_hold:
        if project.is_on_hold:
            if reason:
                project.hold_reason = reason
            record_activity(project.id, actor.user_id, "hold", "Hold reason updated",
                            {"reason": project.hold_reason})
            commit_project(project, on_stale=_concurrent_change(project.status, ProjectStatus.ON_HOLD.value))
            return project

        previous = project.status
        project.hold_previous_status = previous
        project.status = ProjectStatus.ON_HOLD.value
        project.is_on_hold = True
        project.hold_reason = reason
        project.held_at = now
        project.held_by = actor.user_id
        project.hold_released_at = None
        project.hold_released_by = None
        project.gate_blocks = {}
        record_activity(
            project.id, actor.user_id, "hold", f"Project put on hold (was {previous})",
            {"from": previous, "reason": reason},
        )
        commit_project(project, on_stale=_concurrent_change(previous, ProjectStatus.ON_HOLD.value))
        logger.info("Project %s put on hold", project.id,
                    extra={"project_id": project.id, "event_type": "hold"})
        _notify_stakeholders(
            project, actor, "HOLD", f"Project on hold: {project.project_name}",
            reason or f"Paused at {previous}.",
        )
        return project

    if not project.is_on_hold:
        raise InvalidStateTransition(project.status, release_status, "project is not on hold")

    restored = _resolve_release_status(project, release_status)
    project.status = restored
    project.is_on_hold = False
    project.hold_released_at = now
    project.hold_released_by = actor.user_id
    project.gate_blocks = {}
    record_activity(
        project.id, actor.user_id, "hold_release", f"Hold released to {restored}",
        {"to": restored, "requested": release_status, "previous_status": project.hold_previous_status},
    )
    commit_project(project, on_stale=_concurrent_change(ProjectStatus.ON_HOLD.value, restored))
    logger.info("Project %s released from hold to %s", project.id, restored,
                extra={"project_id": project.id, "event_type": "hold_release"})
    _notify_stakeholders(
        project, actor, "HOLD", f"Project resumed: {project.project_name}",
        f"Hold released; status is now {restored}.",
    )
    return project


# ═════════════════════════════════════════════════════════════════════════════
# Cancel / Reactivate
# ═════════════════════════════════════════════════════════════════════════════

def cancel_project(project_id, actor, reason):
    """Freeze the project, snapshotting status and the hold sub-document."""
    project = get_project(project_id)
    require_admin_portal(actor, project, "cancel the project")
    if project.is_cancelled:
        raise InvalidStateTransition(project.status, "cancel", "project is already cancelled")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required", {"reason": "required"})

    project.resumed_status = project.status
    project.resumed_hold_state = project.hold_state()
    project.is_cancelled = True
    project.cancel_reason = reason
    project.cancelled_at = utcnow()
    project.cancelled_by = actor.user_id
    project.reactivated_at = None
    project.reactivated_by = None
    record_activity(
        project.id, actor.user_id, "cancel", "Project cancelled",
        {"reason": reason, "status": project.status, "on_hold": bool(project.is_on_hold)},
    )
    commit_project(project, on_stale=_concurrent_change(project.status, "cancel"))
    logger.info("Project %s cancelled", project.id,
                extra={"project_id": project.id, "event_type": "cancel"})
    _notify_stakeholders(
        project, actor, "CANCELLATION", f"Project cancelled: {project.project_name}", reason,
    )
    return project


def reactivate_project(project_id, actor):
    """Undo a cancellation, restoring status and hold exactly as they were."""
    project = get_project(project_id)
    require_admin_portal(actor, project, "reactivate the project")
    if not project.is_cancelled:
        raise InvalidStateTransition(project.status, "reactivate", "project is not cancelled")

    cancelled_status = project.status
    snapshot = project.resumed_hold_state or {}
    resumed = project.resumed_status
    if resumed and parse_status(resumed) is not None:
        project.status = resumed

    if snapshot:
        project.is_on_hold = bool(snapshot.get("is_on_hold"))
        project.hold_reason = snapshot.get("reason") or ""
        project.held_at = parse_datetime(snapshot.get("held_at"))
        project.held_by = snapshot.get("held_by")
        project.hold_previous_status = snapshot.get("previous_status")
        project.hold_released_at = parse_datetime(snapshot.get("released_at"))
        project.hold_released_by = snapshot.get("released_by")

    project.is_cancelled = False
    project.reactivated_at = utcnow()
    project.reactivated_by = actor.user_id
    project.resumed_status = None
    project.resumed_hold_state = None
    project.gate_blocks = {}
    record_activity(
        project.id, actor.user_id, "reactivate", f"Project reactivated at {project.status}",
        {"status": project.status, "on_hold": bool(project.is_on_hold)},
    )
    commit_project(project, on_stale=_concurrent_change(cancelled_status, "reactivate"))
    logger.info("Project %s reactivated", project.id,
                extra={"project_id": project.id, "event_type": "reactivate"})
    _notify_stakeholders(
        project, actor, "CANCELLATION", f"Project reactivated: {project.project_name}",
        f"Status restored to {project.status}.",
    )
    return project
