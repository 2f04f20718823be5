"""
Project Lifecycle Service — the status transition engine.

Manages project status changes with:
  - Overlay preconditions (cancelled → frozen, on hold → locked)
  - Authorization (quality gates, admin, department grants, lead close-out)
  - Auto-advancement ("X Completed" persists as the next "Pending Y")
  - Approval gates (mockup, sample, acknowledgement, billing)
  - Edge-triggered gate notifications via ``Project.gate_blocks``
  - Activity trail and stakeholder / department notifications

A failed gate is not an exception: ``transition_status`` returns a
``TransitionResult`` whose ``blocked`` carries the GateBlock.

Usage:
    from fulfillment.services.project_lifecycle import transition_status

    result = transition_status(42, actor, "Mockup Completed")
    if result.blocked:
        show(result.blocked.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fulfillment.core.exceptions import InvalidStateTransition, UnauthorizedError, ValidationError
from fulfillment.core.workflow import (
    DEPARTMENT_STAGE_GRANTS,
    LEAD_TRANSITIONS,
    QUALITY_GATE_COMPLETIONS,
    STAGE_DEPARTMENT_ALERTS,
    Department,
    ProjectStatus,
    is_status_valid_for_type,
    parse_status,
    resolve_auto_advance,
    statuses_for_type,
)
from fulfillment.models.activity import record_activity
from fulfillment.models.project import Project
from fulfillment.services.gates import (
    GateBlock,
    MissingRequirement,
    billing_missing,
    evaluate_gates,
    first_gate_block,
)
from fulfillment.services.helpers.project_queries import commit_project, get_project
from fulfillment.services.notification import DispatchResult, NotificationService
from fulfillment.services.permission import Actor, lead_conflict
from fulfillment.services.project_overlay import ensure_mutable

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    project: Project
    blocked: GateBlock | None = None
    from_status: str | None = None
    requested_status: str | None = None
    override_used: bool = False

    @property
    def ok(self) -> bool:
        return self.blocked is None

    def to_dict(self) -> dict:
        return {
            "project": self.project.to_dict(),
            "blocked": self.blocked.to_dict() if self.blocked else None,
            "from": self.from_status,
            "requested": self.requested_status,
            "override_used": self.override_used,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Validation & authorization
# ═════════════════════════════════════════════════════════════════════════════

def _validate_request(project, requested_status) -> ProjectStatus:
    ensure_mutable(project)
    requested = parse_status(requested_status)
    if requested is None:
        raise ValidationError(f"Unknown status '{requested_status}'", {"status": "unknown"})
    if requested == ProjectStatus.ON_HOLD:
        raise InvalidStateTransition(project.status, requested.value, "use the hold action instead")
    if not is_status_valid_for_type(requested, project.project_type):
        raise InvalidStateTransition(
            project.status, requested.value, f"not a valid status for {project.project_type} projects",
        )
    if requested.value == project.status:
        raise InvalidStateTransition(project.status, requested.value, "project is already in this status")
    return requested


def authorize_transition(project, actor: Actor, requested: ProjectStatus) -> None:
    """First matching rule wins; raises UnauthorizedError / InvalidStateTransition."""
    current = parse_status(project.status)
    action = f"move project to '{requested.value}'"

    predecessor = QUALITY_GATE_COMPLETIONS.get(requested)
    if predecessor is not None:
        if not (actor.is_admin and actor.from_admin_portal):
            raise UnauthorizedError(actor.user_id, action, "admin sign-off from the admin portal required")
        if lead_conflict(actor, project):
            raise UnauthorizedError(actor.user_id, action, "the assigned lead cannot sign off their own project")
        if current != predecessor:
            raise InvalidStateTransition(
                project.status, requested.value, f"requires current status '{predecessor.value}'",
            )
        return

    if actor.is_admin:
        if lead_conflict(actor, project):
            raise UnauthorizedError(
                actor.user_id, action, "the assigned lead cannot change status from the admin portal",
            )
        return

    grants = [
        from_status for dept, from_status, to_status in DEPARTMENT_STAGE_GRANTS
        if to_status == requested and dept in actor.departments
    ]
    if grants:
        if current in grants:
            return
        raise InvalidStateTransition(
            project.status, requested.value, f"can only be completed from '{grants[0].value}'",
        )

    required_from = LEAD_TRANSITIONS.get(requested)
    if required_from is not None and actor.is_lead_of(project):
        if current == required_from:
            return
        raise InvalidStateTransition(
            project.status, requested.value, f"requires current status '{required_from.value}'",
        )

    raise UnauthorizedError(actor.user_id, action)


def get_available_transitions(project, actor: Actor) -> list[str]:
    """Statuses this actor may request right now (gates not applied)."""
    if project.is_cancelled or project.is_on_hold:
        return []
    allowed = set()
    for status in statuses_for_type(project.project_type):
        try:
            requested = _validate_request(project, status)
            authorize_transition(project, actor, requested)
        except (InvalidStateTransition, UnauthorizedError, ValidationError):
            continue
        allowed.add(requested)
    return [s.value for s in ProjectStatus if s in allowed]


def preflight_gates(project_id, target_status) -> list[MissingRequirement]:
    """Read-only gate check for a UI pre-flight."""
    project = get_project(project_id)
    if parse_status(target_status) is None:
        raise ValidationError(f"Unknown status '{target_status}'", {"target": "unknown"})
    return evaluate_gates(project, target_status)


# ═════════════════════════════════════════════════════════════════════════════
# Edge-triggered gate bookkeeping
# ═════════════════════════════════════════════════════════════════════════════

def _concurrent_change(current, requested):
    return lambda: InvalidStateTransition(
        current, requested, "the project was modified concurrently; reload and retry",
    )


def _remember_block(project, actor: Actor, requested: ProjectStatus, block: GateBlock) -> None:
    """Store the block; notify only when its missing set changed."""
    blocks = dict(project.gate_blocks or {})
    keys = block.missing_keys
    if blocks.get(requested.value) == keys:
        return
    blocks[requested.value] = keys
    project.gate_blocks = blocks
    commit_project(project, on_stale=_concurrent_change(project.status, requested.value))
    logger.info(
        "Transition to %s blocked by %s gate: %s", requested.value, block.gate.value, keys,
        extra={"project_id": project.id, "event_type": "gate_blocked"},
    )
    NotificationService.broadcast(
        NotificationService.project_stakeholders(project),
        actor.user_id, project.id, "GATE_BLOCKED",
        f"Blocked: {project.project_name}", block.message,
    )


def refresh_gate_blocks(project) -> list[str]:
    """Re-evaluate remembered blocks after a prerequisite mutation.

    Mutates ``project.gate_blocks`` in place (caller commits) and returns
    the targets whose block is now satisfied; pass them to
    ``announce_cleared_gates`` after the commit.
    """
    blocks = dict(project.gate_blocks or {})
    if not blocks:
        return []
    cleared = []
    changed = False
    for target, keys in list(blocks.items()):
        requested = parse_status(target)
        block = first_gate_block(project, requested) if requested else None
        if block is None:
            blocks.pop(target)
            cleared.append(target)
            changed = True
        elif block.missing_keys != keys:
            blocks[target] = block.missing_keys
            changed = True
    if changed:
        project.gate_blocks = blocks
    return cleared


def announce_cleared_gates(project, actor: Actor, cleared: list[str]) -> DispatchResult:
    result = DispatchResult()
    for target in cleared:
        logger.info(
            "Prerequisites for %s now satisfied", target,
            extra={"project_id": project.id, "event_type": "gate_cleared"},
        )
        result.merge(NotificationService.broadcast(
            NotificationService.project_stakeholders(project),
            actor.user_id, project.id, "GATE_CLEARED",
            f"Prerequisites cleared: {project.project_name}",
            f"'{target}' can now proceed.",
        ))
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════

def transition_status(
    project_id,
    actor: Actor,
    requested_status,
    *,
    allow_billing_override: bool = False,
) -> TransitionResult:
    """
    Execute a status change.

    Args:
        project_id: Project primary key
        actor: Who is asking (role, departments, request origin)
        requested_status: The status the caller asks for; completions are
            auto-advanced before they are persisted
        allow_billing_override: Admin-only bypass of the billing gate

    Returns:
        TransitionResult with either the updated project or a GateBlock.

    Raises:
        NotFoundError, ValidationError, InvalidStateTransition,
        UnauthorizedError, ProjectOnHoldError, FrozenProjectError
    """
    project = get_project(project_id)
    requested = _validate_request(project, requested_status)
    authorize_transition(project, actor, requested)

    resolved = resolve_auto_advance(requested, project.project_type)
    override = bool(allow_billing_override) and actor.is_admin
    block = first_gate_block(project, requested, resolved, skip_billing=override)
    if block is not None:
        _remember_block(project, actor, requested, block)
        return TransitionResult(
            project=project, blocked=block,
            from_status=project.status, requested_status=requested.value,
        )

    bypassed = billing_missing(project, resolved) if override else []

    from_status = project.status
    project.status = resolved.value
    # Blocks were recorded against the previous status
    project.gate_blocks = {}

    record_activity(
        project.id, actor.user_id, "status_change",
        f"Status changed from {from_status} to {resolved.value}",
        {"from": from_status, "to": resolved.value, "requested": requested.value},
    )
    if bypassed:
        record_activity(
            project.id, actor.user_id, "billing_override",
            f"Billing prerequisites overridden for {resolved.value}",
            {"target_status": resolved.value, "missing": [m.key for m in bypassed]},
        )
    commit_project(project, on_stale=_concurrent_change(from_status, requested.value))
    logger.info(
        "Project %s moved %s -> %s", project.id, from_status, resolved.value,
        extra={"project_id": project.id, "event_type": "status_change"},
    )

    _dispatch_transition_notices(project, actor, from_status, requested, resolved, bypassed)
    return TransitionResult(
        project=project, from_status=from_status,
        requested_status=requested.value, override_used=bool(bypassed),
    )


def _dispatch_transition_notices(project, actor, from_status, requested, resolved, bypassed):
    result = NotificationService.broadcast(
        NotificationService.project_stakeholders(project),
        actor.user_id, project.id, "STATUS_CHANGE",
        f"Status updated: {project.project_name}",
        f"{from_status} → {resolved.value}",
    )

    alerts: list[tuple[Department, str]] = []
    department = STAGE_DEPARTMENT_ALERTS.get(resolved)
    if department is not None:
        alerts.append((department, f"{project.project_name} is now in your queue ({resolved.value})."))
    if requested == ProjectStatus.MOCKUP_COMPLETED and department != Department.PRODUCTION:
        alerts.append((
            Department.PRODUCTION,
            f"Mockup completed for {project.project_name}; production is coming up.",
        ))
    for dept, message in alerts:
        result.merge(NotificationService.broadcast(
            NotificationService.department_members(dept),
            actor.user_id, project.id, "DEPARTMENT_ALERT",
            f"{project.project_name}: {resolved.value}", message,
        ))

    if bypassed:
        result.merge(NotificationService.broadcast(
            NotificationService.project_stakeholders(project),
            actor.user_id, project.id, "BILLING_OVERRIDE",
            f"Billing override used: {project.project_name}",
            "Moved to {} without: {}.".format(resolved.value, ", ".join(m.label for m in bypassed)),
        ))

    if not result.ok:
        logger.warning(
            "Status change notifications failed for %d recipient(s)", len(result.failed),
            extra={"project_id": project.id, "event_type": "status_change"},
        )
    return result
