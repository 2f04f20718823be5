"""
Project Actions Service — intake plus the department and billing actions
that feed the approval gates.

Every mutating action:
    1. loads the project and checks the overlay (``ensure_mutable``)
    2. checks the actor's role / department
    3. mutates, then re-evaluates remembered gate blocks
    4. appends an activity entry and commits with a row-version check
    5. announces gates that went from blocked to satisfied (once)

Usage:
    from fulfillment.services import project_actions

    project_actions.mark_invoice_sent(42, actor)
    project_actions.verify_payment(42, actor, "full_payment")
"""

import logging

from fulfillment.core.exceptions import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from fulfillment.core.workflow import (
    PAYMENT_TYPES,
    PRIORITIES,
    Department,
    ProjectStatus,
    ProjectType,
    canonical_department,
    canonical_departments,
    intake_status,
    is_status_valid_for_type,
    parse_project_type,
    parse_status,
)
from fulfillment.models import db
from fulfillment.models.activity import record_activity
from fulfillment.models.project import (
    MockupVersion,
    PaymentVerification,
    Project,
    ProjectAcknowledgement,
    ProjectFeedback,
)
from fulfillment.services.helpers.project_queries import get_project, stale_guard
from fulfillment.services.notification import NotificationService
from fulfillment.services.permission import lead_conflict, require_admin, require_department
from fulfillment.services.project_lifecycle import announce_cleared_gates, refresh_gate_blocks
from fulfillment.services.project_overlay import ensure_mutable
from fulfillment.utils.helpers import parse_datetime, to_bool, utcnow

logger = logging.getLogger(__name__)

FEEDBACK_TYPES = {"positive", "negative"}
MOCKUP_DECISIONS = {"approved", "rejected", "pending"}


def _load_mutable(project_id) -> Project:
    project = get_project(project_id)
    ensure_mutable(project)
    return project


def _finish(project, actor, action, description, details=None) -> Project:
    """Refresh gates, log, commit, announce."""
    current = project.status
    with stale_guard(project, on_stale=lambda: InvalidStateTransition(
        current, None, "the project was modified concurrently; reload and retry",
    )):
        cleared = refresh_gate_blocks(project)
        # Bumps row_version even when only child rows changed
        project.updated_at = utcnow()
        record_activity(project.id, actor.user_id, action, description, details)
        db.session.commit()
    logger.info(
        "%s on project %s by %s", action, project.id, actor.user_id,
        extra={"project_id": project.id, "event_type": action},
    )
    if cleared:
        announce_cleared_gates(project, actor, cleared)
    return project


def _require_lead_or_admin(actor, project, action):
    if actor.is_admin and not lead_conflict(actor, project):
        return
    if actor.user_id in {project.lead_id, project.assistant_lead_id}:
        return
    raise UnauthorizedError(actor.user_id, action, "project lead or admin only")


# ═════════════════════════════════════════════════════════════════════════════
# Intake
# ═════════════════════════════════════════════════════════════════════════════

def create_project(actor, data: dict) -> Project:
    """
    Create the first revision of a new job.

    Required: project_name.  Optional: project_type (default Standard),
    priority, departments, lead_id, assistant_lead_id, client,
    brief_overview, delivery_date, delivery_location, order_id, status,
    sample_required, corporate_emergency.
    """
    name = (data.get("project_name") or "").strip()
    if not name:
        raise ValidationError("project_name is required", {"project_name": "required"})

    project_type = parse_project_type(data.get("project_type") or ProjectType.STANDARD.value)
    if project_type is None:
        raise ValidationError(
            f"Unknown project type '{data.get('project_type')}'", {"project_type": "invalid"},
        )

    if project_type == ProjectType.EMERGENCY:
        priority = "Urgent"
    else:
        priority = data.get("priority") or "Normal"
        if priority not in PRIORITIES:
            raise ValidationError(f"Unknown priority '{priority}'", {"priority": "invalid"})

    raw_departments = data.get("departments") or []
    if isinstance(raw_departments, str):
        raw_departments = [raw_departments]
    unknown = [d for d in raw_departments if canonical_department(d) is None]
    if unknown:
        raise ValidationError("Unknown departments", {"departments": unknown})
    departments = sorted(d.value for d in canonical_departments(raw_departments))

    status = intake_status(project_type)
    if data.get("status"):
        requested = parse_status(data["status"])
        if (
            requested is None
            or requested == ProjectStatus.ON_HOLD
            or not is_status_valid_for_type(requested, project_type)
        ):
            raise ValidationError(f"Invalid initial status '{data['status']}'", {"status": "invalid"})
        status = requested

    corporate_emergency = to_bool(data.get("corporate_emergency"))
    if corporate_emergency and project_type != ProjectType.CORPORATE_JOB:
        raise ValidationError(
            "Corporate emergency is only available for Corporate Job projects",
            {"corporate_emergency": "invalid"},
        )

    project = Project(
        order_id=data.get("order_id"),
        project_name=name,
        client=data.get("client") or "",
        brief_overview=data.get("brief_overview") or "",
        delivery_date=parse_datetime(data.get("delivery_date")),
        delivery_location=data.get("delivery_location") or "",
        project_type=project_type.value,
        priority=priority,
        lead_id=data.get("lead_id"),
        assistant_lead_id=data.get("assistant_lead_id"),
        created_by=actor.user_id,
        status=status.value,
        departments=departments,
        sample_required=to_bool(data.get("sample_required")),
        corporate_emergency_enabled=corporate_emergency,
        gate_blocks={},
        version_number=1,
        is_latest_version=True,
        version_state="active",
    )
    db.session.add(project)
    db.session.flush()
    project.lineage_id = project.id
    record_activity(project.id, actor.user_id, "create", f"Project created at {status.value}",
                    {"status": status.value, "project_type": project_type.value})
    db.session.commit()
    logger.info("Project %s created", project.id,
                extra={"project_id": project.id, "lineage_id": project.id, "event_type": "create"})

    NotificationService.broadcast(
        NotificationService.project_stakeholders(project),
        actor.user_id, project.id, "ACTIVITY",
        f"New project: {project.project_name}", f"{project.project_type} project created.",
    )
    return project


# ═════════════════════════════════════════════════════════════════════════════
# Acknowledgements
# ═════════════════════════════════════════════════════════════════════════════

def _engaged_department(project, department) -> Department:
    dept = canonical_department(department)
    if dept is None:
        raise ValidationError(f"Unknown department '{department}'", {"department": "invalid"})
    if dept not in canonical_departments(project.departments):
        raise ValidationError(
            f"Department '{dept.value}' is not engaged on this project", {"department": "not_engaged"},
        )
    return dept


def acknowledge_department(project_id, actor, department) -> Project:
    project = _load_mutable(project_id)
    dept = _engaged_department(project, department)
    require_department(actor, project, dept, "acknowledge the project")
    if any(canonical_department(a.department) == dept for a in project.acknowledgements):
        raise ConflictError("Acknowledgement", "department", dept.value)

    project.acknowledgements.append(ProjectAcknowledgement(department=dept.value, user_id=actor.user_id))
    return _finish(project, actor, "acknowledge", f"{dept.value} acknowledged the project",
                   {"department": dept.value})


def remove_acknowledgement(project_id, actor, department) -> Project:
    project = _load_mutable(project_id)
    dept = _engaged_department(project, department)
    require_department(actor, project, dept, "withdraw the acknowledgement")
    existing = [a for a in project.acknowledgements if canonical_department(a.department) == dept]
    if not existing:
        raise NotFoundError(resource="Acknowledgement", resource_id=dept.value)
    for ack in existing:
        project.acknowledgements.remove(ack)
    return _finish(project, actor, "unacknowledge", f"{dept.value} acknowledgement withdrawn",
                   {"department": dept.value})


# ═════════════════════════════════════════════════════════════════════════════
# Mockups
# ═════════════════════════════════════════════════════════════════════════════

def upload_mockup(project_id, actor, file_url, note="") -> Project:
    """Add the next mockup version; the new version starts pending approval."""
    project = _load_mutable(project_id)
    require_department(actor, project, Department.GRAPHICS, "upload a mockup")
    file_url = (file_url or "").strip()
    if not file_url:
        raise ValidationError("file_url is required", {"file_url": "required"})

    latest = project.latest_mockup
    version = (latest.version if latest else 0) + 1
    project.mockup_versions.append(MockupVersion(
        version=version, file_url=file_url, note=note or "", uploaded_by=actor.user_id,
    ))
    return _finish(project, actor, "mockup_upload", f"Mockup v{version} uploaded",
                   {"version": version, "file_url": file_url})


def set_mockup_approval(project_id, actor, version, decision, reason=None) -> Project:
    """Record the client's decision on the latest mockup version only."""
    project = _load_mutable(project_id)
    if not (actor.is_admin and not lead_conflict(actor, project)) \
            and Department.FRONT_DESK not in actor.departments \
            and actor.user_id not in {project.lead_id, project.assistant_lead_id}:
        raise UnauthorizedError(actor.user_id, "record mockup approval")

    decision = (decision or "").strip().lower()
    if decision not in MOCKUP_DECISIONS:
        raise ValidationError(
            "decision must be 'approved', 'rejected' or 'pending'", {"decision": "invalid"},
        )
    try:
        version = int(version)
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer", {"version": "invalid"})

    target = next((mv for mv in project.mockup_versions if mv.version == version), None)
    if target is None:
        raise NotFoundError(resource="MockupVersion", resource_id=version)
    latest = project.latest_mockup
    if target is not latest:
        raise ValidationError(
            f"Only the latest mockup version (v{latest.version}) can be approved or rejected",
            {"version": version, "latest_version": latest.version},
        )

    now = utcnow()
    target.approval_status = decision
    if decision == "approved":
        target.approved_at = now
        target.approved_by = actor.user_id
        target.rejected_at = None
        target.rejected_by = None
        target.rejection_reason = None
    elif decision == "rejected":
        target.rejected_at = now
        target.rejected_by = actor.user_id
        target.rejection_reason = (reason or "").strip() or None
        target.approved_at = None
        target.approved_by = None
    else:
        target.approved_at = None
        target.approved_by = None
        target.rejected_at = None
        target.rejected_by = None
        target.rejection_reason = None
    return _finish(project, actor, "mockup_approval", f"Mockup v{version} {decision}",
                   {"version": version, "decision": decision, "reason": target.rejection_reason})


# ═════════════════════════════════════════════════════════════════════════════
# Sample
# ═════════════════════════════════════════════════════════════════════════════

def set_sample_requirement(project_id, actor, is_required) -> Project:
    project = _load_mutable(project_id)
    _require_lead_or_admin(actor, project, "change the sample requirement")
    required = to_bool(is_required)
    project.sample_required = required
    if not required:
        project.sample_approval_status = "pending"
        project.sample_approved_at = None
        project.sample_approved_by = None
    return _finish(project, actor, "sample_requirement",
                   "Sample required" if required else "Sample no longer required",
                   {"is_required": required})


def approve_sample(project_id, actor) -> Project:
    project = _load_mutable(project_id)
    if not project.sample_required:
        raise ValidationError("This project does not require a sample", {"sample": "not_required"})
    if not (actor.is_admin and not lead_conflict(actor, project)) \
            and not actor.departments & {Department.FRONT_DESK, Department.PRODUCTION}:
        raise UnauthorizedError(actor.user_id, "approve the sample")
    project.sample_approval_status = "approved"
    project.sample_approved_at = utcnow()
    project.sample_approved_by = actor.user_id
    return _finish(project, actor, "sample_approval", "Client approved the sample")


# ═════════════════════════════════════════════════════════════════════════════
# Billing
# ═════════════════════════════════════════════════════════════════════════════

def mark_invoice_sent(project_id, actor, sent=True) -> Project:
    project = _load_mutable(project_id)
    require_department(actor, project, Department.FRONT_DESK, "record the invoice")
    sent = to_bool(sent, fallback=True)
    project.invoice_sent = sent
    project.invoice_sent_at = utcnow() if sent else None
    project.invoice_sent_by = actor.user_id if sent else None
    return _finish(project, actor, "invoice_sent", "Invoice sent" if sent else "Invoice unmarked",
                   {"sent": sent})


def verify_payment(project_id, actor, payment_type, note="") -> Project:
    project = _load_mutable(project_id)
    require_admin(actor, "verify payments")
    payment_type = (payment_type or "").strip().lower()
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(
            f"Unknown payment type '{payment_type}'", {"type": sorted(PAYMENT_TYPES)},
        )
    if payment_type in project.payment_types:
        raise ConflictError("PaymentVerification", "type", payment_type)
    project.payment_verifications.append(PaymentVerification(
        payment_type=payment_type, note=note or "", verified_by=actor.user_id,
    ))
    return _finish(project, actor, "payment_verified", f"Payment verified: {payment_type}",
                   {"type": payment_type})


def remove_payment_verification(project_id, actor, payment_type) -> Project:
    project = _load_mutable(project_id)
    require_admin(actor, "remove payment verifications")
    existing = [pv for pv in project.payment_verifications if pv.payment_type == payment_type]
    if not existing:
        raise NotFoundError(resource="PaymentVerification", resource_id=payment_type)
    for pv in existing:
        project.payment_verifications.remove(pv)
    return _finish(project, actor, "payment_removed", f"Payment verification removed: {payment_type}",
                   {"type": payment_type})


# ═════════════════════════════════════════════════════════════════════════════
# Misc
# ═════════════════════════════════════════════════════════════════════════════

def set_corporate_emergency(project_id, actor, enabled) -> Project:
    project = _load_mutable(project_id)
    require_admin(actor, "toggle corporate emergency")
    if parse_project_type(project.project_type) != ProjectType.CORPORATE_JOB:
        raise ValidationError(
            "Corporate emergency is only available for Corporate Job projects",
            {"project_type": project.project_type},
        )
    project.corporate_emergency_enabled = to_bool(enabled)
    return _finish(project, actor, "corporate_emergency",
                   f"Corporate emergency {'enabled' if project.corporate_emergency_enabled else 'disabled'}",
                   {"enabled": project.corporate_emergency_enabled})


def add_feedback(project_id, actor, feedback_type, notes="") -> Project:
    project = _load_mutable(project_id)
    require_department(actor, project, Department.FRONT_DESK, "record feedback")
    feedback_type = (feedback_type or "").strip().lower()
    if feedback_type not in FEEDBACK_TYPES:
        raise ValidationError("type must be 'positive' or 'negative'", {"type": "invalid"})
    project.feedbacks.append(ProjectFeedback(
        feedback_type=feedback_type, notes=notes or "", created_by=actor.user_id,
    ))
    return _finish(project, actor, "feedback", f"{feedback_type.title()} feedback recorded",
                   {"type": feedback_type})


def update_end_of_day(project_id, actor, text) -> Project:
    project = _load_mutable(project_id)
    _require_lead_or_admin(actor, project, "post the end-of-day update")
    text = (text or "").strip()
    if not text:
        raise ValidationError("Update text is required", {"text": "required"})
    project.end_of_day_update = text
    project.end_of_day_update_at = utcnow()
    project.end_of_day_update_by = actor.user_id
    return _finish(project, actor, "end_of_day_update", "End-of-day update posted")
