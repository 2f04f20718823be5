"""
Project workflow vocabulary — statuses, types, departments and the static
tables that drive the lifecycle engine.

Everything here is pure data plus small lookup helpers; no DB access.

Workflows:
    Standard / Emergency / Corporate Job:
        Order Confirmed → Pending Scope Approval → Scope Approval Completed
        → Pending Departmental Engagement → Departmental Engagement Completed
        → Pending Mockup → Mockup Completed → Pending Proof Reading
        → Proof Reading Completed → Pending Production → Production Completed
        → Pending Quality Control → Quality Control Completed
        → Pending Photography → Photography Completed → Pending Packaging
        → Packaging Completed → Pending Delivery/Pickup → Delivered
        → Pending Feedback → Feedback Completed → Completed → Finished

    Quote:
        Order Confirmed → … → Departmental Engagement Completed
        → Pending Quote Request → Quote Request Completed
        → Pending Send Response → Response Sent → Pending Feedback
        → Feedback Completed → Completed → Finished

"X Completed" statuses are never persisted when AUTO_ADVANCE names a
follow-up: completing a stage rewrites the status to the next queue.
"""

from __future__ import annotations

from enum import Enum


class ProjectStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_APPROVAL = "Pending Approval"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    NEW_ORDER = "New Order"
    ORDER_CONFIRMED = "Order Confirmed"
    PENDING_SCOPE_APPROVAL = "Pending Scope Approval"
    SCOPE_APPROVAL_COMPLETED = "Scope Approval Completed"
    PENDING_DEPARTMENTAL_ENGAGEMENT = "Pending Departmental Engagement"
    DEPARTMENTAL_ENGAGEMENT_COMPLETED = "Departmental Engagement Completed"
    PENDING_MOCKUP = "Pending Mockup"
    MOCKUP_COMPLETED = "Mockup Completed"
    PENDING_PROOF_READING = "Pending Proof Reading"
    PROOF_READING_COMPLETED = "Proof Reading Completed"
    PENDING_PRODUCTION = "Pending Production"
    PRODUCTION_COMPLETED = "Production Completed"
    PENDING_QUALITY_CONTROL = "Pending Quality Control"
    QUALITY_CONTROL_COMPLETED = "Quality Control Completed"
    PENDING_PHOTOGRAPHY = "Pending Photography"
    PHOTOGRAPHY_COMPLETED = "Photography Completed"
    PENDING_PACKAGING = "Pending Packaging"
    PACKAGING_COMPLETED = "Packaging Completed"
    PENDING_DELIVERY = "Pending Delivery/Pickup"
    DELIVERED = "Delivered"
    PENDING_FEEDBACK = "Pending Feedback"
    FEEDBACK_COMPLETED = "Feedback Completed"
    COMPLETED = "Completed"
    FINISHED = "Finished"
    # Quote workflow
    PENDING_QUOTE_REQUEST = "Pending Quote Request"
    QUOTE_REQUEST_COMPLETED = "Quote Request Completed"
    PENDING_SEND_RESPONSE = "Pending Send Response"
    RESPONSE_SENT = "Response Sent"


class ProjectType(str, Enum):
    STANDARD = "Standard"
    EMERGENCY = "Emergency"
    QUOTE = "Quote"
    CORPORATE_JOB = "Corporate Job"


class Department(str, Enum):
    ADMINISTRATION = "administration"
    FRONT_DESK = "front_desk"
    PRODUCTION = "production"
    GRAPHICS = "graphics"
    PHOTOGRAPHY = "photography"
    STORES = "stores"
    IT = "it"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class RequestOrigin(str, Enum):
    ADMIN_PORTAL = "admin_portal"
    CLIENT_PORTAL = "client_portal"
    SYSTEM = "system"


PAYMENT_TYPES = {"part_payment", "full_payment", "po", "authorized"}
MOCKUP_APPROVAL_STATUSES = {"pending", "approved", "rejected"}
SAMPLE_APPROVAL_STATUSES = {"pending", "approved"}
VERSION_STATES = {"active", "superseded", "archived"}
PRIORITIES = {"Normal", "Urgent"}


# ── Status sets per project type ─────────────────────────────────────────────

_SHARED_STATUSES = {
    ProjectStatus.DRAFT,
    ProjectStatus.PENDING_APPROVAL,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.ON_HOLD,
    ProjectStatus.NEW_ORDER,
    ProjectStatus.ORDER_CONFIRMED,
    ProjectStatus.PENDING_SCOPE_APPROVAL,
    ProjectStatus.SCOPE_APPROVAL_COMPLETED,
    ProjectStatus.PENDING_DEPARTMENTAL_ENGAGEMENT,
    ProjectStatus.DEPARTMENTAL_ENGAGEMENT_COMPLETED,
    ProjectStatus.PENDING_FEEDBACK,
    ProjectStatus.FEEDBACK_COMPLETED,
    ProjectStatus.COMPLETED,
    ProjectStatus.FINISHED,
}

QUOTE_ONLY_STATUSES = frozenset({
    ProjectStatus.PENDING_QUOTE_REQUEST,
    ProjectStatus.QUOTE_REQUEST_COMPLETED,
    ProjectStatus.PENDING_SEND_RESPONSE,
    ProjectStatus.RESPONSE_SENT,
})

NON_QUOTE_ONLY_STATUSES = frozenset({
    ProjectStatus.PENDING_MOCKUP,
    ProjectStatus.MOCKUP_COMPLETED,
    ProjectStatus.PENDING_PROOF_READING,
    ProjectStatus.PROOF_READING_COMPLETED,
    ProjectStatus.PENDING_PRODUCTION,
    ProjectStatus.PRODUCTION_COMPLETED,
    ProjectStatus.PENDING_QUALITY_CONTROL,
    ProjectStatus.QUALITY_CONTROL_COMPLETED,
    ProjectStatus.PENDING_PHOTOGRAPHY,
    ProjectStatus.PHOTOGRAPHY_COMPLETED,
    ProjectStatus.PENDING_PACKAGING,
    ProjectStatus.PACKAGING_COMPLETED,
    ProjectStatus.PENDING_DELIVERY,
    ProjectStatus.DELIVERED,
})

_QUOTE_STATUSES = frozenset(_SHARED_STATUSES | QUOTE_ONLY_STATUSES)
_NON_QUOTE_STATUSES = frozenset(_SHARED_STATUSES | NON_QUOTE_ONLY_STATUSES)


# ── Transition tables ────────────────────────────────────────────────────────

# Completing a stage lands on the next queue.  Quote divergences live in
# _QUOTE_AUTO_ADVANCE_OVERRIDES.
AUTO_ADVANCE: dict[ProjectStatus, ProjectStatus] = {
    ProjectStatus.SCOPE_APPROVAL_COMPLETED: ProjectStatus.PENDING_DEPARTMENTAL_ENGAGEMENT,
    ProjectStatus.DEPARTMENTAL_ENGAGEMENT_COMPLETED: ProjectStatus.PENDING_MOCKUP,
    ProjectStatus.MOCKUP_COMPLETED: ProjectStatus.PENDING_PROOF_READING,
    ProjectStatus.PROOF_READING_COMPLETED: ProjectStatus.PENDING_PRODUCTION,
    ProjectStatus.PRODUCTION_COMPLETED: ProjectStatus.PENDING_QUALITY_CONTROL,
    ProjectStatus.QUALITY_CONTROL_COMPLETED: ProjectStatus.PENDING_PHOTOGRAPHY,
    ProjectStatus.PHOTOGRAPHY_COMPLETED: ProjectStatus.PENDING_PACKAGING,
    ProjectStatus.PACKAGING_COMPLETED: ProjectStatus.PENDING_DELIVERY,
    ProjectStatus.DELIVERED: ProjectStatus.PENDING_FEEDBACK,
    ProjectStatus.QUOTE_REQUEST_COMPLETED: ProjectStatus.PENDING_SEND_RESPONSE,
    ProjectStatus.RESPONSE_SENT: ProjectStatus.PENDING_FEEDBACK,
}

_QUOTE_AUTO_ADVANCE_OVERRIDES = {
    ProjectStatus.DEPARTMENTAL_ENGAGEMENT_COMPLETED: ProjectStatus.PENDING_QUOTE_REQUEST,
}

# (department, from, to): the one stage each department may complete
DEPARTMENT_STAGE_GRANTS: tuple[tuple[Department, ProjectStatus, ProjectStatus], ...] = (
    (Department.GRAPHICS, ProjectStatus.PENDING_MOCKUP, ProjectStatus.MOCKUP_COMPLETED),
    (Department.PRODUCTION, ProjectStatus.PENDING_PRODUCTION, ProjectStatus.PRODUCTION_COMPLETED),
    (Department.PHOTOGRAPHY, ProjectStatus.PENDING_PHOTOGRAPHY, ProjectStatus.PHOTOGRAPHY_COMPLETED),
    (Department.STORES, ProjectStatus.PENDING_PACKAGING, ProjectStatus.PACKAGING_COMPLETED),
    (Department.FRONT_DESK, ProjectStatus.PENDING_DELIVERY, ProjectStatus.DELIVERED),
    (Department.FRONT_DESK, ProjectStatus.PENDING_FEEDBACK, ProjectStatus.FEEDBACK_COMPLETED),
)

# Admin-only completions: target → required predecessor
QUALITY_GATE_COMPLETIONS: dict[ProjectStatus, ProjectStatus] = {
    ProjectStatus.PROOF_READING_COMPLETED: ProjectStatus.PENDING_PROOF_READING,
    ProjectStatus.QUALITY_CONTROL_COMPLETED: ProjectStatus.PENDING_QUALITY_CONTROL,
}

# The assigned lead may close out a completed job
LEAD_TRANSITIONS: dict[ProjectStatus, ProjectStatus] = {
    ProjectStatus.FINISHED: ProjectStatus.COMPLETED,
}

REOPENABLE_STATUSES = frozenset({
    ProjectStatus.COMPLETED,
    ProjectStatus.DELIVERED,
    ProjectStatus.FEEDBACK_COMPLETED,
    ProjectStatus.FINISHED,
})

BILLING_GUARDED_STATUSES = frozenset({
    ProjectStatus.PENDING_PRODUCTION,
    ProjectStatus.PENDING_DELIVERY,
})

# Department that owns each queue; alerted when a project lands there
STAGE_DEPARTMENT_ALERTS: dict[ProjectStatus, Department] = {
    ProjectStatus.PENDING_MOCKUP: Department.GRAPHICS,
    ProjectStatus.PENDING_PRODUCTION: Department.PRODUCTION,
    ProjectStatus.PENDING_PHOTOGRAPHY: Department.PHOTOGRAPHY,
    ProjectStatus.PENDING_PACKAGING: Department.STORES,
    ProjectStatus.PENDING_DELIVERY: Department.FRONT_DESK,
}


# ── Department canonicalization ──────────────────────────────────────────────

_DEPARTMENT_ALIASES: dict[Department, tuple[str, ...]] = {
    Department.ADMINISTRATION: ("administration", "admin"),
    Department.FRONT_DESK: ("front desk", "frontdesk", "front-desk", "front_desk", "reception"),
    Department.PRODUCTION: ("production",),
    Department.GRAPHICS: ("graphics", "graphics/design", "design", "graphic design"),
    Department.PHOTOGRAPHY: ("photography", "photo"),
    Department.STORES: ("stores", "store", "packaging"),
    Department.IT: ("it", "it department"),
}

_ALIAS_INDEX: dict[str, Department] = {
    alias: dept for dept, aliases in _DEPARTMENT_ALIASES.items() for alias in aliases
}


def canonical_department(value) -> Department | None:
    """Collapse a department label or alias to its canonical key."""
    if isinstance(value, Department):
        return value
    text = " ".join(str(value or "").strip().lower().split())
    if not text:
        return None
    return _ALIAS_INDEX.get(text)


def canonical_departments(values) -> set[Department]:
    """Canonicalize an iterable of labels, dropping unknown ones."""
    result = set()
    for value in values or ():
        dept = canonical_department(value)
        if dept is not None:
            result.add(dept)
    return result


# ── Lookups ──────────────────────────────────────────────────────────────────

def parse_status(value) -> ProjectStatus | None:
    if isinstance(value, ProjectStatus):
        return value
    try:
        return ProjectStatus(str(value or "").strip())
    except ValueError:
        return None


def parse_project_type(value) -> ProjectType | None:
    if isinstance(value, ProjectType):
        return value
    try:
        return ProjectType(str(value or "").strip())
    except ValueError:
        return None


def statuses_for_type(project_type) -> frozenset[ProjectStatus]:
    if parse_project_type(project_type) == ProjectType.QUOTE:
        return _QUOTE_STATUSES
    return _NON_QUOTE_STATUSES


def is_status_valid_for_type(status, project_type) -> bool:
    parsed = parse_status(status)
    return parsed is not None and parsed in statuses_for_type(project_type)


def resolve_auto_advance(requested: ProjectStatus, project_type) -> ProjectStatus:
    """Return the status that is actually persisted for a requested one."""
    if parse_project_type(project_type) == ProjectType.QUOTE:
        override = _QUOTE_AUTO_ADVANCE_OVERRIDES.get(requested)
        if override is not None:
            return override
    return AUTO_ADVANCE.get(requested, requested)


def intake_status(project_type) -> ProjectStatus:
    """Status a brand-new project starts in."""
    if parse_project_type(project_type) == ProjectType.QUOTE:
        return ProjectStatus.PENDING_QUOTE_REQUEST
    return ProjectStatus.ORDER_CONFIRMED


def initial_revision_status(project_type) -> ProjectStatus:
    """First post-approval stage; where a reopened revision restarts."""
    if parse_project_type(project_type) == ProjectType.QUOTE:
        return ProjectStatus.PENDING_QUOTE_REQUEST
    return ProjectStatus.PENDING_DEPARTMENTAL_ENGAGEMENT
