"""
Gate Evaluators — pure prerequisite checks for specific status transitions.

Each evaluator inspects a loaded Project and returns the list of missing
requirements; an empty list means the gate is open.  Nothing here writes.

Gates and the targets they guard:
    mockup           requested  Mockup Completed
    sample           requested  Production Completed
    acknowledgement  requested  Departmental Engagement Completed
    billing          resolved   Pending Production / Pending Delivery/Pickup
                                (non-Quote projects only)

Usage:
    from fulfillment.services.gates import evaluate_gates
    missing = evaluate_gates(project, "Proof Reading Completed")
    # -> [MissingRequirement(gate="billing", key="invoice", ...), ...]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from fulfillment.core.workflow import (
    Department,
    ProjectStatus,
    ProjectType,
    canonical_department,
    canonical_departments,
    parse_project_type,
    parse_status,
    resolve_auto_advance,
)


# ═════════════════════════════════════════════════════════════════════════════
# Enums & Data Classes
# ═════════════════════════════════════════════════════════════════════════════

class Gate(str, Enum):
    MOCKUP = "mockup"
    SAMPLE = "sample"
    ACKNOWLEDGEMENT = "acknowledgement"
    BILLING = "billing"


GATE_CODES: dict[Gate, str] = {
    Gate.MOCKUP: "MOCKUP_APPROVAL_REQUIRED",
    Gate.SAMPLE: "SAMPLE_APPROVAL_REQUIRED",
    Gate.ACKNOWLEDGEMENT: "DEPARTMENT_ACKNOWLEDGEMENT_REQUIRED",
    Gate.BILLING: "BILLING_PREREQUISITES_MISSING",
}


@dataclass(frozen=True)
class MissingRequirement:
    """Single unmet prerequisite."""
    gate: Gate
    key: str
    label: str

    def to_dict(self) -> dict:
        return {"gate": self.gate.value, "key": self.key, "label": self.label}


@dataclass
class GateBlock:
    """Structured negative result of a transition attempt."""
    gate: Gate
    target_status: str
    missing: list[MissingRequirement] = field(default_factory=list)
    message: str = ""

    @property
    def code(self) -> str:
        return GATE_CODES[self.gate]

    @property
    def missing_keys(self) -> list[str]:
        return [m.key for m in self.missing]

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "gate": self.gate.value,
            "targetStatus": self.target_status,
            "missing": self.missing_keys,
            "missingLabels": [m.label for m in self.missing],
            "message": self.message,
        }


_DEPARTMENT_LABELS = {
    Department.ADMINISTRATION: "Administration",
    Department.FRONT_DESK: "Front Desk",
    Department.PRODUCTION: "Production",
    Department.GRAPHICS: "Graphics/Design",
    Department.PHOTOGRAPHY: "Photography",
    Department.STORES: "Stores",
    Department.IT: "IT",
}


def _is_quote(project) -> bool:
    return parse_project_type(project.project_type) == ProjectType.QUOTE


# ═════════════════════════════════════════════════════════════════════════════
# Evaluators
# ═════════════════════════════════════════════════════════════════════════════

def billing_missing(project, target_status) -> list[MissingRequirement]:
    """Billing prerequisites for entering ``target_status`` (already resolved)."""
    if _is_quote(project):
        return []
    target = parse_status(target_status)
    types = project.payment_types
    missing = []
    if target == ProjectStatus.PENDING_PRODUCTION:
        if not project.invoice_sent:
            missing.append(MissingRequirement(Gate.BILLING, "invoice", "Invoice sent to client"))
        if not types:
            missing.append(MissingRequirement(
                Gate.BILLING, "payment_verification_any", "At least one verified payment",
            ))
    elif target == ProjectStatus.PENDING_DELIVERY:
        if not types & {"full_payment", "authorized"}:
            missing.append(MissingRequirement(
                Gate.BILLING, "full_payment_or_authorized", "Full payment or authorization verified",
            ))
    return missing


def mockup_missing(project) -> list[MissingRequirement]:
    latest = project.latest_mockup
    if latest is None:
        return [MissingRequirement(Gate.MOCKUP, "mockup_version", "Mockup uploaded")]
    if latest.approval_status == "approved":
        return []
    if latest.approval_status == "rejected":
        reason = (latest.rejection_reason or "").strip()
        label = f"Client rejected mockup v{latest.version}"
        if reason:
            label += f": {reason}"
        return [MissingRequirement(Gate.MOCKUP, "mockup_client_rejected", label)]
    return [MissingRequirement(
        Gate.MOCKUP, "mockup_client_approval", f"Client approval of mockup v{latest.version}",
    )]


def sample_missing(project) -> list[MissingRequirement]:
    if project.sample_required and project.sample_approval_status != "approved":
        return [MissingRequirement(Gate.SAMPLE, "sample_approval", "Client sample approval")]
    return []


def acknowledgement_missing(project) -> list[MissingRequirement]:
    engaged = canonical_departments(project.departments)
    acknowledged = {
        canonical_department(a.department) for a in project.acknowledgements
    }
    missing = []
    for dept in sorted(engaged - acknowledged, key=lambda d: d.value):
        missing.append(MissingRequirement(
            Gate.ACKNOWLEDGEMENT,
            f"acknowledgement:{dept.value}",
            f"{_DEPARTMENT_LABELS[dept]} acknowledgement",
        ))
    return missing


def _compose_message(gate: Gate, target: str, missing: list[MissingRequirement]) -> str:
    labels = "; ".join(m.label for m in missing)
    if gate == Gate.BILLING:
        return f"Billing prerequisites missing before '{target}': {labels}."
    if gate == Gate.MOCKUP:
        return f"Mockup cannot be completed yet: {labels}."
    if gate == Gate.SAMPLE:
        return "Production cannot be completed until the sample is approved."
    return f"Waiting on department acknowledgements: {labels}."


def first_gate_block(project, requested_status, resolved_status=None, *,
                     skip_billing=False) -> GateBlock | None:
    """Ordered gate check used by the transition engine.

    Returns the first failing gate as a GateBlock, or None when every gate
    that applies to this transition is open.
    """
    requested = parse_status(requested_status)
    resolved = parse_status(resolved_status) or resolve_auto_advance(requested, project.project_type)

    checks = []
    if requested == ProjectStatus.MOCKUP_COMPLETED:
        checks.append((Gate.MOCKUP, requested, lambda: mockup_missing(project)))
    if requested == ProjectStatus.PRODUCTION_COMPLETED:
        checks.append((Gate.SAMPLE, requested, lambda: sample_missing(project)))
    if requested == ProjectStatus.DEPARTMENTAL_ENGAGEMENT_COMPLETED:
        checks.append((Gate.ACKNOWLEDGEMENT, requested, lambda: acknowledgement_missing(project)))
    if not skip_billing:
        checks.append((Gate.BILLING, resolved, lambda: billing_missing(project, resolved)))

    for gate, target, evaluate in checks:
        missing = evaluate()
        if missing:
            return GateBlock(
                gate=gate,
                target_status=target.value,
                missing=missing,
                message=_compose_message(gate, target.value, missing),
            )
    return None


def evaluate_gates(project, target_status) -> list[MissingRequirement]:
    """Read-only pre-flight: every unmet requirement for ``target_status``.

    Unlike ``first_gate_block`` this does not stop at the first failing
    gate, so the UI can show the full checklist.
    """
    requested = parse_status(target_status)
    if requested is None:
        return []
    resolved = resolve_auto_advance(requested, project.project_type)

    missing: list[MissingRequirement] = []
    if requested == ProjectStatus.MOCKUP_COMPLETED:
        missing.extend(mockup_missing(project))
    if requested == ProjectStatus.PRODUCTION_COMPLETED:
        missing.extend(sample_missing(project))
    if requested == ProjectStatus.DEPARTMENTAL_ENGAGEMENT_COMPLETED:
        missing.extend(acknowledgement_missing(project))
    missing.extend(billing_missing(project, resolved))
    return missing
