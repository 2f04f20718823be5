"""
Print Shop Fulfillment Core
Project Blueprint.

Thin HTTP surface over the lifecycle, overlay, revisioning and project
action services.  The acting user is resolved by ``actor_context`` and
read from ``g.actor``.

Status codes:
    200/201  success
    409      gate block (body carries ``details.missing``), invalid
             transition, lineage conflict, duplicate
    423      project on hold / cancelled
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from fulfillment.models.activity import ActivityLog
from fulfillment.services import project_actions
from fulfillment.services.helpers.project_queries import get_project
from fulfillment.services.project_lifecycle import (
    get_available_transitions,
    preflight_gates,
    transition_status,
)
from fulfillment.services.project_overlay import cancel_project, reactivate_project, set_hold
from fulfillment.services.project_revisioning import delete_project, get_lineage, reopen_project
from fulfillment.utils.errors import E, api_error
from fulfillment.utils.helpers import to_bool

from . import paginate_query, register_error_handlers

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")
register_error_handlers(project_bp)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _required(data: dict, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED, f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )
    return None


def _project_payload(project):
    payload = project.to_dict()
    payload["available_transitions"] = get_available_transitions(project, g.actor)
    return payload


# ═══════════════════════════════════════════════════════════════════════════
#  Intake & read
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("", methods=["POST"])
def create_project():
    project = project_actions.create_project(g.actor, _body())
    return jsonify(_project_payload(project)), 201


@project_bp.route("/<int:project_id>", methods=["GET"])
def get_project_detail(project_id):
    return jsonify(_project_payload(get_project(project_id)))


@project_bp.route("/<int:project_id>/lineage", methods=["GET"])
def get_project_lineage(project_id):
    members = get_lineage(project_id)
    return jsonify({
        "lineage_id": members[0].lineage_id or members[0].id,
        "versions": [m.to_dict(include_children=False) for m in members],
    })


@project_bp.route("/<int:project_id>/activity", methods=["GET"])
def list_project_activity(project_id):
    get_project(project_id)
    q = ActivityLog.query.filter_by(project_id=project_id) \
        .order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
    items, total = paginate_query(q)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})


# ═══════════════════════════════════════════════════════════════════════════
#  Status transitions
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/status", methods=["POST"])
def change_status(project_id):
    data = _body()
    err = _required(data, "status")
    if err:
        return err
    result = transition_status(
        project_id, g.actor, data["status"],
        allow_billing_override=to_bool(data.get("allow_billing_override")),
    )
    if result.blocked:
        return api_error(
            result.blocked.code, result.blocked.message, status=409,
            details=result.blocked.to_dict(),
        )
    payload = result.to_dict()
    payload["project"] = _project_payload(result.project)
    return jsonify(payload)


@project_bp.route("/<int:project_id>/gates", methods=["GET"])
def gate_preflight(project_id):
    target = request.args.get("target", "")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "target query parameter is required")
    missing = preflight_gates(project_id, target)
    return jsonify({
        "target": target,
        "ok": not missing,
        "missing": [m.to_dict() for m in missing],
    })


# ═══════════════════════════════════════════════════════════════════════════
#  Hold / cancel overlay
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/hold", methods=["POST"])
def hold_project(project_id):
    data = _body()
    project = set_hold(
        project_id, g.actor,
        on_hold=to_bool(data.get("on_hold"), True),
        reason=data.get("reason"),
        release_status=data.get("release_status"),
    )
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/cancel", methods=["POST"])
def cancel(project_id):
    project = cancel_project(project_id, g.actor, _body().get("reason"))
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/reactivate", methods=["POST"])
def reactivate(project_id):
    return jsonify(_project_payload(reactivate_project(project_id, g.actor)))


# ═══════════════════════════════════════════════════════════════════════════
#  Revisioning
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/reopen", methods=["POST"])
def reopen(project_id):
    revision = reopen_project(project_id, g.actor, _body().get("reason"))
    return jsonify(_project_payload(revision)), 201


@project_bp.route("/<int:project_id>", methods=["DELETE"])
def delete(project_id):
    return jsonify(delete_project(project_id, g.actor))


# ═══════════════════════════════════════════════════════════════════════════
#  Gate prerequisites
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/acknowledgements", methods=["POST"])
def acknowledge(project_id):
    data = _body()
    err = _required(data, "department")
    if err:
        return err
    project = project_actions.acknowledge_department(project_id, g.actor, data["department"])
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/acknowledgements/<department>", methods=["DELETE"])
def remove_acknowledgement(project_id, department):
    project = project_actions.remove_acknowledgement(project_id, g.actor, department)
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/mockups", methods=["POST"])
def upload_mockup(project_id):
    data = _body()
    err = _required(data, "file_url")
    if err:
        return err
    project = project_actions.upload_mockup(project_id, g.actor, data["file_url"], data.get("note") or "")
    return jsonify(_project_payload(project)), 201


@project_bp.route("/<int:project_id>/mockups/<int:version>/approval", methods=["POST"])
def mockup_approval(project_id, version):
    data = _body()
    err = _required(data, "decision")
    if err:
        return err
    project = project_actions.set_mockup_approval(
        project_id, g.actor, version, data["decision"], data.get("reason"),
    )
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/sample", methods=["POST"])
def sample_requirement(project_id):
    data = _body()
    project = project_actions.set_sample_requirement(project_id, g.actor, to_bool(data.get("required"), True))
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/sample/approve", methods=["POST"])
def sample_approve(project_id):
    return jsonify(_project_payload(project_actions.approve_sample(project_id, g.actor)))


@project_bp.route("/<int:project_id>/invoice", methods=["POST"])
def invoice(project_id):
    data = _body()
    project = project_actions.mark_invoice_sent(project_id, g.actor, to_bool(data.get("sent"), True))
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/payments", methods=["POST"])
def verify_payment(project_id):
    data = _body()
    err = _required(data, "payment_type")
    if err:
        return err
    project = project_actions.verify_payment(
        project_id, g.actor, data["payment_type"], data.get("note") or "",
    )
    return jsonify(_project_payload(project)), 201


@project_bp.route("/<int:project_id>/payments/<payment_type>", methods=["DELETE"])
def remove_payment(project_id, payment_type):
    project = project_actions.remove_payment_verification(project_id, g.actor, payment_type)
    return jsonify(_project_payload(project))


# ═══════════════════════════════════════════════════════════════════════════
#  Misc project updates
# ═══════════════════════════════════════════════════════════════════════════

@project_bp.route("/<int:project_id>/corporate-emergency", methods=["POST"])
def corporate_emergency(project_id):
    data = _body()
    project = project_actions.set_corporate_emergency(project_id, g.actor, to_bool(data.get("enabled")))
    return jsonify(_project_payload(project))


@project_bp.route("/<int:project_id>/feedback", methods=["POST"])
def add_feedback(project_id):
    data = _body()
    err = _required(data, "feedback_type")
    if err:
        return err
    project = project_actions.add_feedback(
        project_id, g.actor, data["feedback_type"], data.get("notes") or "",
    )
    return jsonify(_project_payload(project)), 201


@project_bp.route("/<int:project_id>/end-of-day", methods=["POST"])
def end_of_day(project_id):
    project = project_actions.update_end_of_day(project_id, g.actor, _body().get("text") or "")
    return jsonify(_project_payload(project))
