"""
Print Shop Fulfillment Core
Reminder Blueprint.

Provides:
    - Reminder create / list / snooze / cancel / complete
    - Manual sweep trigger (admin) for operations and smoke tests
    - Scheduled job listing and enable/disable (admin)
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from fulfillment import limiter
from fulfillment.middleware.rate_limiter import SWEEP_LIMIT
from fulfillment.services import reminder_service
from fulfillment.services.permission import require_admin
from fulfillment.services.scheduler_service import SchedulerService
from fulfillment.utils.errors import E, api_error
from fulfillment.utils.helpers import to_bool

from . import register_error_handlers

logger = logging.getLogger(__name__)

reminder_bp = Blueprint("reminders", __name__, url_prefix="/api/v1/reminders")
register_error_handlers(reminder_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  REMINDERS
# ═══════════════════════════════════════════════════════════════════════════

@reminder_bp.route("", methods=["GET"])
def list_reminders():
    reminders = reminder_service.list_reminders(
        g.actor,
        project_id=request.args.get("project_id", type=int),
        status=request.args.get("status") or None,
        include_completed=to_bool(request.args.get("include_completed")),
    )
    return jsonify({"items": [r.to_dict() for r in reminders], "total": len(reminders)})


@reminder_bp.route("", methods=["POST"])
def create_reminder():
    data = request.get_json(silent=True) or {}
    reminder = reminder_service.create_reminder(g.actor, data)
    return jsonify(reminder.to_dict()), 201


@reminder_bp.route("/<int:reminder_id>/snooze", methods=["POST"])
def snooze_reminder(reminder_id):
    data = request.get_json(silent=True) or {}
    reminder = reminder_service.snooze_reminder(reminder_id, g.actor, data.get("minutes", 60))
    return jsonify(reminder.to_dict())


@reminder_bp.route("/<int:reminder_id>/cancel", methods=["POST"])
def cancel_reminder(reminder_id):
    return jsonify(reminder_service.cancel_reminder(reminder_id, g.actor).to_dict())


@reminder_bp.route("/<int:reminder_id>/complete", methods=["POST"])
def complete_reminder(reminder_id):
    return jsonify(reminder_service.complete_for_recipient(reminder_id, g.actor).to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULER OPERATIONS
# ═══════════════════════════════════════════════════════════════════════════

@reminder_bp.route("/sweep", methods=["POST"])
@limiter.limit(SWEEP_LIMIT)
def run_sweep():
    """Run one sweep now and return its counters."""
    require_admin(g.actor, "run the reminder sweep")
    stats = current_app.extensions["reminder_scheduler"].sweep_once()
    return jsonify(stats)


@reminder_bp.route("/jobs", methods=["GET"])
def list_jobs():
    require_admin(g.actor, "view scheduled jobs")
    return jsonify({"jobs": SchedulerService.list_jobs()})


@reminder_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job(job_name):
    require_admin(g.actor, "view scheduled jobs")
    job = SchedulerService.get_job_status(job_name)
    if job is None:
        return api_error(E.NOT_FOUND, f"Job {job_name} not found")
    return jsonify(job)


@reminder_bp.route("/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name):
    require_admin(g.actor, "change scheduled jobs")
    data = request.get_json(silent=True) or {}
    job = SchedulerService.toggle_job(job_name, to_bool(data.get("enabled"), True))
    if job is None:
        return api_error(E.NOT_FOUND, f"Job {job_name} not found")
    return jsonify(job)
