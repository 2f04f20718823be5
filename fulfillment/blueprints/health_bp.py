"""
Health probes.

    GET /api/v1/health/ready   process is up (no dependencies touched)
    GET /api/v1/health/live    database round-trip, reminder loop state and
                               reminder backlog; 503 when the database fails

Both are exempt from the actor header and from rate limiting.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.models import db
from fulfillment.models.reminder import Reminder
from fulfillment.utils.helpers import utcnow

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


def _reminder_backlog() -> dict:
    """Overdue and erroring reminders; a growing backlog means the loop is stuck."""
    pending = (Reminder.status == "scheduled", Reminder.is_active.is_(True))
    overdue = db.session.execute(
        select(func.count(Reminder.id)).where(*pending, Reminder.next_trigger_at <= utcnow())
    ).scalar_one()
    erroring = db.session.execute(
        select(func.count(Reminder.id)).where(*pending, Reminder.last_error.is_not(None),
                                              Reminder.last_error != "")
    ).scalar_one()
    return {"overdue": overdue, "erroring": erroring}


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    healthy = True

    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        }
        checks["reminders"] = _reminder_backlog()
    except SQLAlchemyError as exc:
        db.session.rollback()
        healthy = False
        checks["database"] = {"status": "error", "detail": str(exc)}
        logger.error("Liveness probe: database unreachable: %s", exc)

    scheduler = current_app.extensions.get("reminder_scheduler")
    checks["reminder_scheduler"] = {
        "enabled": bool(current_app.config.get("REMINDER_SCHEDULER_ENABLED")),
        "running": bool(scheduler and scheduler.running),
    }

    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
