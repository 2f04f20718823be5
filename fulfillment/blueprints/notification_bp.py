"""
Print Shop Fulfillment Core
Notification Blueprint.

In-app inbox for the acting user: status changes, gate alerts, holds,
cancellations, reopens and fired reminders all land here.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from fulfillment.models import db
from fulfillment.models.notification import Notification
from fulfillment.services.notification import NotificationService
from fulfillment.utils.errors import E, api_error
from fulfillment.utils.helpers import to_bool

from . import register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        limit, offset = 50, 0
    items, total = NotificationService.list_for_recipient(
        g.actor.user_id,
        project_id=request.args.get("project_id", type=int),
        unread_only=to_bool(request.args.get("unread_only")),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = db.session.get(Notification, notification_id)
    if notif is None or notif.recipient_id != g.actor.user_id:
        return api_error(E.NOT_FOUND, "Notification not found")
    notif.mark_read()
    db.session.commit()
    return jsonify(notif.to_dict())
