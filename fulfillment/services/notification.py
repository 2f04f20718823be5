"""
Print Shop Fulfillment Core
Notification Service.

Central service for creating and fanning out in-app notifications.

Dispatch never raises into the caller: every call returns a
``DispatchResult`` listing delivered, skipped and failed recipients so the
caller decides whether a failure matters (the reminder sweep does; a
status change does not).  Business changes must be committed before
dispatch, because a failed dispatch rolls the session back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from fulfillment.core.workflow import Department
from fulfillment.models import db
from fulfillment.models.notification import Notification
from fulfillment.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    delivered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        self.delivered.extend(other.delivered)
        self.skipped.extend(other.skipped)
        self.failed.update(other.failed)
        return self

    def to_dict(self) -> dict:
        return {
            "delivered": list(self.delivered),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(recipient_id, sender_id, project_id, type, title, message="", *,
               channels=None, reminder_id=None, allow_self=False) -> DispatchResult:
        """Create a single notification record."""
        return NotificationService.broadcast(
            [recipient_id], sender_id, project_id, type, title, message,
            channels=channels, reminder_id=reminder_id, allow_self=allow_self,
        )

    @staticmethod
    def broadcast(recipients, sender_id, project_id, type, title, message="", *,
                  channels=None, reminder_id=None, allow_self=False) -> DispatchResult:
        """
        Send one notification per distinct recipient.

        The sender is skipped unless ``allow_self`` (reminders notify their
        own creator).  All rows are committed together.
        """
        result = DispatchResult()
        targets = []
        for rid in recipients or ():
            if not rid or rid in targets or rid in result.skipped:
                continue
            if rid == sender_id and not allow_self:
                result.skipped.append(rid)
                continue
            targets.append(rid)
        if not targets:
            return result

        try:
            for rid in targets:
                db.session.add(Notification(
                    recipient_id=rid,
                    sender_id=sender_id or "system",
                    project_id=project_id,
                    reminder_id=reminder_id,
                    type=type,
                    title=title[:300],
                    message=message or "",
                    channels=list(channels or ["in_app"]),
                ))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(
                "Notification dispatch failed: %s", exc,
                extra={"project_id": project_id, "event_type": type},
            )
            for rid in targets:
                result.failed[rid] = str(exc)[:200]
            return result

        result.delivered.extend(targets)
        return result

    # ── Recipient resolution ──────────────────────────────────────────────

    @staticmethod
    def project_stakeholders(project) -> list[str]:
        """Lead, assistant lead and every active admin, in that order."""
        ids = [project.lead_id, project.assistant_lead_id, *User.admin_ids()]
        seen = []
        for uid in ids:
            if uid and uid not in seen:
                seen.append(uid)
        return seen

    @staticmethod
    def department_members(department: Department) -> list[str]:
        return User.department_member_ids(department)

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, project_id=None, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()) \
            .offset(offset).limit(limit).all()
        return items, total
