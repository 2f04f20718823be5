"""
Print Shop Fulfillment Core
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from fulfillment.models import db
from fulfillment.utils.helpers import isoformat


NOTIFICATION_TYPES = {
    "STATUS_CHANGE",
    "GATE_BLOCKED",
    "GATE_CLEARED",
    "BILLING_OVERRIDE",
    "DEPARTMENT_ALERT",
    "HOLD",
    "CANCELLATION",
    "REOPEN",
    "ACTIVITY",
    "REMINDER",
}
CHANNELS = {"in_app", "email"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Email delivery is external; the
    ``channels`` list only records what was requested.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.String(64), nullable=False, index=True)
    sender_id = db.Column(db.String(64), nullable=False, default="system")
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    reminder_id = db.Column(
        db.Integer, db.ForeignKey("reminders.id", ondelete="SET NULL"), nullable=True,
    )
    type = db.Column(db.String(30), nullable=False, default="ACTIVITY")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    channels = db.Column(db.JSON, default=lambda: ["in_app"])

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        """Idempotent; the first read time is kept."""
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id,
            "project_id": self.project_id,
            "reminder_id": self.reminder_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "channels": list(self.channels or []),
            "is_read": self.is_read,
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
