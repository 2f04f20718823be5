"""
Print Shop Fulfillment Core
Reminder domain models.

Models:
    - Reminder:           independent aggregate fired by the reminder sweep
    - ReminderRecipient:  per-user delivery target with its own completion mark

Trigger modes:
    absolute_time:  fires once ``next_trigger_at <= now``
    stage_based:    ``next_trigger_at`` stays NULL until the linked project
                    first reaches ``watch_status``; then it is set to
                    ``stage_matched_at + delay_minutes``

Locking:
    ``processing`` / ``processing_at`` form the per-record claim taken by a
    conditional UPDATE in the sweep.  Only the claimant fires.
"""

from datetime import datetime, timezone

from fulfillment.models import db
from fulfillment.utils.helpers import isoformat


TRIGGER_MODES = {"absolute_time", "stage_based"}
REPEAT_OPTIONS = {"none", "daily", "weekly", "monthly"}
REMINDER_STATUSES = {"scheduled", "completed", "cancelled"}

MAX_DELAY_MINUTES = 60 * 24 * 90
TITLE_MAX_LENGTH = 140
MESSAGE_MAX_LENGTH = 2000
LAST_ERROR_MAX_LENGTH = 500


class Reminder(db.Model):
    __tablename__ = "reminders"
    __table_args__ = (
        db.Index("ix_reminders_due", "status", "is_active", "next_trigger_at", "processing"),
        db.Index("ix_reminders_activation", "status", "is_active", "trigger_mode", "stage_matched_at",
                 "processing"),
        db.Index("ix_reminders_project", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by = db.Column(db.String(64), nullable=False, index=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )

    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    message = db.Column(db.String(MESSAGE_MAX_LENGTH), default="")
    template_key = db.Column(db.String(60), default="custom")
    timezone = db.Column(db.String(80), default="UTC")

    repeat = db.Column(db.String(10), nullable=False, default="none")
    trigger_mode = db.Column(db.String(20), nullable=False, default="absolute_time")
    remind_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_trigger_at = db.Column(db.DateTime(timezone=True), nullable=True)

    watch_status = db.Column(db.String(80), default="")
    delay_minutes = db.Column(db.Integer, nullable=False, default=0)
    stage_matched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    condition_status = db.Column(db.String(80), default="",
                                 comment="Absolute reminders only fire while the project sits here")

    channel_in_app = db.Column(db.Boolean, nullable=False, default=True)
    channel_email = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(20), nullable=False, default="scheduled")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_triggered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    processing = db.Column(db.Boolean, nullable=False, default=False)
    processing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.String(LAST_ERROR_MAX_LENGTH), default="")
    trigger_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    recipients = db.relationship(
        "ReminderRecipient", backref="reminder", lazy="select",
        cascade="all, delete-orphan", order_by="ReminderRecipient.id",
    )

    @property
    def channels(self) -> list[str]:
        result = []
        if self.channel_in_app:
            result.append("in_app")
        if self.channel_email:
            result.append("email")
        return result

    def to_dict(self):
        return {
            "id": self.id,
            "created_by": self.created_by,
            "project_id": self.project_id,
            "title": self.title,
            "message": self.message,
            "template_key": self.template_key,
            "timezone": self.timezone,
            "repeat": self.repeat,
            "trigger_mode": self.trigger_mode,
            "remind_at": isoformat(self.remind_at),
            "next_trigger_at": isoformat(self.next_trigger_at),
            "watch_status": self.watch_status,
            "delay_minutes": self.delay_minutes,
            "stage_matched_at": isoformat(self.stage_matched_at),
            "condition_status": self.condition_status,
            "channels": {"in_app": bool(self.channel_in_app), "email": bool(self.channel_email)},
            "recipients": [r.to_dict() for r in self.recipients],
            "status": self.status,
            "is_active": bool(self.is_active),
            "last_triggered_at": isoformat(self.last_triggered_at),
            "completed_at": isoformat(self.completed_at),
            "cancelled_at": isoformat(self.cancelled_at),
            "processing": bool(self.processing),
            "last_error": self.last_error or "",
            "trigger_count": self.trigger_count,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Reminder {self.id} {self.trigger_mode} [{self.status}]>"


class ReminderRecipient(db.Model):
    __tablename__ = "reminder_recipients"
    __table_args__ = (
        db.UniqueConstraint("reminder_id", "user_id", name="uq_reminder_recipient"),
    )

    id = db.Column(db.Integer, primary_key=True)
    reminder_id = db.Column(
        db.Integer, db.ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(64), nullable=False, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {"user": self.user_id, "completed_at": isoformat(self.completed_at)}
