"""
Print Shop Fulfillment Core
Activity domain model.

Models:
    - ActivityLog: immutable, append-only trail of project lifecycle events.
"""

from datetime import datetime, timezone

from fulfillment.models import db


ACTIVITY_ACTIONS = {
    "create",
    "status_change",
    "billing_override",
    "hold",
    "hold_release",
    "cancel",
    "reactivate",
    "reopen",
    "delete",
    "acknowledge",
    "unacknowledge",
    "mockup_upload",
    "mockup_approval",
    "sample_requirement",
    "sample_approval",
    "invoice_sent",
    "payment_verified",
    "payment_removed",
    "corporate_emergency",
    "feedback",
    "end_of_day_update",
}


class ActivityLog(db.Model):
    """
    One row per lifecycle event.

    ``details`` carries the event payload (``{from, to, requested}`` for a
    status change, ``{missing, target_status}`` for an override, ...).
    Rows are never updated; project deletion keeps them with a NULL link.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_project", "project_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor_id = db.Column(db.String(64), nullable=False, default="system")
    action = db.Column(db.String(40), nullable=False,
                       comment="status_change | hold | reopen | billing_override | …")
    description = db.Column(db.String(500), default="")
    details = db.Column(db.JSON, default=dict)

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "description": self.description,
            "details": self.details or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on project {self.project_id}>"


def record_activity(
    project_id: int | None,
    actor_id: str | None,
    action: str,
    description: str = "",
    details: dict | None = None,
) -> ActivityLog:
    """
    Add a single activity row to the session without flushing.  The entry
    commits or rolls back with the change it describes, inside the caller's
    stale-write guard.
    """
    log = ActivityLog(
        project_id=project_id,
        actor_id=actor_id or "system",
        action=action,
        description=(description or "")[:500],
        details=details or {},
    )
    db.session.add(log)
    return log
