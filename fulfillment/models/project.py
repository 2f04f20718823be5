"""
Print Shop Fulfillment Core
Project domain models.

Models:
    - Project:                 aggregate root — one production job (one revision of it)
    - ProjectAcknowledgement:  department sign-on for an engaged department
    - MockupVersion:           uploaded mockup revision with its own client approval
    - PaymentVerification:     billing evidence, at most one row per type
    - ProjectFeedback:         client feedback captured by Front Desk

Architecture:
    Project ──1:N──▶ ProjectAcknowledgement
    Project ──1:N──▶ MockupVersion
    Project ──1:N──▶ PaymentVerification
    Project ──1:N──▶ ProjectFeedback
    Project ──N:1──▶ Project  (parent_project_id, same lineage_id)

Overlay state:
    Hold and cancellation are flattened into columns on Project.  The
    invariant ``status == "On Hold"`` iff ``is_on_hold`` is maintained by
    the overlay service only.

Concurrency:
    ``row_version`` is SQLAlchemy's version counter; every ORM flush of a
    Project issues ``UPDATE ... WHERE id = :id AND row_version = :seen`` and
    raises StaleDataError when another writer got there first.
"""

from datetime import datetime, timezone

from fulfillment.core.workflow import ProjectStatus
from fulfillment.models import db
from fulfillment.utils.helpers import isoformat


class Project(db.Model):
    __tablename__ = "projects"
    __table_args__ = (
        db.Index("ix_projects_lineage_latest", "lineage_id", "is_latest_version"),
        db.Index("ix_projects_status_type", "status", "project_type"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # ── Intake ───────────────────────────────────────────────────────────
    order_id = db.Column(db.String(40), nullable=True, index=True)
    project_name = db.Column(db.String(255), nullable=False)
    client = db.Column(db.String(255), default="")
    brief_overview = db.Column(db.Text, default="")
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_location = db.Column(db.String(255), default="")
    project_type = db.Column(db.String(30), nullable=False, default="Standard")
    priority = db.Column(db.String(20), nullable=False, default="Normal")
    lead_id = db.Column(db.String(64), nullable=True, index=True)
    assistant_lead_id = db.Column(db.String(64), nullable=True)
    created_by = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(60), nullable=False, default=ProjectStatus.ORDER_CONFIRMED.value)
    departments = db.Column(db.JSON, default=list, comment="Canonical department keys")

    # ── Hold overlay ─────────────────────────────────────────────────────
    is_on_hold = db.Column(db.Boolean, nullable=False, default=False)
    hold_reason = db.Column(db.Text, default="")
    held_at = db.Column(db.DateTime(timezone=True), nullable=True)
    held_by = db.Column(db.String(64), nullable=True)
    hold_previous_status = db.Column(db.String(60), nullable=True)
    hold_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    hold_released_by = db.Column(db.String(64), nullable=True)

    # ── Cancellation overlay ─────────────────────────────────────────────
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancel_reason = db.Column(db.Text, default="")
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    resumed_status = db.Column(db.String(60), nullable=True)
    resumed_hold_state = db.Column(db.JSON, nullable=True, comment="Hold sub-document snapshot")
    reactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reactivated_by = db.Column(db.String(64), nullable=True)

    # ── Sample approval ──────────────────────────────────────────────────
    sample_required = db.Column(db.Boolean, nullable=False, default=False)
    sample_approval_status = db.Column(db.String(20), nullable=False, default="pending")
    sample_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sample_approved_by = db.Column(db.String(64), nullable=True)

    # ── Billing ──────────────────────────────────────────────────────────
    invoice_sent = db.Column(db.Boolean, nullable=False, default=False)
    invoice_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_sent_by = db.Column(db.String(64), nullable=True)

    corporate_emergency_enabled = db.Column(db.Boolean, nullable=False, default=False)

    # ── End-of-day snapshot ──────────────────────────────────────────────
    end_of_day_update = db.Column(db.Text, nullable=True)
    end_of_day_update_at = db.Column(db.DateTime(timezone=True), nullable=True)
    end_of_day_update_by = db.Column(db.String(64), nullable=True)

    # ── Lineage ──────────────────────────────────────────────────────────
    lineage_id = db.Column(db.Integer, nullable=True, index=True,
                           comment="Shared by every revision; first revision's id")
    parent_project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )
    version_number = db.Column(db.Integer, nullable=False, default=1)
    is_latest_version = db.Column(db.Boolean, nullable=False, default=True)
    version_state = db.Column(db.String(20), nullable=False, default="active",
                              comment="active | superseded | archived")
    reopened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopened_by = db.Column(db.String(64), nullable=True)
    reopen_reason = db.Column(db.Text, nullable=True)

    # ── Gate bookkeeping ─────────────────────────────────────────────────
    gate_blocks = db.Column(db.JSON, default=dict,
                            comment="{target_status: [missing keys]} currently blocked")

    row_version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": row_version}

    acknowledgements = db.relationship(
        "ProjectAcknowledgement", backref="project", lazy="select",
        cascade="all, delete-orphan", order_by="ProjectAcknowledgement.id",
    )
    mockup_versions = db.relationship(
        "MockupVersion", backref="project", lazy="select",
        cascade="all, delete-orphan", order_by="MockupVersion.version",
    )
    payment_verifications = db.relationship(
        "PaymentVerification", backref="project", lazy="select",
        cascade="all, delete-orphan", order_by="PaymentVerification.id",
    )
    feedbacks = db.relationship(
        "ProjectFeedback", backref="project", lazy="select",
        cascade="all, delete-orphan", order_by="ProjectFeedback.id",
    )

    # ── Derived views ────────────────────────────────────────────────────

    @property
    def latest_mockup(self):
        return self.mockup_versions[-1] if self.mockup_versions else None

    @property
    def payment_types(self) -> set[str]:
        return {pv.payment_type for pv in self.payment_verifications}

    def hold_state(self) -> dict:
        """The hold sub-document, JSON-safe (used for cancel snapshots)."""
        return {
            "is_on_hold": bool(self.is_on_hold),
            "reason": self.hold_reason or "",
            "held_at": isoformat(self.held_at),
            "held_by": self.held_by,
            "previous_status": self.hold_previous_status,
            "released_at": isoformat(self.hold_released_at),
            "released_by": self.hold_released_by,
        }

    def cancellation_state(self) -> dict:
        return {
            "is_cancelled": bool(self.is_cancelled),
            "reason": self.cancel_reason or "",
            "cancelled_at": isoformat(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "resumed_status": self.resumed_status,
            "resumed_hold_state": self.resumed_hold_state,
            "reactivated_at": isoformat(self.reactivated_at),
            "reactivated_by": self.reactivated_by,
        }

    def mockup_state(self) -> dict:
        latest = self.latest_mockup
        return {
            "file_url": latest.file_url if latest else None,
            "version": latest.version if latest else 0,
            "client_approval": latest.client_approval() if latest else None,
            "versions": [mv.to_dict() for mv in self.mockup_versions],
        }

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "order_id": self.order_id,
            "project_name": self.project_name,
            "client": self.client,
            "brief_overview": self.brief_overview,
            "delivery_date": isoformat(self.delivery_date),
            "delivery_location": self.delivery_location,
            "project_type": self.project_type,
            "priority": self.priority,
            "lead_id": self.lead_id,
            "assistant_lead_id": self.assistant_lead_id,
            "created_by": self.created_by,
            "status": self.status,
            "departments": list(self.departments or []),
            "hold": self.hold_state(),
            "cancellation": self.cancellation_state(),
            "sample_requirement": {"is_required": bool(self.sample_required)},
            "sample_approval": {
                "status": self.sample_approval_status,
                "approved_at": isoformat(self.sample_approved_at),
                "approved_by": self.sample_approved_by,
            },
            "invoice": {
                "sent": bool(self.invoice_sent),
                "sent_at": isoformat(self.invoice_sent_at),
                "sent_by": self.invoice_sent_by,
            },
            "corporate_emergency": {"is_enabled": bool(self.corporate_emergency_enabled)},
            "end_of_day_update": self.end_of_day_update,
            "lineage_id": self.lineage_id,
            "parent_project_id": self.parent_project_id,
            "version_number": self.version_number,
            "is_latest_version": bool(self.is_latest_version),
            "version_state": self.version_state,
            "reopened_at": isoformat(self.reopened_at),
            "reopen_reason": self.reopen_reason,
            "gate_blocks": dict(self.gate_blocks or {}),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_children:
            d["acknowledgements"] = [a.to_dict() for a in self.acknowledgements]
            d["mockup"] = self.mockup_state()
            d["payment_verifications"] = [p.to_dict() for p in self.payment_verifications]
            d["feedbacks"] = [f.to_dict() for f in self.feedbacks]
        return d

    def __repr__(self):
        return f"<Project {self.id} v{self.version_number} [{self.status}]>"


class ProjectAcknowledgement(db.Model):
    __tablename__ = "project_acknowledgements"
    __table_args__ = (
        db.UniqueConstraint("project_id", "department", name="uq_project_ack_department"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    department = db.Column(db.String(40), nullable=False, comment="Canonical department key")
    user_id = db.Column(db.String(64), nullable=False)
    acknowledged_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "department": self.department,
            "user": self.user_id,
            "date": isoformat(self.acknowledged_at),
        }


class MockupVersion(db.Model):
    """
    One uploaded mockup revision.

    Only the highest ``version`` of a project may be approved or rejected.
    """

    __tablename__ = "mockup_versions"
    __table_args__ = (
        db.UniqueConstraint("project_id", "version", name="uq_mockup_project_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version = db.Column(db.Integer, nullable=False)
    file_url = db.Column(db.String(500), nullable=False)
    note = db.Column(db.Text, default="")
    uploaded_by = db.Column(db.String(64), nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    approval_status = db.Column(db.String(20), nullable=False, default="pending",
                                comment="pending | approved | rejected")
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(64), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    def client_approval(self) -> dict:
        return {
            "status": self.approval_status,
            "approved_at": isoformat(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": isoformat(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
        }

    def to_dict(self):
        return {
            "version": self.version,
            "file_url": self.file_url,
            "note": self.note,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": isoformat(self.uploaded_at),
            "client_approval": self.client_approval(),
        }


class PaymentVerification(db.Model):
    __tablename__ = "payment_verifications"
    __table_args__ = (
        db.UniqueConstraint("project_id", "payment_type", name="uq_payment_project_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    payment_type = db.Column(db.String(20), nullable=False,
                             comment="part_payment | full_payment | po | authorized")
    note = db.Column(db.Text, default="")
    verified_by = db.Column(db.String(64), nullable=False)
    verified_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "type": self.payment_type,
            "note": self.note,
            "verified_by": self.verified_by,
            "verified_at": isoformat(self.verified_at),
        }


class ProjectFeedback(db.Model):
    __tablename__ = "project_feedbacks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    feedback_type = db.Column(db.String(20), nullable=False, default="positive",
                              comment="positive | negative")
    notes = db.Column(db.Text, default="")
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "type": self.feedback_type,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
        }
