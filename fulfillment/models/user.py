"""
Print Shop Fulfillment Core
User directory model.

Authentication lives elsewhere; this table only answers "who are the admins"
and "who works in department X" for notification fan-out.
"""

from datetime import datetime, timezone

from fulfillment.core.workflow import Department, Role, canonical_departments
from fulfillment.models import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True, comment="External user identifier")
    name = db.Column(db.String(150), default="")
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), default=Role.USER.value, index=True)
    departments = db.Column(db.JSON, default=list, comment="Canonical department keys")
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @classmethod
    def admin_ids(cls) -> list[str]:
        rows = cls.query.filter_by(role=Role.ADMIN.value, is_active=True).order_by(cls.id).all()
        return [u.id for u in rows]

    @classmethod
    def department_member_ids(cls, department: Department) -> list[str]:
        # departments is a JSON list; filtered in Python to stay dialect-neutral
        rows = cls.query.filter_by(is_active=True).order_by(cls.id).all()
        return [u.id for u in rows if department in canonical_departments(u.departments)]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "departments": list(self.departments or []),
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id} [{self.role}]>"
