"""
Actor model and role/department permission checks.

Authentication is external; callers hand the core an ``Actor`` built from
whatever identity the transport layer resolved.

Usage:
    from fulfillment.services.permission import Actor, require_admin_portal

    actor = Actor.build("u-1", role="admin", origin="admin_portal")
    require_admin_portal(actor, project, "cancel project")   # raises UnauthorizedError
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fulfillment.core.exceptions import UnauthorizedError
from fulfillment.core.workflow import Department, RequestOrigin, Role, canonical_departments


@dataclass(frozen=True)
class Actor:
    """Who is asking, with which role, from which entry point."""
    user_id: str
    role: Role = Role.USER
    departments: frozenset[Department] = field(default_factory=frozenset)
    origin: RequestOrigin = RequestOrigin.CLIENT_PORTAL

    @classmethod
    def build(cls, user_id, role=None, departments=(), origin=None) -> "Actor":
        try:
            parsed_role = Role(str(role or "user").strip().lower())
        except ValueError:
            parsed_role = Role.USER
        try:
            parsed_origin = RequestOrigin(str(origin or "client_portal").strip().lower())
        except ValueError:
            parsed_origin = RequestOrigin.CLIENT_PORTAL
        return cls(
            user_id=str(user_id),
            role=parsed_role,
            departments=frozenset(canonical_departments(departments)),
            origin=parsed_origin,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def from_admin_portal(self) -> bool:
        return self.origin == RequestOrigin.ADMIN_PORTAL

    def is_lead_of(self, project) -> bool:
        return bool(project.lead_id) and project.lead_id == self.user_id

    def in_department(self, department: Department) -> bool:
        return department in self.departments

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "departments": sorted(d.value for d in self.departments),
            "origin": self.origin.value,
        }


def lead_conflict(actor: Actor, project) -> bool:
    """An admin who leads the project may not act on it through the admin portal."""
    return actor.is_admin and actor.from_admin_portal and actor.is_lead_of(project)


def require_admin_portal(actor: Actor, project, action: str) -> None:
    """Admin role, admin-portal origin, and no lead conflict of interest."""
    if not actor.is_admin:
        raise UnauthorizedError(actor.user_id, action, "admin role required")
    if not actor.from_admin_portal:
        raise UnauthorizedError(actor.user_id, action, "only available from the admin portal")
    if lead_conflict(actor, project):
        raise UnauthorizedError(
            actor.user_id, action, "the assigned lead cannot perform this from the admin portal",
        )


def require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise UnauthorizedError(actor.user_id, action, "admin role required")


def require_department(actor: Actor, project, department: Department, action: str) -> None:
    """Admins (outside a lead conflict) or members of ``department``."""
    if actor.is_admin and not lead_conflict(actor, project):
        return
    if actor.in_department(department):
        return
    raise UnauthorizedError(actor.user_id, action, f"{department.value} department only")


def can_access_project(actor: Actor, project) -> bool:
    """Read/link access used by reminders."""
    if actor.is_admin:
        return True
    if actor.user_id in {project.lead_id, project.assistant_lead_id, project.created_by}:
        return True
    if Department.FRONT_DESK in actor.departments:
        return True
    return bool(actor.departments & canonical_departments(project.departments))
