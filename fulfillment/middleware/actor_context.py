"""
Actor Context Middleware — resolves the acting user for API requests.

Authentication happens upstream (portal gateway).  The gateway forwards:

    X-User-Id           required on every /api/v1/ call except health
    X-User-Role         admin | user
    X-User-Departments  comma-separated, aliases accepted
    X-Request-Origin    admin_portal | client_portal | system

When role or departments are omitted they are taken from the ``users``
row, if there is one.  The resolved ``Actor`` is stored on ``g.actor``.

Chain order:
  actor_context.py  →  route handler
"""

import logging

from flask import g, request

from fulfillment.models import db
from fulfillment.models.user import User
from fulfillment.services.permission import Actor
from fulfillment.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def actor_from_headers(headers) -> Actor | None:
    user_id = (headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None

    role = headers.get("X-User-Role")
    raw_departments = headers.get("X-User-Departments")
    departments = [d for d in (raw_departments or "").split(",") if d.strip()]

    if role is None or raw_departments is None:
        user = db.session.get(User, user_id)
        if user is not None:
            if role is None:
                role = user.role
            if raw_departments is None:
                departments = list(user.departments or [])

    return Actor.build(user_id, role, departments, headers.get("X-Request-Origin"))


def init_actor_context(app):
    """Register actor resolution as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        actor = actor_from_headers(request.headers)
        if actor is None:
            logger.warning("Rejected %s %s: missing X-User-Id", request.method, request.path)
            return api_error(E.UNAUTHENTICATED, "X-User-Id header is required")

        g.actor = actor
        return None

    logger.info("Actor context middleware installed")
