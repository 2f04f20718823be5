"""
Project Revisioning Service — reopen, delete and lineage queries.

A lineage is every revision of one logical job, linked by ``lineage_id``
(the first revision's id).  Exactly one member has
``is_latest_version = True`` at every observation point.

Serialization:
    Each lineage operation takes a process-local lock keyed by lineage id,
    then locks the lineage rows (``SELECT ... FOR UPDATE`` where the
    database supports it) and does all writes in one transaction.  After
    the flush the "exactly one latest" invariant is re-checked; a violation
    rolls the transaction back with LineageConflict.

Usage:
    from fulfillment.services.project_revisioning import reopen_project

    revision = reopen_project(42, actor, reason="Client wants a reprint")
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm.exc import StaleDataError

from fulfillment.core.exceptions import FrozenProjectError, InvalidStateTransition, LineageConflict
from fulfillment.core.workflow import REOPENABLE_STATUSES, initial_revision_status, parse_status
from fulfillment.models import db
from fulfillment.models.activity import record_activity
from fulfillment.models.project import Project
from fulfillment.services.helpers.project_queries import get_project
from fulfillment.services.notification import NotificationService
from fulfillment.services.permission import require_admin_portal
from fulfillment.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# Fields carried from the source revision into a reopened one
_COPIED_FIELDS = (
    "order_id",
    "project_name",
    "client",
    "brief_overview",
    "delivery_date",
    "delivery_location",
    "project_type",
    "priority",
    "lead_id",
    "assistant_lead_id",
    "created_by",
    "sample_required",
    "corporate_emergency_enabled",
)


# ═════════════════════════════════════════════════════════════════════════════
# Lineage locking
# ═════════════════════════════════════════════════════════════════════════════

_lineage_locks: dict[int, threading.Lock] = {}
_registry_lock = threading.Lock()


@contextmanager
def lineage_lock(lineage_id: int):
    with _registry_lock:
        lock = _lineage_locks.setdefault(lineage_id, threading.Lock())
    with lock:
        yield


def _lineage_filter(lineage_id: int):
    # Legacy rows created before lineage tracking carry NULL lineage_id
    return or_(Project.lineage_id == lineage_id, Project.id == lineage_id)


def _lock_lineage(lineage_id: int) -> list[Project]:
    stmt = (
        select(Project)
        .where(_lineage_filter(lineage_id))
        .order_by(Project.version_number, Project.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(db.session.execute(stmt).scalars())


def latest_project_id(lineage_id: int) -> int | None:
    return db.session.execute(
        select(Project.id).where(_lineage_filter(lineage_id), Project.is_latest_version.is_(True))
        .order_by(Project.version_number.desc())
        .limit(1)
    ).scalar_one_or_none()


def assert_single_latest(lineage_id: int) -> None:
    """Raise LineageConflict unless exactly one member is flagged latest."""
    count = db.session.execute(
        select(func.count(Project.id)).where(
            _lineage_filter(lineage_id), Project.is_latest_version.is_(True),
        )
    ).scalar_one()
    if count != 1:
        raise LineageConflict(
            lineage_id, f"Lineage {lineage_id} has {count} latest versions; expected exactly one",
        )


def get_lineage(project_id) -> list[Project]:
    """Every revision of the project's lineage, oldest first."""
    project = get_project(project_id)
    lineage_id = project.lineage_id or project.id
    return (
        Project.query.filter(_lineage_filter(lineage_id))
        .order_by(Project.version_number, Project.id)
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Reopen
# ═════════════════════════════════════════════════════════════════════════════

def _fork(source: Project, actor, reason, lineage_id: int, now: datetime) -> Project:
    revision = Project(**{name: getattr(source, name) for name in _COPIED_FIELDS})
    revision.departments = list(source.departments or [])
    revision.status = initial_revision_status(source.project_type).value
    revision.gate_blocks = {}
    revision.lineage_id = lineage_id
    revision.parent_project_id = source.id
    revision.version_number = (source.version_number or 1) + 1
    revision.is_latest_version = True
    revision.version_state = "active"
    revision.reopened_at = now
    revision.reopened_by = actor.user_id
    revision.reopen_reason = reason
    return revision


def reopen_project(project_id, actor, reason=None) -> Project:
    """
    Fork a new active revision from a closed, latest-version project.

    Raises:
        NotFoundError, UnauthorizedError, FrozenProjectError,
        InvalidStateTransition (status not reopenable),
        LineageConflict (not the latest revision, or a concurrent write)
    """
    source = get_project(project_id)
    if source.is_cancelled:
        raise FrozenProjectError(source.id, source.cancellation_state())
    require_admin_portal(actor, source, "reopen the project")
    if parse_status(source.status) not in REOPENABLE_STATUSES:
        raise InvalidStateTransition(
            source.status, "reopen", "only completed, delivered or finished projects can be reopened",
        )

    lineage_id = source.lineage_id or source.id
    reason = (reason or "").strip() or None

    with lineage_lock(lineage_id):
        try:
            _lock_lineage(lineage_id)
            if not source.is_latest_version:
                raise LineageConflict(
                    lineage_id,
                    "This is not the latest version of the project; reopen the latest version instead",
                    latest_project_id(lineage_id),
                )
            if source.lineage_id is None:
                source.lineage_id = lineage_id

            now = utcnow()
            source.is_latest_version = False
            source.version_state = "superseded"
            revision = _fork(source, actor, reason, lineage_id, now)
            db.session.add(revision)
            db.session.flush()
            assert_single_latest(lineage_id)

            record_activity(
                source.id, actor.user_id, "reopen",
                f"Superseded by version {revision.version_number}",
                {"new_project_id": revision.id, "reason": reason},
            )
            record_activity(
                revision.id, actor.user_id, "reopen",
                f"Reopened from version {source.version_number}",
                {"source_project_id": source.id, "reason": reason},
            )
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise LineageConflict(
                lineage_id, "The lineage was modified concurrently; reload the latest version",
                latest_project_id(lineage_id),
            )
        except LineageConflict:
            db.session.rollback()
            raise

    logger.info(
        "Project %s reopened as %s (v%s)", source.id, revision.id, revision.version_number,
        extra={"project_id": revision.id, "lineage_id": lineage_id, "event_type": "reopen"},
    )
    NotificationService.broadcast(
        NotificationService.project_stakeholders(revision),
        actor.user_id, revision.id, "REOPEN",
        f"Project reopened: {revision.project_name}",
        f"Version {revision.version_number} starts at {revision.status}."
        + (f" Reason: {reason}" if reason else ""),
    )
    return revision


# ═════════════════════════════════════════════════════════════════════════════
# Delete
# ═════════════════════════════════════════════════════════════════════════════

def delete_project(project_id, actor) -> dict:
    """Delete one revision, re-promoting the highest remaining version if needed."""
    project = get_project(project_id)
    require_admin_portal(actor, project, "delete the project")
    lineage_id = project.lineage_id or project.id

    with lineage_lock(lineage_id):
        try:
            members = _lock_lineage(lineage_id)
            was_latest = bool(project.is_latest_version)
            deleted = {"id": project.id, "version_number": project.version_number}
            remaining = [m for m in members if m.id != project.id]

            db.session.delete(project)
            db.session.flush()

            promoted = None
            if was_latest and remaining:
                promoted = max(remaining, key=lambda m: (m.version_number or 0, m.id))
                promoted.is_latest_version = True
                promoted.version_state = "active"
                db.session.flush()
            if remaining:
                assert_single_latest(lineage_id)

            record_activity(
                promoted.id if promoted else None, actor.user_id, "delete",
                f"Deleted version {deleted['version_number']} of lineage {lineage_id}",
                {"deleted": deleted, "lineage_id": lineage_id,
                 "promoted_project_id": promoted.id if promoted else None},
            )
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            raise LineageConflict(
                lineage_id, "The lineage was modified concurrently; reload and retry",
                latest_project_id(lineage_id),
            )
        except LineageConflict:
            db.session.rollback()
            raise

    logger.info(
        "Project %s deleted from lineage %s", deleted["id"], lineage_id,
        extra={"project_id": deleted["id"], "lineage_id": lineage_id, "event_type": "delete"},
    )
    return {
        "deleted_project_id": deleted["id"],
        "lineage_id": lineage_id,
        "promoted_project_id": promoted.id if promoted else None,
    }
