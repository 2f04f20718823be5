"""
Project load / commit helpers shared by the lifecycle services.

Every mutating service loads through ``get_project`` and commits through
``commit_project``, so "not found" and "somebody else wrote first" are
handled the same way everywhere.

Usage:
    project = get_project(project_id)
    with stale_guard(project, on_stale=lambda: InvalidStateTransition(...)):
        ...mutate...
        db.session.commit()

``commit_project`` is the short form when nothing between the mutation and
the commit can flush.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from fulfillment.core.exceptions import NotFoundError
from fulfillment.models import db
from fulfillment.models.project import Project

logger = logging.getLogger(__name__)


def get_project(project_id, *, for_update: bool = False) -> Project:
    """Load a project or raise NotFoundError.

    ``for_update`` adds ``SELECT ... FOR UPDATE`` (a no-op on SQLite).
    """
    stmt = select(Project).where(Project.id == project_id)
    if for_update:
        stmt = stmt.with_for_update()
    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def commit_project(project: Project, *, on_stale) -> None:
    """Commit pending changes; translate a lost compare-and-swap.

    ``on_stale`` is a zero-argument callable returning the exception to
    raise when the row version moved underneath us.
    """
    with stale_guard(project, on_stale=on_stale):
        db.session.commit()


@contextmanager
def stale_guard(project: Project, *, on_stale):
    """Roll back and raise ``on_stale()`` if the block loses the row-version race.

    Wrap every statement between the first project mutation and the commit:
    an autoflush from a relationship load sends the versioned UPDATE early.
    """
    project_id = project.id
    try:
        yield
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent write detected on project %s", project_id,
            extra={"project_id": project_id, "event_type": "stale_write"},
        )
        raise on_stale() from None
