"""
Print Shop Fulfillment Core
Blueprint registry helpers.

Every API blueprint shares one mapping from service exceptions to JSON
error bodies; ``register_error_handlers`` installs it.
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.models import db
from fulfillment.utils.errors import SERVICE_ERRORS, E, api_error, error_response

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp):
    """Render service exceptions and database failures as JSON on ``bp``."""
    for exc_type in SERVICE_ERRORS:
        bp.register_error_handler(exc_type, error_response)

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Database error")
