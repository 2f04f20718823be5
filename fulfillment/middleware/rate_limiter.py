"""
Rate limits per blueprint, applied with Flask-Limiter.

The Limiter instance lives in ``fulfillment/__init__.py`` with no default
limit.  Portals poll the notification inbox, so it gets more headroom than
the write-heavy project and reminder routes.  The manual sweep route
declares its own tighter ``SWEEP_LIMIT``.  Health probes are exempt.
"""

import logging

logger = logging.getLogger(__name__)

BLUEPRINT_LIMITS = {
    "projects": "60/minute",
    "reminders": "60/minute",
    "notifications": "120/minute",
}
SWEEP_LIMIT = "6/minute"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        logger.debug("Rate limiting disabled for testing")
        return

    for name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.limit(limit)(bp)

    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits: %s; sweep %s",
                ", ".join(f"{k}={v}" for k, v in BLUEPRINT_LIMITS.items()), SWEEP_LIMIT)
