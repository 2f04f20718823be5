"""
Background jobs registered with the scheduler service.

    reminder_sweep  reclaim stale claims, activate stage reminders, fire due ones
"""

from __future__ import annotations

from typing import Any

from fulfillment.services.scheduler_service import register_job


@register_job(
    "reminder_sweep",
    schedule_type="adaptive",
    description="Reminder sweep; sleeps until the next reminder is due",
)
def reminder_sweep(app) -> dict[str, Any]:
    return app.extensions["reminder_scheduler"].sweep_once()
