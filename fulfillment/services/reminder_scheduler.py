"""
Print Shop Fulfillment Core
Reminder Scheduler.

One sweep (``sweep_once``) is the unit of work:

    1. reclaim  — release ``processing`` locks older than the lease
    2. activate — stage-based reminders whose project reached ``watch_status``
                  get ``next_trigger_at = now + delay_minutes``
    3. fire     — due reminders are claimed, dispatched and advanced

Claims are single-statement conditional UPDATEs committed before any work,
so a concurrent sweep (another thread or another process) never sees an
unlocked row that is already being handled.  Failures release the lock
with ``last_error`` and leave the reminder eligible for the next sweep.

The background loop sleeps until the soonest ``next_trigger_at`` instead
of polling on a fixed period.

Usage:
    scheduler = ReminderScheduler(app)
    scheduler.sweep_once()        # explicit (CLI, tests, HTTP)
    scheduler.start()             # background thread
"""

from __future__ import annotations

import calendar
import logging
import threading
from datetime import datetime, timedelta

from flask import Flask, current_app
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.models import db
from fulfillment.models.project import Project
from fulfillment.models.reminder import LAST_ERROR_MAX_LENGTH, Reminder
from fulfillment.services.notification import NotificationService
from fulfillment.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "Processing lease expired; lock reclaimed"
PROJECT_MISSING_MESSAGE = "Linked project no longer exists"
MIN_RECHECK_MINUTES = 5


class ReminderDispatchError(RuntimeError):
    """Raised when a reminder's notifications could not be delivered."""


def _truncate(message) -> str:
    return str(message or "")[:LAST_ERROR_MAX_LENGTH]


def _add_month(value: datetime) -> datetime:
    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_next_trigger_at(reminder: Reminder, now: datetime | None = None) -> datetime | None:
    """Next due time after a fire; None when the reminder does not repeat."""
    base = as_utc(reminder.next_trigger_at) or as_utc(now) or utcnow()
    if reminder.repeat == "daily":
        return base + timedelta(days=1)
    if reminder.repeat == "weekly":
        return base + timedelta(days=7)
    if reminder.repeat == "monthly":
        return _add_month(base)
    return None


class ReminderScheduler:
    """Sweep engine plus the adaptive background loop."""

    def __init__(self, app: Flask | None = None):
        self.app = app
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.app = app
        app.extensions["reminder_scheduler"] = self

    # ── Claiming ──────────────────────────────────────────────────────────

    def _claim(self, reminder_id, now: datetime, *conditions) -> bool:
        """Atomically take the processing lock; True only for the claimant."""
        stmt = (
            update(Reminder)
            .where(
                Reminder.id == reminder_id,
                Reminder.status == "scheduled",
                Reminder.is_active.is_(True),
                Reminder.processing.is_(False),
                *conditions,
            )
            .values(processing=True, processing_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = db.session.execute(stmt).rowcount == 1
        db.session.commit()
        return claimed

    def claim_due(self, reminder_id, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self._claim(reminder_id, now, Reminder.next_trigger_at <= now)

    def _release(self, reminder_id, error="") -> None:
        db.session.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id)
            .values(processing=False, processing_at=None, last_error=_truncate(error))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    def _load(self, reminder_id) -> Reminder | None:
        return db.session.get(Reminder, reminder_id, populate_existing=True)

    # ── Sweep ─────────────────────────────────────────────────────────────

    def sweep_once(self, now: datetime | None = None) -> dict:
        """Run one full sweep; returns counters for every phase."""
        now = now or utcnow()
        stats = {"activated": 0, "fired": 0, "errored": 0, "skipped": 0, "reclaimed": 0}
        stats["reclaimed"] = self._reclaim_expired(now)
        self._activate_stage_reminders(now, stats)
        self._fire_due_reminders(now, stats)
        if stats["fired"] or stats["errored"] or stats["activated"] or stats["reclaimed"]:
            logger.info(
                "Reminder sweep: %(activated)d activated, %(fired)d fired, %(errored)d errored, "
                "%(skipped)d skipped, %(reclaimed)d reclaimed", stats,
                extra={"event_type": "reminder_sweep"},
            )
        return stats

    def _reclaim_expired(self, now: datetime) -> int:
        lease = timedelta(seconds=current_app.config["REMINDER_PROCESSING_LEASE_SECONDS"])
        result = db.session.execute(
            update(Reminder)
            .where(
                Reminder.processing.is_(True),
                or_(Reminder.processing_at.is_(None), Reminder.processing_at < now - lease),
            )
            .values(processing=False, processing_at=None, last_error=LEASE_EXPIRED_MESSAGE)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        if result.rowcount:
            logger.warning(
                "Reclaimed %d stuck reminder lock(s)", result.rowcount,
                extra={"event_type": "reminder_reclaim"},
            )
        return result.rowcount or 0

    def _batch_size(self) -> int:
        return max(int(current_app.config["REMINDER_SCHEDULER_BATCH_SIZE"]), 1)

    # ── Activation ────────────────────────────────────────────────────────

    def _activate_stage_reminders(self, now: datetime, stats: dict) -> None:
        candidate_ids = db.session.execute(
            select(Reminder.id)
            .where(
                Reminder.status == "scheduled",
                Reminder.is_active.is_(True),
                Reminder.trigger_mode == "stage_based",
                Reminder.processing.is_(False),
                Reminder.next_trigger_at.is_(None),
            )
            .order_by(Reminder.created_at, Reminder.id)
            .limit(self._batch_size())
        ).scalars().all()

        for reminder_id in candidate_ids:
            if not self._claim(reminder_id, now, Reminder.next_trigger_at.is_(None)):
                continue
            try:
                if self._activate(reminder_id, now):
                    stats["activated"] += 1
            except Exception as exc:
                db.session.rollback()
                logger.exception(
                    "Activation failed for reminder %s", reminder_id,
                    extra={"reminder_id": reminder_id, "event_type": "reminder_activate"},
                )
                self._release(reminder_id, exc)
                stats["errored"] += 1

    def _activate(self, reminder_id, now: datetime) -> bool:
        reminder = self._load(reminder_id)
        if reminder is None:
            return False
        if not reminder.watch_status:
            self._complete(reminder, now)
            return False

        # project_id is nulled by the FK when the project is deleted
        project = db.session.get(Project, reminder.project_id) if reminder.project_id else None
        if project is None:
            reminder.status = "cancelled"
            reminder.is_active = False
            reminder.cancelled_at = now
            reminder.processing = False
            reminder.processing_at = None
            reminder.last_error = PROJECT_MISSING_MESSAGE
            db.session.commit()
            logger.warning(
                "Reminder %s cancelled: project %s is gone", reminder.id, reminder.project_id,
                extra={"reminder_id": reminder.id, "event_type": "reminder_activate"},
            )
            return False

        if project.status != reminder.watch_status:
            self._release(reminder.id)
            return False

        reminder.stage_matched_at = now
        reminder.next_trigger_at = now + timedelta(minutes=reminder.delay_minutes or 0)
        reminder.remind_at = reminder.remind_at or reminder.next_trigger_at
        reminder.processing = False
        reminder.processing_at = None
        reminder.last_error = ""
        db.session.commit()
        logger.info(
            "Reminder %s activated: project %s reached %s", reminder.id, project.id, project.status,
            extra={"reminder_id": reminder.id, "project_id": project.id, "event_type": "reminder_activate"},
        )
        return True

    # ── Firing ────────────────────────────────────────────────────────────

    def _fire_due_reminders(self, now: datetime, stats: dict) -> None:
        candidate_ids = db.session.execute(
            select(Reminder.id)
            .where(
                Reminder.status == "scheduled",
                Reminder.is_active.is_(True),
                Reminder.processing.is_(False),
                Reminder.next_trigger_at.is_not(None),
                Reminder.next_trigger_at <= now,
            )
            .order_by(Reminder.next_trigger_at, Reminder.id)
            .limit(self._batch_size())
        ).scalars().all()

        for reminder_id in candidate_ids:
            if not self.claim_due(reminder_id, now):
                continue
            try:
                outcome = self._fire(reminder_id, now)
            except Exception as exc:
                db.session.rollback()
                logger.exception(
                    "Reminder %s failed to fire", reminder_id,
                    extra={"reminder_id": reminder_id, "event_type": "reminder_fire"},
                )
                self._release(reminder_id, exc)
                stats["errored"] += 1
                continue
            stats[outcome] += 1

    def _fire(self, reminder_id, now: datetime) -> str:
        """Handle one claimed reminder; returns the counter to bump."""
        reminder = self._load(reminder_id)
        if reminder is None:
            return "skipped"

        project = db.session.get(Project, reminder.project_id) if reminder.project_id else None

        if reminder.trigger_mode == "stage_based":
            if project is None or project.status != reminder.watch_status:
                self._complete(reminder, now)
                logger.info(
                    "Reminder %s completed without firing: project left %s",
                    reminder.id, reminder.watch_status,
                    extra={"reminder_id": reminder.id, "event_type": "reminder_fire"},
                )
                return "skipped"
        elif reminder.condition_status and project is not None:
            # A deleted project no longer holds the reminder back
            if project.status != reminder.condition_status:
                recheck = max(
                    int(current_app.config["REMINDER_CONDITION_RECHECK_MINUTES"]), MIN_RECHECK_MINUTES,
                )
                reminder.next_trigger_at = now + timedelta(minutes=recheck)
                reminder.processing = False
                reminder.processing_at = None
                db.session.commit()
                return "skipped"

        result = NotificationService.broadcast(
            [r.user_id for r in reminder.recipients],
            reminder.created_by or current_app.config["REMINDER_SYSTEM_SENDER_ID"],
            reminder.project_id,
            "REMINDER",
            reminder.title or "Reminder",
            reminder.message or "You have a scheduled reminder.",
            channels=reminder.channels,
            reminder_id=reminder.id,
            allow_self=True,
        )
        if not result.ok:
            raise ReminderDispatchError(
                "Notification dispatch failed for: {}".format(", ".join(sorted(result.failed)))
            )

        self._finalize(reminder_id, now)
        return "fired"

    def _finalize(self, reminder_id, now: datetime) -> None:
        reminder = self._load(reminder_id)
        next_trigger_at = compute_next_trigger_at(reminder, now)
        values = {
            "trigger_count": Reminder.trigger_count + 1,
            "last_triggered_at": now,
            "last_error": "",
            "processing": False,
            "processing_at": None,
        }
        if next_trigger_at is None:
            values.update(status="completed", is_active=False, completed_at=now)
        else:
            values["next_trigger_at"] = next_trigger_at

        # Guarded by status so a cancel issued mid-fire is not overwritten
        result = db.session.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id, Reminder.status == "scheduled")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        if result.rowcount == 0:
            self._release(reminder_id)
        logger.info(
            "Reminder %s fired", reminder_id,
            extra={"reminder_id": reminder_id, "event_type": "reminder_fire"},
        )

    def _complete(self, reminder: Reminder, now: datetime) -> None:
        reminder.status = "completed"
        reminder.is_active = False
        reminder.completed_at = now
        reminder.processing = False
        reminder.processing_at = None
        db.session.commit()

    # ── Adaptive interval ─────────────────────────────────────────────────

    def compute_next_delay(self, now: datetime | None = None) -> float:
        """Seconds until the soonest pending reminder, clamped to the config bounds."""
        now = now or utcnow()
        minimum = float(current_app.config["REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS"])
        maximum = float(current_app.config["REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS"])
        soonest = db.session.execute(
            select(func.min(Reminder.next_trigger_at)).where(
                Reminder.status == "scheduled",
                Reminder.is_active.is_(True),
                Reminder.processing.is_(False),
                Reminder.next_trigger_at.is_not(None),
            )
        ).scalar_one_or_none()
        if soonest is None:
            return maximum
        if isinstance(soonest, str):
            soonest = datetime.fromisoformat(soonest)
        delay = (as_utc(soonest) - as_utc(now)).total_seconds()
        return min(max(delay, minimum), maximum)

    # ── Background loop ───────────────────────────────────────────────────

    def start(self) -> bool:
        """Start the loop thread; False when disabled or already running."""
        if self.app is None or not self.app.config["REMINDER_SCHEDULER_ENABLED"]:
            return False
        if self._thread is not None and self._thread.is_alive():
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="reminder-scheduler", daemon=True)
        self._thread.start()
        logger.info("Reminder scheduler started", extra={"event_type": "scheduler_start"})
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Reminder scheduler stopped", extra={"event_type": "scheduler_stop"})

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        from fulfillment.services.scheduler_service import SchedulerService

        while not self._stop_event.is_set():
            SchedulerService.run_job("reminder_sweep")
            with self.app.app_context():
                try:
                    delay = self.compute_next_delay()
                except SQLAlchemyError:
                    db.session.rollback()
                    delay = float(self.app.config["REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS"])
                    logger.exception("Could not compute next reminder delay; using %.1fs", delay)
                finally:
                    db.session.remove()
            self._stop_event.wait(delay)
