"""
Tests — reminder sweep, claims and the adaptive interval.

Covers:
    1. Firing absolute reminders (once, repeat, condition status)
    2. Next trigger computation (monthly day clamp)
    3. Stage-based activation and completion
    4. At-most-once firing under overlapping sweeps
    5. Dispatch failure, retry and lease reclaim
    6. Adaptive delay
    7. Job registry / run history
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import update

from fulfillment.models import db
from fulfillment.models.notification import Notification
from fulfillment.models.project import Project
from fulfillment.models.reminder import Reminder
from fulfillment.models.scheduling import ScheduledJob
from fulfillment.services import reminder_service
from fulfillment.services.notification import DispatchResult, NotificationService
from fulfillment.services.project_revisioning import delete_project
from fulfillment.services.reminder_scheduler import (
    LEASE_EXPIRED_MESSAGE,
    PROJECT_MISSING_MESSAGE,
    compute_next_trigger_at,
)
from fulfillment.services.scheduler_service import SchedulerService
from fulfillment.utils.helpers import as_utc, utcnow


@pytest.fixture()
def scheduler(app):
    return app.extensions["reminder_scheduler"]


def _reload(reminder_id) -> Reminder:
    return db.session.get(Reminder, reminder_id, populate_existing=True)


def _absolute(actor, at, **overrides):
    data = {"title": "Send proof to client", "remind_at": at.isoformat()}
    data.update(overrides)
    return reminder_service.create_reminder(actor, data)


def _stage(actor, project, watch_status, delay=0, **overrides):
    data = {
        "title": "Chase stage",
        "trigger_mode": "stage_based",
        "project_id": project.id,
        "watch_status": watch_status,
        "delay_minutes": delay,
    }
    data.update(overrides)
    return reminder_service.create_reminder(actor, data)


def _reminder_notifications(reminder_id):
    return Notification.query.filter_by(reminder_id=reminder_id, type="REMINDER") \
        .order_by(Notification.id).all()


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: Firing
# ═══════════════════════════════════════════════════════════════════════════

class TestFiring:

    def test_due_reminder_fires_once_and_completes(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now + timedelta(minutes=1), recipient_ids=["lead-1"])

        stats = scheduler.sweep_once(now + timedelta(minutes=2))

        assert stats["fired"] == 1
        fired = _reload(reminder.id)
        assert fired.status == "completed"
        assert fired.is_active is False
        assert fired.trigger_count == 1
        assert fired.processing is False
        assert fired.last_error == ""
        notes = _reminder_notifications(reminder.id)
        assert sorted(n.recipient_id for n in notes) == ["admin-1", "lead-1"]
        assert all(n.sender_id == "admin-1" for n in notes)

        again = scheduler.sweep_once(now + timedelta(minutes=3))
        assert again["fired"] == 0
        assert len(_reminder_notifications(reminder.id)) == 2

    def test_not_yet_due(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now + timedelta(minutes=10))

        stats = scheduler.sweep_once(now + timedelta(minutes=5))

        assert stats["fired"] == 0
        assert _reload(reminder.id).trigger_count == 0

    def test_daily_repeat_advances_from_previous_due(self, scheduler, admin):
        now = utcnow()
        due = now + timedelta(minutes=1)
        reminder = _absolute(admin, due, repeat="daily")

        scheduler.sweep_once(now + timedelta(hours=3))

        fired = _reload(reminder.id)
        assert fired.status == "scheduled"
        assert as_utc(fired.next_trigger_at) == due + timedelta(days=1)
        assert fired.trigger_count == 1

    def test_channels_recorded_on_notification(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now, channels={"in_app": True, "email": True})

        scheduler.sweep_once(now + timedelta(seconds=1))

        assert _reminder_notifications(reminder.id)[0].channels == ["in_app", "email"]

    def test_condition_status_mismatch_reschedules(self, app, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        now = utcnow()
        reminder = _absolute(admin, now, project_id=project.id, condition_status="Pending Packaging")

        fire_at = now + timedelta(seconds=1)
        stats = scheduler.sweep_once(fire_at)

        assert stats["skipped"] == 1
        assert stats["fired"] == 0
        waiting = _reload(reminder.id)
        recheck = app.config["REMINDER_CONDITION_RECHECK_MINUTES"]
        assert as_utc(waiting.next_trigger_at) == fire_at + timedelta(minutes=recheck)
        assert waiting.processing is False
        assert waiting.status == "scheduled"

    def test_condition_status_match_fires(self, scheduler, make_project, admin):
        project = make_project(status="Pending Packaging")
        now = utcnow()
        reminder = _absolute(admin, now, project_id=project.id, condition_status="Pending Packaging")

        stats = scheduler.sweep_once(now + timedelta(seconds=1))

        assert stats["fired"] == 1
        assert _reminder_notifications(reminder.id)[0].project_id == project.id

    def test_condition_status_ignored_once_project_deleted(self, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        now = utcnow()
        reminder = _absolute(admin, now, project_id=project.id, condition_status="Pending Packaging")
        delete_project(project.id, admin)

        stats = scheduler.sweep_once(now + timedelta(seconds=1))

        assert stats["fired"] == 1
        assert stats["skipped"] == 0
        fired = _reload(reminder.id)
        assert fired.project_id is None
        assert fired.status == "completed"
        assert len(_reminder_notifications(reminder.id)) == 1

    def test_cancelled_reminder_never_fires(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now)
        reminder_service.cancel_reminder(reminder.id, admin)

        stats = scheduler.sweep_once(now + timedelta(minutes=1))

        assert stats["fired"] == 0
        assert _reminder_notifications(reminder.id) == []

    def test_cancel_during_fire_is_kept(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now, repeat="daily")
        original = NotificationService.broadcast

        def cancelling(*args, **kwargs):
            db.session.execute(
                update(Reminder).where(Reminder.id == reminder.id)
                .values(status="cancelled", is_active=False)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            return original(*args, **kwargs)

        with patch.object(NotificationService, "broadcast", side_effect=cancelling):
            scheduler.sweep_once(now + timedelta(seconds=1))

        after = _reload(reminder.id)
        assert after.status == "cancelled"
        assert after.processing is False


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: Next trigger computation
# ═══════════════════════════════════════════════════════════════════════════

class TestNextTrigger:

    def test_monthly_clamps_to_month_end(self):
        reminder = Reminder(repeat="monthly", next_trigger_at=datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc))
        assert compute_next_trigger_at(reminder) == datetime(2025, 2, 28, 9, 0, tzinfo=timezone.utc)

    def test_monthly_leap_year(self):
        reminder = Reminder(repeat="monthly", next_trigger_at=datetime(2024, 1, 30, 9, 0, tzinfo=timezone.utc))
        assert compute_next_trigger_at(reminder) == datetime(2024, 2, 29, 9, 0, tzinfo=timezone.utc)

    def test_monthly_wraps_year(self):
        reminder = Reminder(repeat="monthly", next_trigger_at=datetime(2025, 12, 15, 8, 0, tzinfo=timezone.utc))
        assert compute_next_trigger_at(reminder) == datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)

    def test_weekly(self):
        base = datetime(2025, 3, 3, 7, 30, tzinfo=timezone.utc)
        reminder = Reminder(repeat="weekly", next_trigger_at=base)
        assert compute_next_trigger_at(reminder) == base + timedelta(days=7)

    def test_none_does_not_repeat(self):
        reminder = Reminder(repeat="none", next_trigger_at=utcnow())
        assert compute_next_trigger_at(reminder) is None

    def test_naive_values_taken_as_utc(self):
        reminder = Reminder(repeat="daily", next_trigger_at=datetime(2025, 5, 1, 12, 0))
        assert compute_next_trigger_at(reminder) == datetime(2025, 5, 2, 12, 0, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 3: Stage-based reminders
# ═══════════════════════════════════════════════════════════════════════════

class TestStageReminders:

    def test_zero_delay_activates_and_fires_in_one_sweep(self, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        reminder = _stage(admin, project, "Pending Packaging")
        project_row = db.session.get(Project, project.id)
        project_row.status = "Pending Packaging"
        db.session.commit()

        stats = scheduler.sweep_once(utcnow() + timedelta(seconds=1))

        assert stats["activated"] == 1
        assert stats["fired"] == 1
        fired = _reload(reminder.id)
        assert fired.status == "completed"
        assert fired.stage_matched_at is not None

    def test_delay_schedules_after_match(self, scheduler, make_project, admin):
        project = make_project(status="Pending Packaging")
        reminder = _stage(admin, project, "Pending Photography", delay=30)
        db.session.get(Project, project.id).status = "Pending Photography"
        db.session.commit()

        now = utcnow()
        stats = scheduler.sweep_once(now)

        assert stats == {"activated": 1, "fired": 0, "errored": 0, "skipped": 0, "reclaimed": 0}
        active = _reload(reminder.id)
        assert as_utc(active.next_trigger_at) == now + timedelta(minutes=30)
        assert active.processing is False

    def test_unmatched_stage_stays_waiting(self, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        reminder = _stage(admin, project, "Pending Packaging")

        stats = scheduler.sweep_once()

        assert stats["activated"] == 0
        waiting = _reload(reminder.id)
        assert waiting.next_trigger_at is None
        assert waiting.processing is False
        assert waiting.status == "scheduled"

    def test_project_left_stage_completes_without_firing(self, scheduler, make_project, admin):
        project = make_project(status="Pending Packaging")
        reminder = _stage(admin, project, "Pending Packaging", delay=10)
        db.session.get(Project, project.id).status = "Pending Delivery/Pickup"
        db.session.commit()

        stats = scheduler.sweep_once(utcnow() + timedelta(minutes=11))

        assert stats["skipped"] == 1
        assert stats["fired"] == 0
        assert _reload(reminder.id).status == "completed"
        assert _reminder_notifications(reminder.id) == []

    def test_deleted_project_cancels_waiting_reminder(self, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        reminder = _stage(admin, project, "Pending Packaging")

        delete_project(project.id, admin)
        scheduler.sweep_once()

        cancelled = _reload(reminder.id)
        assert cancelled.status == "cancelled"
        assert cancelled.is_active is False
        assert cancelled.last_error == PROJECT_MISSING_MESSAGE


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 4: At-most-once
# ═══════════════════════════════════════════════════════════════════════════

class TestAtMostOnce:

    def test_claim_is_exclusive(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now)

        assert scheduler.claim_due(reminder.id, now + timedelta(seconds=1)) is True
        assert scheduler.claim_due(reminder.id, now + timedelta(seconds=1)) is False

    def test_claim_requires_due(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now + timedelta(hours=1))
        assert scheduler.claim_due(reminder.id, now) is False

    def test_overlapping_sweep_does_not_double_fire(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now, recipient_ids=["lead-1"])
        sweep_at = now + timedelta(seconds=1)
        original = NotificationService.broadcast
        nested = {}

        def racing(*args, **kwargs):
            nested.update(scheduler.sweep_once(sweep_at))
            return original(*args, **kwargs)

        with patch.object(NotificationService, "broadcast", side_effect=racing):
            outer = scheduler.sweep_once(sweep_at)

        assert nested["fired"] == 0
        assert outer["fired"] == 1
        assert len(_reminder_notifications(reminder.id)) == 2
        assert _reload(reminder.id).trigger_count == 1


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 5: Failure, retry, lease
# ═══════════════════════════════════════════════════════════════════════════

class TestFailureHandling:

    def test_dispatch_failure_releases_with_error(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now)
        failed = DispatchResult(failed={"admin-1": "smtp down"})

        with patch.object(NotificationService, "broadcast", return_value=failed):
            stats = scheduler.sweep_once(now + timedelta(seconds=1))

        assert stats["errored"] == 1
        assert stats["fired"] == 0
        broken = _reload(reminder.id)
        assert broken.processing is False
        assert broken.status == "scheduled"
        assert "admin-1" in broken.last_error
        assert broken.trigger_count == 0

    def test_failed_reminder_retried_next_sweep(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now)

        with patch.object(NotificationService, "broadcast",
                          return_value=DispatchResult(failed={"admin-1": "down"})):
            scheduler.sweep_once(now + timedelta(seconds=1))

        stats = scheduler.sweep_once(now + timedelta(seconds=2))

        assert stats["fired"] == 1
        recovered = _reload(reminder.id)
        assert recovered.status == "completed"
        assert recovered.last_error == ""

    def test_unexpected_error_does_not_stop_sweep(self, scheduler, admin):
        now = utcnow()
        first = _absolute(admin, now, title="First")
        second = _absolute(admin, now + timedelta(seconds=1), title="Second")
        original = NotificationService.broadcast

        def flaky(recipients, sender_id, project_id, type, title, *args, **kwargs):
            if title == "First":
                raise RuntimeError("renderer exploded")
            return original(recipients, sender_id, project_id, type, title, *args, **kwargs)

        with patch.object(NotificationService, "broadcast", side_effect=flaky):
            stats = scheduler.sweep_once(now + timedelta(seconds=5))

        assert stats["errored"] == 1
        assert stats["fired"] == 1
        assert _reload(first.id).last_error == "renderer exploded"
        assert _reload(second.id).status == "completed"

    def test_expired_lease_reclaimed(self, app, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now + timedelta(hours=1))
        lease = app.config["REMINDER_PROCESSING_LEASE_SECONDS"]
        db.session.execute(
            update(Reminder).where(Reminder.id == reminder.id)
            .values(processing=True, processing_at=now - timedelta(seconds=lease + 60))
        )
        db.session.commit()

        stats = scheduler.sweep_once(now)

        assert stats["reclaimed"] == 1
        reclaimed = _reload(reminder.id)
        assert reclaimed.processing is False
        assert reclaimed.last_error == LEASE_EXPIRED_MESSAGE

    def test_fresh_lock_is_respected(self, scheduler, admin):
        now = utcnow()
        reminder = _absolute(admin, now)
        db.session.execute(
            update(Reminder).where(Reminder.id == reminder.id)
            .values(processing=True, processing_at=now)
        )
        db.session.commit()

        stats = scheduler.sweep_once(now + timedelta(seconds=1))

        assert stats["reclaimed"] == 0
        assert stats["fired"] == 0
        assert _reload(reminder.id).processing is True


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 6: Adaptive delay
# ═══════════════════════════════════════════════════════════════════════════

class TestAdaptiveDelay:

    def test_sleeps_until_next_due(self, scheduler, admin):
        now = utcnow()
        _absolute(admin, now + timedelta(seconds=5), title="Soon")
        _absolute(admin, now + timedelta(seconds=50), title="Later")

        stats = scheduler.sweep_once(now + timedelta(seconds=5))

        assert stats["fired"] == 1
        assert scheduler.compute_next_delay(now + timedelta(seconds=5)) == pytest.approx(45.0)

    def test_idle_uses_max_interval(self, app, scheduler):
        assert scheduler.compute_next_delay() == app.config["REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS"]

    def test_overdue_uses_min_interval(self, app, scheduler, admin):
        now = utcnow()
        _absolute(admin, now)
        delay = scheduler.compute_next_delay(now + timedelta(minutes=5))
        assert delay == app.config["REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS"]

    def test_far_future_clamped_to_max(self, app, scheduler, admin):
        now = utcnow()
        _absolute(admin, now + timedelta(days=2))
        assert scheduler.compute_next_delay(now) == app.config["REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS"]

    def test_waiting_stage_reminders_ignored(self, app, scheduler, make_project, admin):
        project = make_project(status="Pending Production")
        _stage(admin, project, "Pending Packaging")
        assert scheduler.compute_next_delay() == app.config["REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS"]

    def test_loop_not_started_when_disabled(self, scheduler):
        assert scheduler.start() is False
        assert scheduler.running is False


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 7: Job registry
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerJobs:

    def test_sweep_job_registered(self, directory):
        SchedulerService.ensure_jobs_registered()

        job = ScheduledJob.query.filter_by(job_name="reminder_sweep").one()
        assert job.schedule_type == "adaptive"
        assert job.is_enabled is True

    def test_run_job_records_history(self, admin):
        _absolute(admin, utcnow())
        SchedulerService.ensure_jobs_registered()

        result = SchedulerService.run_job("reminder_sweep")

        assert result["status"] == "success"
        assert result["result"]["fired"] == 1
        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="reminder_sweep").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"
        assert job.last_run_result["fired"] == 1

    def test_disabled_job_skipped(self, admin):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("reminder_sweep", False)

        result = SchedulerService.run_job("reminder_sweep")

        assert result["status"] == "skipped"
        db.session.expire_all()
        assert ScheduledJob.query.filter_by(job_name="reminder_sweep").one().run_count == 0

    def test_unknown_job(self):
        assert SchedulerService.run_job("nope")["status"] == "error"

    def test_failing_job_tracks_streak(self, scheduler, directory):
        SchedulerService.ensure_jobs_registered()

        with patch.object(scheduler, "sweep_once", side_effect=RuntimeError("db gone")):
            first = SchedulerService.run_job("reminder_sweep")
            SchedulerService.run_job("reminder_sweep")

        assert first["status"] == "failed"
        assert first["error"] == "db gone"
        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="reminder_sweep").one()
        assert job.status == "failing"
        assert job.consecutive_failures == 2
        assert job.error_count == 2

        SchedulerService.run_job("reminder_sweep")

        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="reminder_sweep").one()
        assert job.status == "active"
        assert job.consecutive_failures == 0
        assert job.last_error == "db gone"
