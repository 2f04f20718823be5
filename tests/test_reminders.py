"""
Tests — reminder records (create, list, snooze, cancel, complete).

The sweep that fires reminders is covered in test_reminder_scheduler.py.
"""

from datetime import timedelta

import pytest

from fulfillment.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from fulfillment.models import db
from fulfillment.models.reminder import Reminder
from fulfillment.services import reminder_service
from fulfillment.utils.helpers import as_utc, utcnow


def _absolute(actor, minutes=30, **overrides):
    data = {
        "title": "Call client about proofs",
        "trigger_mode": "absolute_time",
        "remind_at": (utcnow() + timedelta(minutes=minutes)).isoformat(),
    }
    data.update(overrides)
    return reminder_service.create_reminder(actor, data)


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: Create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateReminder:

    def test_absolute_reminder(self, admin):
        reminder = _absolute(admin, repeat="weekly")

        assert reminder.status == "scheduled"
        assert reminder.is_active is True
        assert reminder.repeat == "weekly"
        assert as_utc(reminder.next_trigger_at) == as_utc(reminder.remind_at)
        assert reminder.channels == ["in_app"]
        assert [r.user_id for r in reminder.recipients] == ["admin-1"]

    def test_title_required(self, admin):
        with pytest.raises(ValidationError):
            _absolute(admin, title="  ")

    def test_title_length(self, admin):
        with pytest.raises(ValidationError):
            _absolute(admin, title="x" * 141)

    def test_past_time_rejected(self, admin):
        with pytest.raises(ValidationError) as exc:
            _absolute(admin, minutes=-10)
        assert exc.value.details == {"remind_at": "past"}

    def test_slightly_past_time_tolerated(self, admin):
        reminder = reminder_service.create_reminder(admin, {
            "title": "Now-ish",
            "remind_at": (utcnow() - timedelta(seconds=2)).isoformat(),
        })
        assert reminder.id is not None

    def test_invalid_repeat_and_mode(self, admin):
        with pytest.raises(ValidationError):
            _absolute(admin, repeat="hourly")
        with pytest.raises(ValidationError):
            _absolute(admin, trigger_mode="whenever")

    def test_some_channel_required(self, admin):
        with pytest.raises(ValidationError):
            _absolute(admin, channels={"in_app": False, "email": False})

    def test_email_channel(self, admin):
        reminder = _absolute(admin, channels={"in_app": True, "email": True})
        assert reminder.channels == ["in_app", "email"]

    def test_admin_recipients_deduplicated_with_creator(self, admin):
        reminder = _absolute(admin, recipient_ids=["lead-1", "gfx-1", "lead-1", ""])
        assert [r.user_id for r in reminder.recipients] == ["lead-1", "gfx-1", "admin-1"]

    def test_non_admin_only_reminds_self(self, lead):
        reminder = _absolute(lead, recipient_ids=["admin-1", "gfx-1"])
        assert [r.user_id for r in reminder.recipients] == ["lead-1"]

    def test_project_access_required(self, make_project, stores):
        project = make_project()
        with pytest.raises(UnauthorizedError):
            _absolute(stores, project_id=project.id)

    def test_engaged_department_may_link_project(self, make_project, graphics):
        project = make_project()
        reminder = _absolute(graphics, project_id=project.id)
        assert reminder.project_id == project.id

    def test_unknown_project(self, admin):
        with pytest.raises(NotFoundError):
            _absolute(admin, project_id=9999)


class TestCreateStageReminder:

    def test_requires_project(self, admin):
        with pytest.raises(ValidationError):
            reminder_service.create_reminder(admin, {
                "title": "Chase packaging", "trigger_mode": "stage_based",
                "watch_status": "Pending Packaging",
            })

    def test_requires_watch_status(self, make_project, admin):
        project = make_project()
        with pytest.raises(ValidationError):
            reminder_service.create_reminder(admin, {
                "title": "Chase packaging", "trigger_mode": "stage_based", "project_id": project.id,
            })

    def test_waits_for_stage(self, make_project, admin):
        project = make_project(status="Pending Production")
        reminder = reminder_service.create_reminder(admin, {
            "title": "Chase packaging", "trigger_mode": "stage_based",
            "project_id": project.id, "watch_status": "Pending Packaging", "delay_minutes": 30,
        })

        assert reminder.next_trigger_at is None
        assert reminder.stage_matched_at is None
        assert reminder.delay_minutes == 30

    def test_activates_immediately_when_already_at_stage(self, make_project, admin):
        project = make_project(status="Pending Packaging")
        before = utcnow()
        reminder = reminder_service.create_reminder(admin, {
            "title": "Chase packaging", "trigger_mode": "stage_based",
            "project_id": project.id, "watch_status": "Pending Packaging", "delay_minutes": 30,
        })

        assert reminder.stage_matched_at is not None
        delta = as_utc(reminder.next_trigger_at) - before
        assert timedelta(minutes=30) <= delta < timedelta(minutes=31)

    def test_delay_clamped(self, make_project, admin):
        project = make_project(status="Pending Production")
        too_long = reminder_service.create_reminder(admin, {
            "title": "Far", "trigger_mode": "stage_based", "project_id": project.id,
            "watch_status": "Pending Packaging", "delay_minutes": 10 ** 7,
        })
        negative = reminder_service.create_reminder(admin, {
            "title": "Neg", "trigger_mode": "stage_based", "project_id": project.id,
            "watch_status": "Pending Packaging", "delay_minutes": -5,
        })
        assert too_long.delay_minutes == 60 * 24 * 90
        assert negative.delay_minutes == 0


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: List / snooze / cancel / complete
# ═══════════════════════════════════════════════════════════════════════════

class TestReminderActions:

    def test_list_created_and_received(self, admin, lead):
        mine = _absolute(lead, title="Lead's own")
        received = _absolute(admin, title="For the lead", recipient_ids=["lead-1"])
        _absolute(admin, title="Admin only")

        titles = [r.title for r in reminder_service.list_reminders(lead)]

        assert sorted(titles) == sorted([mine.title, received.title])

    def test_list_hides_finished_unless_asked(self, admin):
        reminder = _absolute(admin)
        reminder_service.cancel_reminder(reminder.id, admin)

        assert reminder_service.list_reminders(admin) == []
        assert len(reminder_service.list_reminders(admin, include_completed=True)) == 1
        assert len(reminder_service.list_reminders(admin, status="cancelled")) == 1
        with pytest.raises(ValidationError):
            reminder_service.list_reminders(admin, status="exploded")

    def test_snooze_pushes_next_trigger(self, admin):
        reminder = _absolute(admin, minutes=1)
        before = utcnow()

        snoozed = reminder_service.snooze_reminder(reminder.id, admin, 30)

        delta = as_utc(snoozed.next_trigger_at) - before
        assert timedelta(minutes=30) <= delta < timedelta(minutes=31)

    def test_snooze_invalid_minutes_defaults_to_an_hour(self, admin):
        reminder = _absolute(admin, minutes=1)
        before = utcnow()
        snoozed = reminder_service.snooze_reminder(reminder.id, admin, "soon")
        assert as_utc(snoozed.next_trigger_at) - before >= timedelta(minutes=60)

    def test_snooze_waiting_stage_reminder_rejected(self, make_project, admin):
        project = make_project(status="Pending Production")
        reminder = reminder_service.create_reminder(admin, {
            "title": "Chase packaging", "trigger_mode": "stage_based",
            "project_id": project.id, "watch_status": "Pending Packaging",
        })
        with pytest.raises(ValidationError):
            reminder_service.snooze_reminder(reminder.id, admin, 10)

    def test_snooze_by_stranger(self, admin, stores):
        reminder = _absolute(admin)
        with pytest.raises(UnauthorizedError):
            reminder_service.snooze_reminder(reminder.id, stores, 10)

    def test_cancel(self, admin):
        reminder = _absolute(admin)

        cancelled = reminder_service.cancel_reminder(reminder.id, admin)

        assert cancelled.status == "cancelled"
        assert cancelled.is_active is False
        assert cancelled.cancelled_at is not None

    def test_recipient_cannot_cancel(self, admin, lead):
        reminder = _absolute(admin, recipient_ids=["lead-1"])
        with pytest.raises(UnauthorizedError):
            reminder_service.cancel_reminder(reminder.id, lead)

    def test_cancel_unknown(self, admin):
        with pytest.raises(NotFoundError):
            reminder_service.cancel_reminder(404, admin)

    def test_complete_waits_for_every_recipient(self, admin, lead):
        reminder = _absolute(admin, recipient_ids=["lead-1"])

        after_lead = reminder_service.complete_for_recipient(reminder.id, lead)
        assert after_lead.status == "scheduled"

        after_admin = reminder_service.complete_for_recipient(reminder.id, admin)
        assert after_admin.status == "completed"
        assert after_admin.is_active is False

    def test_repeating_reminder_stays_scheduled(self, admin):
        reminder = _absolute(admin, repeat="daily")
        done = reminder_service.complete_for_recipient(reminder.id, admin)
        assert done.status == "scheduled"
        assert done.recipients[0].completed_at is not None

    def test_manager_outside_recipients_completes_outright(self, lead, directory):
        from fulfillment.services.permission import Actor

        reminder = _absolute(lead)
        other_admin = Actor.build("admin-2", "admin", ["administration"], "admin_portal")

        done = reminder_service.complete_for_recipient(reminder.id, other_admin)

        assert done.status == "completed"
        assert db.session.get(Reminder, reminder.id).completed_at is not None
