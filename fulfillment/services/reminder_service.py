"""
Reminder Service — create, list, snooze, cancel and complete reminders.

The sweep that actually fires reminders lives in ``reminder_scheduler``;
this module only shapes the records it consumes.

Rules:
    - title required (≤140), message ≤2000
    - trigger_mode ∈ {absolute_time, stage_based}; repeat ∈ {none, daily, weekly, monthly}
    - absolute: remind_at required, at most 5 s in the past
    - stage_based: project + watch_status required; delay clamped to [0, 90 days];
      activated immediately when the project already sits at watch_status
    - at least one channel; recipients deduplicated and always include the
      creator (non-admins may only remind themselves)
    - linking a project requires project access (admin, lead, assistant,
      creator, Front Desk, or an engaged department)
"""

import logging
from datetime import timedelta

from sqlalchemy import or_

from fulfillment.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from fulfillment.models import db
from fulfillment.models.reminder import (
    MAX_DELAY_MINUTES,
    MESSAGE_MAX_LENGTH,
    REMINDER_STATUSES,
    REPEAT_OPTIONS,
    TITLE_MAX_LENGTH,
    TRIGGER_MODES,
    Reminder,
    ReminderRecipient,
)
from fulfillment.services.helpers.project_queries import get_project
from fulfillment.services.permission import can_access_project
from fulfillment.utils.helpers import parse_datetime, to_bool, utcnow

logger = logging.getLogger(__name__)

PAST_TOLERANCE = timedelta(seconds=5)
MAX_SNOOZE_MINUTES = 60 * 24 * 14


def _get_reminder(reminder_id) -> Reminder:
    reminder = db.session.get(Reminder, reminder_id)
    if reminder is None:
        raise NotFoundError(resource="Reminder", resource_id=reminder_id)
    return reminder


def _can_manage(actor, reminder) -> bool:
    return actor.is_admin or reminder.created_by == actor.user_id


def _can_act(actor, reminder) -> bool:
    if _can_manage(actor, reminder):
        return True
    return any(r.user_id == actor.user_id for r in reminder.recipients)


def _delay_minutes(value) -> int:
    if value is None or value == "":
        return 0
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return 0
    return min(max(parsed, 0), MAX_DELAY_MINUTES)


def _recipient_ids(actor, raw) -> list[str]:
    if not actor.is_admin:
        return [actor.user_id]
    ids = []
    for entry in raw or ():
        uid = str(entry).strip() if entry is not None else ""
        if uid and uid not in ids:
            ids.append(uid)
    if actor.user_id not in ids:
        ids.append(actor.user_id)
    return ids


def create_reminder(actor, data: dict) -> Reminder:
    """Validate and persist a reminder; returns it committed."""
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Reminder title is required", {"title": "required"})
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters", {"title": "too_long"})
    message = (data.get("message") or "").strip()
    if len(message) > MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message must be at most {MESSAGE_MAX_LENGTH} characters", {"message": "too_long"},
        )

    trigger_mode = (data.get("trigger_mode") or "absolute_time").strip().lower()
    if trigger_mode not in TRIGGER_MODES:
        raise ValidationError("Invalid trigger mode", {"trigger_mode": sorted(TRIGGER_MODES)})
    repeat = (data.get("repeat") or "none").strip().lower()
    if repeat not in REPEAT_OPTIONS:
        raise ValidationError("Invalid repeat option", {"repeat": sorted(REPEAT_OPTIONS)})

    project_id = data.get("project_id")
    if trigger_mode == "stage_based" and not project_id:
        raise ValidationError("Stage-based reminders must be linked to a project", {"project_id": "required"})

    project = None
    if project_id:
        project = get_project(project_id)
        if not can_access_project(actor, project):
            raise UnauthorizedError(actor.user_id, "set reminders for this project")

    now = utcnow()
    remind_at = None
    next_trigger_at = None
    watch_status = ""
    delay = 0
    stage_matched_at = None
    condition_status = (data.get("condition_status") or "").strip()

    if trigger_mode == "absolute_time":
        remind_at = parse_datetime(data.get("remind_at"))
        if remind_at is None:
            raise ValidationError("A valid reminder date is required", {"remind_at": "required"})
        if remind_at < now - PAST_TOLERANCE:
            raise ValidationError("Reminder date must be in the future", {"remind_at": "past"})
        next_trigger_at = remind_at
    else:
        watch_status = (data.get("watch_status") or condition_status or "").strip()
        if not watch_status:
            raise ValidationError(
                "Stage-based reminders require a target project status", {"watch_status": "required"},
            )
        delay = _delay_minutes(data.get("delay_minutes"))
        condition_status = ""
        if project.status == watch_status:
            stage_matched_at = now
            next_trigger_at = now + timedelta(minutes=delay)

    channels = data.get("channels") or {}
    in_app = to_bool(channels.get("in_app"), True)
    email = to_bool(channels.get("email"), False)
    if not in_app and not email:
        raise ValidationError("At least one delivery channel is required", {"channels": "required"})

    reminder = Reminder(
        created_by=actor.user_id,
        project_id=project.id if project else None,
        title=title,
        message=message,
        template_key=(data.get("template_key") or "custom").strip() or "custom",
        timezone=(data.get("timezone") or "UTC").strip() or "UTC",
        repeat=repeat,
        trigger_mode=trigger_mode,
        remind_at=remind_at,
        next_trigger_at=next_trigger_at,
        watch_status=watch_status,
        delay_minutes=delay,
        stage_matched_at=stage_matched_at,
        condition_status=condition_status,
        channel_in_app=in_app,
        channel_email=email,
    )
    for uid in _recipient_ids(actor, data.get("recipient_ids")):
        reminder.recipients.append(ReminderRecipient(user_id=uid))
    db.session.add(reminder)
    db.session.commit()
    logger.info(
        "Reminder %s created (%s)", reminder.id, trigger_mode,
        extra={"reminder_id": reminder.id, "project_id": reminder.project_id, "event_type": "reminder_create"},
    )
    return reminder


def list_reminders(actor, *, project_id=None, status=None, include_completed=False) -> list[Reminder]:
    """Reminders the actor created or receives, soonest first."""
    q = Reminder.query.filter(or_(
        Reminder.created_by == actor.user_id,
        Reminder.recipients.any(ReminderRecipient.user_id == actor.user_id),
    ))
    if project_id:
        q = q.filter(Reminder.project_id == project_id)
    if status:
        if status not in REMINDER_STATUSES:
            raise ValidationError("Invalid status filter", {"status": sorted(REMINDER_STATUSES)})
        q = q.filter(Reminder.status == status)
    elif not include_completed:
        q = q.filter(Reminder.status == "scheduled", Reminder.is_active.is_(True))
    return q.order_by(Reminder.next_trigger_at.is_(None), Reminder.next_trigger_at,
                      Reminder.created_at.desc()).limit(300).all()


def snooze_reminder(reminder_id, actor, minutes=60) -> Reminder:
    reminder = _get_reminder(reminder_id)
    if not _can_act(actor, reminder):
        raise UnauthorizedError(actor.user_id, "snooze this reminder")
    if reminder.status != "scheduled":
        raise ValidationError("Only scheduled reminders can be snoozed", {"status": reminder.status})
    if reminder.next_trigger_at is None:
        raise ValidationError(
            "This reminder is waiting for its target stage and cannot be snoozed yet",
            {"next_trigger_at": None},
        )
    try:
        minutes = int(minutes)
    except (TypeError, ValueError):
        minutes = 60
    if minutes <= 0:
        minutes = 60
    minutes = min(minutes, MAX_SNOOZE_MINUTES)
    reminder.next_trigger_at = utcnow() + timedelta(minutes=minutes)
    reminder.last_error = ""
    db.session.commit()
    return reminder


def cancel_reminder(reminder_id, actor) -> Reminder:
    """Stop future fires.  A fire already in flight is not interrupted."""
    reminder = _get_reminder(reminder_id)
    if not _can_manage(actor, reminder):
        raise UnauthorizedError(actor.user_id, "cancel this reminder")
    if reminder.status == "cancelled":
        return reminder
    reminder.status = "cancelled"
    reminder.is_active = False
    reminder.cancelled_at = utcnow()
    db.session.commit()
    logger.info("Reminder %s cancelled", reminder.id,
                extra={"reminder_id": reminder.id, "event_type": "reminder_cancel"})
    return reminder


def complete_for_recipient(reminder_id, actor) -> Reminder:
    """
    Mark the reminder done for the acting recipient.

    The reminder itself completes once every recipient is done and it does
    not repeat.  A manager (creator/admin) who is not a recipient completes
    it outright.
    """
    reminder = _get_reminder(reminder_id)
    if not _can_act(actor, reminder):
        raise UnauthorizedError(actor.user_id, "complete this reminder")

    now = utcnow()
    entry = next((r for r in reminder.recipients if r.user_id == actor.user_id), None)
    if entry is not None and entry.completed_at is None:
        entry.completed_at = now

    everyone_done = all(r.completed_at is not None for r in reminder.recipients)
    if reminder.status == "scheduled" and (
        entry is None or (everyone_done and reminder.repeat == "none")
    ):
        reminder.status = "completed"
        reminder.is_active = False
        reminder.completed_at = now
    db.session.commit()
    return reminder
