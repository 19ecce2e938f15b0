"""
Reminder coordinator: one pass over the open doses.

For each open dose of an administrable order, at most one request per pass:

- Reminder    scheduled within the lead window ahead, no reminder sent yet
- Overdue     past the overdue window and below the school's reminder limit
- Escalation  past the overdue window at the limit, once, then silence

Counters are written with a conditional UPDATE so a dose resolved by a nurse
during the pass is left alone. Requests go out after the commit; a failed
delivery is logged and does not roll the counters back.
"""

from datetime import datetime, timedelta
import logging
from typing import Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, contains_eager

from crud.app_config import get_reminder_settings
from models.dose_schedule import DoseSchedule, OPEN_STATUSES
from models.medication_order import MedicationOrder, ADMINISTRABLE_ORDER_STATUSES
from schemas.app_config import ReminderSettings
from schemas.notification import NotificationRequest, NotificationKind, ReminderPassResult
from utils.attendance import AttendanceProvider
from utils.notifier import Notifier, default_notifier, dispatch

logger = logging.getLogger(__name__)


def _candidates(db: Session, now: datetime, horizon: datetime):
    schedules = (
        db.query(DoseSchedule)
        .join(MedicationOrder, DoseSchedule.order_id == MedicationOrder.id)
        .options(contains_eager(DoseSchedule.order))
        .filter(
            DoseSchedule.status.in_(OPEN_STATUSES),
            DoseSchedule.reminders_suppressed.is_(False),
            DoseSchedule.escalated.is_(False),
            DoseSchedule.scheduled_date <= horizon.date(),
            MedicationOrder.status.in_(ADMINISTRABLE_ORDER_STATUSES),
            MedicationOrder.active_criteria(),
        )
        .all()
    )
    schedules.sort(key=lambda s: (-s.priority.rank, s.scheduled_at, s.id))
    return schedules


def _classify(schedule: DoseSchedule, now: datetime, settings: ReminderSettings) -> Optional[NotificationKind]:
    scheduled_at = schedule.scheduled_at
    if now <= scheduled_at <= now + timedelta(minutes=settings.lead_minutes):
        return None if schedule.reminder_sent else NotificationKind.REMINDER
    if now - scheduled_at > timedelta(minutes=settings.overdue_minutes):
        if schedule.reminder_count < settings.max_reminders:
            return NotificationKind.OVERDUE
        return NotificationKind.ESCALATION
    return None


def _request(kind: NotificationKind, schedule: DoseSchedule, now: datetime) -> NotificationRequest:
    order = schedule.order
    payload = {
        "student_id": order.student_id,
        "guardian_id": order.guardian_id,
        "medication_name": order.medication_name,
        "dosage": schedule.scheduled_dosage,
        "scheduled_at": schedule.scheduled_at.isoformat(),
        "priority": schedule.priority.value,
        "reminder_count": schedule.reminder_count + 1,
    }
    if kind != NotificationKind.REMINDER:
        payload["minutes_overdue"] = int((now - schedule.scheduled_at).total_seconds() // 60)
    return NotificationRequest(kind=kind, order_id=order.id, schedule_id=schedule.id, payload=payload)


def run_pass(
    db: Session,
    now: datetime,
    notifier: Notifier = default_notifier,
    settings: ReminderSettings = None,
    attendance: AttendanceProvider = None,
) -> ReminderPassResult:
    """Run one reminder pass at `now` (naive, school-local).

    `settings` applies to every school when given; otherwise each order's
    school settings are read from app_config.
    """
    tenant_settings: Dict[str, ReminderSettings] = {}

    def settings_for(tenant_id):
        if settings is not None:
            return settings
        if tenant_id not in tenant_settings:
            tenant_settings[tenant_id] = get_reminder_settings(db, tenant_id)
        return tenant_settings[tenant_id]

    # Lead windows are shorter than a day.
    horizon = now + timedelta(days=1)
    result = ReminderPassResult()
    outgoing = []

    try:
        for schedule in _candidates(db, now, horizon):
            result.scanned += 1
            order = schedule.order

            if (
                attendance is not None
                and order.skip_on_absence
                and not attendance.is_present(order.student_id, schedule.scheduled_date)
            ):
                db.execute(
                    update(DoseSchedule)
                    .where(DoseSchedule.id == schedule.id, DoseSchedule.status.in_(OPEN_STATUSES))
                    .values(reminders_suppressed=True, attendance_checked_at=now)
                    .execution_options(synchronize_session=False)
                )
                logger.info(f"Reminders suppressed for schedule {schedule.id}: student {order.student_id} absent")
                continue

            kind = _classify(schedule, now, settings_for(order.tenant_id))
            if kind is None:
                continue

            values = {
                "reminder_sent": True,
                "reminder_sent_at": now,
                "reminder_count": DoseSchedule.reminder_count + 1,
            }
            if kind == NotificationKind.ESCALATION:
                values["escalated"] = True
            claimed = db.execute(
                update(DoseSchedule)
                .where(
                    DoseSchedule.id == schedule.id,
                    DoseSchedule.status.in_(OPEN_STATUSES),
                    DoseSchedule.reminder_count == schedule.reminder_count,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                logger.debug(f"Schedule {schedule.id} changed during the reminder pass; skipped")
                continue

            outgoing.append(_request(kind, schedule, now))
            if kind == NotificationKind.REMINDER:
                result.reminders += 1
            elif kind == NotificationKind.OVERDUE:
                result.overdue += 1
            else:
                result.escalations += 1
                logger.warning(
                    f"Escalating schedule {schedule.id} (order {order.id}, student {order.student_id}): "
                    f"{schedule.reminder_count} reminder(s) without resolution"
                )
        db.commit()
    except Exception:
        logger.exception("Reminder pass failed; no reminder state was changed")
        db.rollback()
        raise

    for request in outgoing:
        if not dispatch(notifier, request):
            result.delivery_failures += 1

    logger.info(
        f"Reminder pass at {now}: scanned {result.scanned}, reminders {result.reminders}, "
        f"overdue {result.overdue}, escalations {result.escalations}, failures {result.delivery_failures}"
    )
    return result
