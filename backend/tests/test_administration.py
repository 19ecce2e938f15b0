from datetime import date, datetime

import pytest

from crud import administration, stock_ledger
from crud.medication_order import get_order, get_schedules
from crud.usage_history import get_usage_for_schedule
from exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    InvalidTimingError,
    NotFoundError,
    ValidationError,
)
from models.administration_event import AdministrationEvent, AdministrationKind
from models.dose_schedule import ScheduleStatus
from models.medication_order import MedicationPriority, OrderStatus
from models.usage_history import UsageStatus
from schemas.notification import NotificationKind
from utils.attendance import StaticAttendance

JAN_1_MORNING = datetime(2025, 1, 1, 8, 5)


def _schedules(db, order):
    return get_schedules(db, order.id)


def test_administer_consumes_stock_and_resolves_schedule(db, make_order, notifier):
    order = make_order()
    first = _schedules(db, order)[0]

    event = administration.administer(
        db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING, notes="with water", notifier=notifier,
    )

    db.refresh(first)
    assert first.status == ScheduleStatus.ADMINISTERED
    assert first.administration_id == event.id
    assert first.completed_at == JAN_1_MORNING
    assert event.quantity == 1
    assert event.administered_by == "nurse-1"
    assert stock_ledger.balance(db, order) == 4
    db.refresh(order)
    assert order.remaining_doses == 4

    usage = get_usage_for_schedule(db, first.id)
    assert [(u.status, u.dosage_used) for u in usage] == [(UsageStatus.GIVEN, "1 tablet")]


def test_second_administration_of_same_dose_is_rejected(db, make_order):
    order = make_order()
    first = _schedules(db, order)[0]
    administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    with pytest.raises(InvalidStatusTransitionError):
        administration.administer(db, first.id, "nurse-2", "1 tablet", now=JAN_1_MORNING)
    assert stock_ledger.balance(db, order) == 4


def test_future_dose_needs_early_override(db, make_order):
    order = make_order()
    tomorrow = _schedules(db, order)[2]

    with pytest.raises(InvalidTimingError):
        administration.administer(db, tomorrow.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)
    assert stock_ledger.balance(db, order) == 5

    event = administration.administer(db, tomorrow.id, "nurse-1", "1 tablet", now=JAN_1_MORNING, early=True)
    assert event.early_override


def test_later_the_same_day_is_not_early(db, make_order):
    order = make_order()
    evening = _schedules(db, order)[1]
    event = administration.administer(db, evening.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)
    assert not event.early_override


def test_out_of_stock_leaves_everything_unchanged(db, make_order):
    order = make_order(initial_stock={"quantity": 1, "batch_expiry": date(2025, 12, 31)})
    first, second = _schedules(db, order)[:2]
    administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    with pytest.raises(InsufficientStockError):
        administration.administer(db, second.id, "nurse-1", "1 tablet", now=datetime(2025, 1, 1, 18, 0))

    db.refresh(second)
    assert second.status == ScheduleStatus.PENDING
    assert get_usage_for_schedule(db, second.id) == []
    assert db.query(AdministrationEvent).filter(AdministrationEvent.schedule_id == second.id).count() == 0


def test_actor_is_required(db, make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        administration.administer(db, _schedules(db, order)[0].id, "  ", "1 tablet", now=JAN_1_MORNING)


def test_unknown_schedule(db):
    with pytest.raises(NotFoundError):
        administration.administer(db, 999, "nurse-1", "1 tablet", now=JAN_1_MORNING)


def test_refusal_is_missed_without_stock(db, make_order):
    order = make_order()
    first = _schedules(db, order)[0]

    event = administration.administer(
        db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING,
        student_refused=True, refusal_reason="Felt sick",
    )

    db.refresh(first)
    assert first.status == ScheduleStatus.MISSED
    assert first.missed_reason == "Felt sick"
    assert event.student_refused
    assert event.quantity == 0
    assert stock_ledger.balance(db, order) == 5
    assert get_usage_for_schedule(db, first.id)[0].status == UsageStatus.REFUSED


def test_confirmation_flow(db, make_order, notifier):
    order = make_order(require_nurse_confirmation=True)
    first = _schedules(db, order)[0]

    pending = administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING, notifier=notifier)
    assert pending is None
    db.refresh(first)
    assert first.status == ScheduleStatus.AWAITING_CONFIRMATION
    assert first.pending_actor == "nurse-1"
    assert stock_ledger.balance(db, order) == 5

    with pytest.raises(ValidationError) as exc_info:
        administration.confirm(db, first.id, "nurse-1", now=JAN_1_MORNING)
    assert exc_info.value.field == "confirming_actor"

    event = administration.confirm(db, first.id, "nurse-2", now=datetime(2025, 1, 1, 8, 10), notifier=notifier)
    db.refresh(first)
    assert first.status == ScheduleStatus.ADMINISTERED
    assert first.confirmed_by == "nurse-2"
    assert event.administered_by == "nurse-1"
    assert event.actual_dosage == "1 tablet"
    assert stock_ledger.balance(db, order) == 4


def test_awaiting_confirmation_cannot_be_missed(db, make_order):
    order = make_order(require_nurse_confirmation=True)
    first = _schedules(db, order)[0]
    administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    with pytest.raises(InvalidStatusTransitionError):
        administration.mark_missed(db, first.id, "Ran out of time", "nurse-2", now=datetime(2025, 1, 1, 12, 0))


def test_confirm_requires_awaiting_status(db, make_order):
    order = make_order()
    first = _schedules(db, order)[0]
    with pytest.raises(ValidationError):
        administration.confirm(db, first.id, "nurse-2", now=JAN_1_MORNING)


def test_quick_complete_uses_scheduled_dosage(db, make_order):
    order = make_order()
    event = administration.quick_complete(db, _schedules(db, order)[0].id, "nurse-1", now=JAN_1_MORNING)
    assert event.actual_dosage == "1 tablet"
    assert event.notes == "Quick complete"


def test_missed_only_after_scheduled_time(db, make_order):
    order = make_order()
    evening = _schedules(db, order)[1]

    with pytest.raises(InvalidTimingError):
        administration.mark_missed(db, evening.id, "Went home", "nurse-1", now=JAN_1_MORNING)

    schedule = administration.mark_missed(db, evening.id, "Went home", "nurse-1", now=datetime(2025, 1, 1, 18, 30))
    assert schedule.status == ScheduleStatus.MISSED
    assert schedule.missed_reason == "Went home"
    assert stock_ledger.balance(db, order) == 5


def test_missed_needs_a_reason(db, make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        administration.mark_missed(db, _schedules(db, order)[0].id, " ", "nurse-1", now=JAN_1_MORNING)


def test_missed_high_priority_notifies(db, make_order, notifier):
    order = make_order(priority=MedicationPriority.HIGH)
    administration.mark_missed(
        db, _schedules(db, order)[0].id, "Not found in class", "nurse-1", now=JAN_1_MORNING, notifier=notifier,
    )
    missed = notifier.of_kind(NotificationKind.MISSED)
    assert len(missed) == 1
    assert missed[0].payload["reason"] == "Not found in class"


def test_missed_normal_priority_is_quiet(db, make_order, notifier):
    order = make_order()
    administration.mark_missed(db, _schedules(db, order)[0].id, "Late bus", "nurse-1", now=JAN_1_MORNING, notifier=notifier)
    assert notifier.of_kind(NotificationKind.MISSED) == []


def test_absent_without_attendance_feed(db, make_order, notifier):
    order = make_order()
    first = _schedules(db, order)[0]

    schedule = administration.mark_absent(db, first.id, "nurse-1", now=JAN_1_MORNING, notifier=notifier)

    assert schedule.status == ScheduleStatus.STUDENT_ABSENT
    assert not schedule.student_present
    assert schedule.reminders_suppressed
    assert len(notifier.of_kind(NotificationKind.ABSENT)) == 1
    assert stock_ledger.balance(db, order) == 5


def test_absent_contradicted_by_attendance(db, make_order):
    order = make_order()
    first = _schedules(db, order)[0]
    with pytest.raises(ValidationError):
        administration.mark_absent(db, first.id, "nurse-1", now=JAN_1_MORNING, attendance=StaticAttendance())

    attendance = StaticAttendance([("S-100", date(2025, 1, 1))])
    schedule = administration.mark_absent(db, first.id, "nurse-1", now=JAN_1_MORNING, attendance=attendance)
    assert schedule.status == ScheduleStatus.STUDENT_ABSENT


def test_discontinued_order_rejects_administration(db, make_order):
    from crud.medication_order import discontinue_order

    order = make_order()
    discontinue_order(db, order.id, "Doctor stopped treatment", changed_by="nurse-1")
    with pytest.raises(ValidationError) as exc_info:
        administration.administer(db, _schedules(db, order)[0].id, "nurse-1", "1 tablet", now=JAN_1_MORNING)
    assert exc_info.value.field == "order_status"


def test_correction_appends_and_leaves_original(db, make_order):
    order = make_order()
    first = _schedules(db, order)[0]
    original = administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    correction = administration.correct(
        db, original.id, "Half the tablet was spat out", -1, "nurse-1", now=datetime(2025, 1, 1, 8, 30),
    )

    assert correction.kind == AdministrationKind.CORRECTION
    assert correction.reverses_id == original.id
    assert correction.quantity == -1
    assert stock_ledger.balance(db, order) == 5

    db.refresh(original)
    db.refresh(first)
    assert original.quantity == 1
    assert original.kind == AdministrationKind.ADMINISTRATION
    assert first.status == ScheduleStatus.ADMINISTERED
    assert [u.status for u in get_usage_for_schedule(db, first.id)] == [UsageStatus.GIVEN, UsageStatus.CORRECTED]


def test_correction_can_take_more_stock(db, make_order):
    order = make_order()
    original = administration.administer(db, _schedules(db, order)[0].id, "nurse-1", "1 tablet", now=JAN_1_MORNING)
    administration.correct(db, original.id, "Gave two tablets", 1, "nurse-1", now=JAN_1_MORNING)
    assert stock_ledger.balance(db, order) == 3


def test_correction_validation(db, make_order):
    order = make_order()
    original = administration.administer(db, _schedules(db, order)[0].id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    with pytest.raises(ValidationError):
        administration.correct(db, original.id, "", -1, "nurse-1", now=JAN_1_MORNING)
    with pytest.raises(ValidationError):
        administration.correct(db, original.id, "typo", 0, "nurse-1", now=JAN_1_MORNING)
    with pytest.raises(ValidationError):
        administration.correct(db, original.id, "too much back", -2, "nurse-1", now=JAN_1_MORNING)


def test_return_cannot_exceed_what_was_given(db, make_order):
    order = make_order()
    original = administration.administer(db, _schedules(db, order)[0].id, "nurse-1", "1 tablet", now=JAN_1_MORNING)

    returned = administration.return_dose(db, original.id, 1, "Dose not taken", "nurse-1", now=JAN_1_MORNING)
    assert returned.kind == AdministrationKind.RETURN
    assert stock_ledger.balance(db, order) == 5

    with pytest.raises(ValidationError):
        administration.return_dose(db, original.id, 1, "Again", "nurse-1", now=JAN_1_MORNING)


def test_refusal_cannot_be_corrected(db, make_order):
    order = make_order()
    refusal = administration.administer(
        db, _schedules(db, order)[0].id, "nurse-1", "1 tablet", now=JAN_1_MORNING, student_refused=True,
    )
    with pytest.raises(ValidationError):
        administration.correct(db, refusal.id, "oops", -1, "nurse-1", now=JAN_1_MORNING)


def test_order_completes_when_last_dose_resolved_after_last_day(db, make_order):
    order = make_order()
    schedules = _schedules(db, order)
    after_last_day = datetime(2025, 1, 4, 9, 0)
    for schedule in schedules[:-1]:
        administration.mark_missed(db, schedule.id, "Catch-up review", "nurse-1", now=after_last_day)
    assert get_order(db, order.id).status == OrderStatus.ACTIVE

    administration.mark_missed(db, schedules[-1].id, "Catch-up review", "nurse-1", now=after_last_day)
    db.expire_all()
    assert get_order(db, order.id).status == OrderStatus.COMPLETED


def test_administrations_listed_in_order(db, make_order):
    order = make_order()
    first, second = _schedules(db, order)[:2]
    administration.administer(db, first.id, "nurse-1", "1 tablet", now=JAN_1_MORNING)
    administration.administer(db, second.id, "nurse-1", "1 tablet", now=datetime(2025, 1, 1, 18, 0))
    events = administration.get_administrations(db, order.id)
    assert [e.schedule_id for e in events] == [first.id, second.id]
