import threading
from datetime import datetime

from crud import administration, stock_ledger
from crud.medication_order import get_schedules
from exceptions import InvalidStatusTransitionError, MedicationEngineError
from models.administration_event import AdministrationEvent
from models.dose_schedule import ScheduleStatus


def test_mixed_day_with_partial_bulk_failure(db, make_order, session_factory, notifier):
    """Administer one, miss one, run out of stock midway through a bulk run."""
    order = make_order()
    schedules = get_schedules(db, order.id)
    assert len(schedules) == 6

    administration.administer(db, schedules[0].id, "nurse-1", "1 tablet", now=datetime(2025, 1, 1, 8, 5))
    assert stock_ledger.balance(db, order) == 4

    administration.mark_missed(db, schedules[2].id, "refused", "nurse-1", now=datetime(2025, 1, 2, 9, 0))
    assert stock_ledger.balance(db, order) == 4

    # A dropped tablet leaves three units for the four remaining doses.
    stock_ledger.consume(db, order, 1, changed_by="nurse-1", note="dropped")
    db.commit()

    remaining = [schedules[1].id, schedules[3].id, schedules[4].id, schedules[5].id]
    results = administration.bulk_administer(
        session_factory, remaining, "nurse-1", "1 tablet",
        now=datetime(2025, 1, 3, 20, 0), notifier=notifier,
    )

    assert [r.schedule_id for r in results] == remaining
    assert sum(1 for r in results if r.succeeded) == 3
    failures = [r for r in results if not r.succeeded]
    assert [f.outcome for f in failures] == ["failed:InsufficientStockError"]

    db.expire_all()
    assert stock_ledger.balance(db, order) == 0
    statuses = [s.status for s in get_schedules(db, order.id)]
    assert statuses.count(ScheduleStatus.ADMINISTERED) == 4
    assert statuses.count(ScheduleStatus.MISSED) == 1
    assert statuses.count(ScheduleStatus.PENDING) == 1


def test_bulk_reports_each_failure_kind(db, make_order, session_factory):
    order = make_order()
    schedules = get_schedules(db, order.id)
    administration.administer(db, schedules[0].id, "nurse-1", "1 tablet", now=datetime(2025, 1, 1, 8, 5))

    results = administration.bulk_administer(
        session_factory, [schedules[0].id, schedules[4].id, 9999, schedules[1].id], "nurse-1", "1 tablet",
        now=datetime(2025, 1, 1, 18, 5),
    )

    assert [r.outcome for r in results] == [
        "failed:InvalidStatusTransitionError",
        "failed:InvalidTimingError",
        "failed:NotFoundError",
        "succeeded",
    ]
    assert results[3].administration_id is not None


def test_cancelled_bulk_touches_nothing(db, make_order, session_factory):
    order = make_order()
    ids = [s.id for s in get_schedules(db, order.id)[:2]]
    cancel = threading.Event()
    cancel.set()

    results = administration.bulk_administer(
        session_factory, ids, "nurse-1", "1 tablet", now=datetime(2025, 1, 1, 20, 0), cancel_event=cancel,
    )

    assert all(r.outcome == "failed:OperationCancelled" for r in results)
    assert stock_ledger.balance(db, order) == 5


def test_empty_bulk():
    assert administration.bulk_administer(lambda: None, [], "nurse-1", "1 tablet", now=datetime(2025, 1, 1)) == []


def test_concurrent_administration_of_one_dose(db, make_order, session_factory):
    order = make_order()
    schedule_id = get_schedules(db, order.id)[0].id
    now = datetime(2025, 1, 1, 8, 5)

    start = threading.Barrier(2)
    outcomes = []

    def give(actor):
        session = session_factory()
        try:
            start.wait()
            administration.administer(session, schedule_id, actor, "1 tablet", now=now)
            outcomes.append("ok")
        except MedicationEngineError as e:
            outcomes.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=give, args=(actor,)) for actor in ("nurse-1", "nurse-2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    errors = [o for o in outcomes if o != "ok"]
    assert len(errors) == 1 and isinstance(errors[0], InvalidStatusTransitionError)

    db.expire_all()
    assert stock_ledger.balance(db, order) == 4
    assert db.query(AdministrationEvent).filter(AdministrationEvent.schedule_id == schedule_id).count() == 1


def test_concurrent_doses_never_overdraw(db, make_order, session_factory):
    order = make_order(initial_stock={"quantity": 2, "batch_expiry": datetime(2025, 12, 31).date()})
    ids = [s.id for s in get_schedules(db, order.id)[:4]]

    results = administration.bulk_administer(
        session_factory, ids, "nurse-1", "1 tablet", now=datetime(2025, 1, 2, 20, 0), max_workers=4,
    )

    assert sum(1 for r in results if r.succeeded) == 2
    assert sum(1 for r in results if r.outcome == "failed:InsufficientStockError") == 2
    db.expire_all()
    assert stock_ledger.balance(db, order) == 0
