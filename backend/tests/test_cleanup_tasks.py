from datetime import date, datetime

import pytest

from crud import administration
from crud.medication_order import archive_order, discontinue_order, get_order, get_schedules, list_orders
from exceptions import NotFoundError, ValidationError
from models.audit_mixin import Lifecycle
from models.medication_order import OrderStatus
from tasks.cleanup_tasks import archive_closed_orders, close_finished_orders, run_cleanup

from tests.factories import TENANT

ONE_DAY = dict(
    recurrence={"frequency_count": 1, "specific_times": ["08:00"]},
    start_date=date(2025, 1, 1),
    expiry_date=date(2025, 1, 1),
)


def _status(db, order_id):
    db.expire_all()
    return get_order(db, order_id, include_archived=True).status


def test_open_doses_past_expiry_expire_the_order(db, make_order):
    order = make_order()
    summary = close_finished_orders(db, today=date(2025, 1, 5))
    assert summary == {"completed": 0, "expired": 1}
    assert _status(db, order.id) == OrderStatus.EXPIRED


def test_fully_resolved_order_completes(db, make_order):
    order = make_order(**ONE_DAY)
    administration.mark_missed(db, get_schedules(db, order.id)[0].id, "Absent from class", "nurse-1", now=datetime(2025, 1, 1, 9, 0))
    # Still the last day, so the order stays open.
    assert _status(db, order.id) == OrderStatus.ACTIVE

    summary = close_finished_orders(db, today=date(2025, 1, 2))
    assert summary["completed"] == 1
    assert _status(db, order.id) == OrderStatus.COMPLETED


def test_order_still_inside_its_window_is_left_alone(db, make_order):
    order = make_order()
    assert close_finished_orders(db, today=date(2025, 1, 3)) == {"completed": 0, "expired": 0}
    assert _status(db, order.id) == OrderStatus.ACTIVE


def test_ended_early_but_not_expired_stays_open(db, make_order):
    order = make_order(end_date=date(2025, 1, 2), expiry_date=date(2025, 1, 10))
    assert close_finished_orders(db, today=date(2025, 1, 5)) == {"completed": 0, "expired": 0}
    assert _status(db, order.id) == OrderStatus.ACTIVE


def test_archive_waits_for_retention(db, make_order):
    order = make_order(**ONE_DAY)
    administration.mark_missed(db, get_schedules(db, order.id)[0].id, "Absent", "nurse-1", now=datetime(2025, 1, 1, 9, 0))
    close_finished_orders(db, today=date(2025, 1, 2))

    assert archive_closed_orders(db, today=date(2025, 1, 20), retention_days=30) == 0
    assert archive_closed_orders(db, today=date(2025, 2, 1), retention_days=30) == 1

    assert list_orders(db, TENANT) == []
    with pytest.raises(NotFoundError):
        get_order(db, order.id)
    archived = get_order(db, order.id, include_archived=True)
    assert archived.lifecycle == Lifecycle.ARCHIVED
    assert archived.archived_by == "SYSTEM"


def test_expired_order_with_open_doses_is_never_archived(db, make_order):
    make_order()
    close_finished_orders(db, today=date(2025, 1, 5))
    assert archive_closed_orders(db, today=date(2025, 6, 1), retention_days=30) == 0


def test_run_cleanup(make_order, session_factory):
    make_order()
    summary = run_cleanup(today=date(2025, 1, 5), session_factory=session_factory)
    assert summary == {"completed": 0, "expired": 1, "archived": 0}


def test_manual_archive_only_for_closed_orders(db, make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        archive_order(db, order.id, TENANT, changed_by="admin")

    discontinue_order(db, order.id, "Course changed", TENANT, changed_by="nurse-1")
    archive_order(db, order.id, TENANT, changed_by="admin")
    db.expire_all()
    with pytest.raises(NotFoundError):
        get_order(db, order.id, TENANT)


def test_discontinue_needs_reason_and_open_order(db, make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        discontinue_order(db, order.id, "  ")
    discontinue_order(db, order.id, "Finished early")
    with pytest.raises(ValidationError):
        discontinue_order(db, order.id, "Again")
