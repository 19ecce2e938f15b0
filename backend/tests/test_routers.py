from datetime import date, datetime

import pytest
from fastapi.encoders import jsonable_encoder
from fastapi.testclient import TestClient

import main
from main import app
from utils.attendance import StaticAttendance, get_attendance
from utils.clock import get_now
from utils.notifier import get_notifier

from tests.factories import TENANT, order_payload

NURSE = {"X-Tenant-ID": TENANT, "X-User-ID": "nurse-1"}
SECOND_NURSE = {"X-Tenant-ID": TENANT, "X-User-ID": "nurse-2"}


@pytest.fixture
def clock():
    return {"now": datetime(2025, 1, 1, 8, 5)}


@pytest.fixture
def client(clock, notifier):
    app.dependency_overrides[get_now] = lambda: clock["now"]
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _ingest(client, headers=NURSE, **overrides):
    response = client.post("/medication-orders/", json=jsonable_encoder(order_payload(**overrides)), headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _schedule_ids(client, order_id, headers=NURSE):
    response = client.get(f"/medication-orders/{order_id}/schedules/", headers=headers)
    assert response.status_code == 200
    return [s["id"] for s in response.json()]


def test_ingest_creates_active_order_with_schedules(client):
    order = _ingest(client)
    assert order["status"] == "Active"
    assert order["remaining_doses"] == 5
    assert order["specific_times"] == ["08:00", "18:00"]
    assert len(_schedule_ids(client, order["id"])) == 6


def test_invalid_recurrence_is_rejected(client):
    payload = jsonable_encoder(order_payload(recurrence={"frequency_count": 3, "specific_times": ["08:00"]}))
    response = client.post("/medication-orders/", json=payload, headers=NURSE)
    assert response.status_code == 422


def test_tenant_header_is_required(client):
    assert client.get("/medication-orders/").status_code == 422


def test_orders_are_scoped_to_the_school(client):
    order = _ingest(client)
    response = client.get(f"/medication-orders/{order['id']}", headers={"X-Tenant-ID": "school-2"})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


def test_administer_and_repeat(client, notifier):
    order = _ingest(client)
    first = _schedule_ids(client, order["id"])[0]

    response = client.post(f"/dose-schedules/{first}/administer", json={"actual_dosage": "1 tablet"}, headers=NURSE)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["schedule"]["status"] == "Administered"
    assert body["administration"]["quantity"] == 1
    assert body["administration"]["administered_by"] == "nurse-1"

    repeat = client.post(f"/dose-schedules/{first}/administer", json={"actual_dosage": "1 tablet"}, headers=NURSE)
    assert repeat.status_code == 409
    assert repeat.json()["error"] == "InvalidStatusTransitionError"
    assert repeat.json()["current"] == "Administered"

    balance = client.get(f"/medication-orders/{order['id']}/stock/", headers=NURSE).json()
    assert balance["balance"] == 4


def test_future_dose_without_override(client):
    order = _ingest(client)
    tomorrow = _schedule_ids(client, order["id"])[2]
    response = client.post(f"/dose-schedules/{tomorrow}/administer", json={"actual_dosage": "1 tablet"}, headers=NURSE)
    assert response.status_code == 422
    assert response.json()["error"] == "InvalidTimingError"


def test_confirmation_through_the_api(client):
    order = _ingest(client, require_nurse_confirmation=True)
    first = _schedule_ids(client, order["id"])[0]

    requested = client.post(f"/dose-schedules/{first}/administer", json={"actual_dosage": "1 tablet"}, headers=NURSE)
    assert requested.json()["administration"] is None
    assert requested.json()["schedule"]["status"] == "AwaitingConfirmation"

    self_confirm = client.post(f"/dose-schedules/{first}/confirm", json={}, headers=NURSE)
    assert self_confirm.status_code == 422
    assert self_confirm.json()["field"] == "confirming_actor"

    confirmed = client.post(f"/dose-schedules/{first}/confirm", json={}, headers=SECOND_NURSE)
    assert confirmed.status_code == 200
    assert confirmed.json()["schedule"]["confirmed_by"] == "nurse-2"


def test_bulk_reports_foreign_schedules_as_not_found(client, clock):
    own = _ingest(client)
    other = _ingest(client, headers={"X-Tenant-ID": "school-2", "X-User-ID": "nurse-9"}, student_id="S-900")
    own_first = _schedule_ids(client, own["id"])[0]
    foreign_first = _schedule_ids(client, other["id"], headers={"X-Tenant-ID": "school-2"})[0]

    response = client.post(
        "/dose-schedules/bulk-administer",
        json={"schedule_ids": [own_first, foreign_first], "actual_dosage": "1 tablet"},
        headers=NURSE,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success_count"] == 1
    assert [r["outcome"] for r in body["results"]] == ["succeeded", "failed:NotFoundError"]


def test_missed_absent_and_daily_view(client, clock):
    order = _ingest(client)
    first, second = _schedule_ids(client, order["id"])[:2]

    missed = client.post(f"/dose-schedules/{first}/missed", json={"reason": "Refused"}, headers=NURSE)
    assert missed.json()["status"] == "Missed"

    early_missed = client.post(f"/dose-schedules/{second}/missed", json={"reason": "Went home"}, headers=NURSE)
    assert early_missed.status_code == 422

    absent = client.post(f"/dose-schedules/{second}/absent", json={}, headers=NURSE)
    assert absent.json()["status"] == "StudentAbsent"

    daily = client.get("/dose-schedules/daily/", params={"day": "2025-01-01"}, headers=NURSE).json()
    assert daily["total"] == 2
    assert daily["missed"] == 1
    assert daily["absent"] == 1

    history = client.get("/usage-history/", params={"order_id": order["id"]}, headers=NURSE).json()
    assert {h["status"] for h in history} == {"Missed", "Absent"}


def test_correction_and_return(client):
    order = _ingest(client)
    first = _schedule_ids(client, order["id"])[0]
    given = client.post(f"/dose-schedules/{first}/quick-complete", json={}, headers=NURSE).json()
    administration_id = given["administration"]["id"]

    corrected = client.post(
        f"/administrations/{administration_id}/corrections",
        json={"reason": "Gave two tablets", "adjustment": 1},
        headers=NURSE,
    )
    assert corrected.status_code == 200
    assert corrected.json()["kind"] == "Correction"
    assert corrected.json()["reverses_id"] == administration_id

    returned = client.post(
        f"/administrations/{administration_id}/returns",
        json={"reason": "Second tablet not swallowed", "quantity": 1},
        headers=NURSE,
    )
    assert returned.json()["kind"] == "Return"

    original = client.get(f"/administrations/{administration_id}", headers=NURSE).json()
    assert original["quantity"] == 1
    assert client.get(f"/medication-orders/{order['id']}/stock/", headers=NURSE).json()["balance"] == 4


def test_stock_top_up(client):
    order = _ingest(client)
    response = client.post(
        f"/medication-orders/{order['id']}/stock/",
        json={"quantity": 10, "batch_expiry": "2025-08-31"},
        headers=NURSE,
    )
    assert response.status_code == 200
    assert response.json()["quantity_added"] == 10
    entries = client.get(f"/medication-orders/{order['id']}/stock/entries/", headers=NURSE).json()
    assert [e["quantity_added"] for e in entries] == [5, 10]


def test_reminder_run(client, clock, notifier):
    _ingest(client)
    clock["now"] = datetime(2025, 1, 1, 7, 45)
    response = client.post("/reminders/run", headers=NURSE)
    assert response.status_code == 200
    assert response.json()["reminders"] == 1
    assert len(notifier.sent) == 1


def test_discontinue_archive_and_audit(client):
    order = _ingest(client)
    discontinued = client.post(f"/medication-orders/{order['id']}/discontinue", json={"reason": "Allergy"}, headers=NURSE)
    assert discontinued.json()["status"] == "Discontinued"

    archived = client.post(f"/medication-orders/{order['id']}/archive", headers=NURSE)
    assert archived.json()["lifecycle"] == "Archived"
    assert client.get(f"/medication-orders/{order['id']}", headers=NURSE).status_code == 404

    actions = [entry["action"] for entry in client.get(f"/medication-orders/{order['id']}/audit/", headers=NURSE).json()]
    assert "CREATE" in actions
    assert "ARCHIVE" in actions


def test_tenant_config_initialization(client):
    assert client.get("/tenants/configs-initialized", params={"tenant_id": TENANT}).json() == {"configs_initialized": False}
    created = client.post("/tenants/initialize-configs", params={"tenant_id": TENANT}, headers=NURSE)
    assert created.status_code == 201
    assert client.get("/tenants/configs-initialized", params={"tenant_id": TENANT}).json() == {"configs_initialized": True}

    updated = client.patch("/configurations/day_part.AFTER_LUNCH/", json={"value": "12:45"}, headers=NURSE)
    assert updated.status_code == 200
    day_parts = client.get("/configurations/effective/day-parts", headers=NURSE).json()
    assert day_parts["AFTER_LUNCH"] == "12:45"


def test_absent_is_checked_against_the_attendance_feed(client):
    order = _ingest(client)
    first, second = _schedule_ids(client, order["id"])[:2]
    app.dependency_overrides[get_attendance] = lambda: StaticAttendance([("S-100", date(2025, 1, 1))])

    absent = client.post(f"/dose-schedules/{first}/absent", json={}, headers=NURSE)
    assert absent.status_code == 200
    assert absent.json()["status"] == "StudentAbsent"

    app.dependency_overrides[get_attendance] = lambda: StaticAttendance()
    refused = client.post(f"/dose-schedules/{second}/absent", json={}, headers=NURSE)
    assert refused.status_code == 422
    assert refused.json()["field"] == "student_present"


def test_reminder_run_skips_absent_students(client, clock, notifier):
    _ingest(client)
    app.dependency_overrides[get_attendance] = lambda: StaticAttendance([("S-100", date(2025, 1, 1))])
    clock["now"] = datetime(2025, 1, 1, 7, 45)

    response = client.post("/reminders/run", headers=NURSE)
    assert response.status_code == 200
    assert response.json()["reminders"] == 0
    assert notifier.sent == []


class _RecordingScheduler:
    def __init__(self):
        self.running = False
        self.calls = []

    def start(self):
        self.running = True
        self.calls.append("start")

    def shutdown(self, wait=True):
        self.running = False
        self.calls.append("shutdown")


def test_lifespan_starts_and_stops_the_scheduler(monkeypatch):
    recording = _RecordingScheduler()
    monkeypatch.setattr(main, "scheduler", recording)
    monkeypatch.delenv("DISABLE_SCHEDULER", raising=False)

    with TestClient(app):
        assert recording.running
    assert recording.calls == ["start", "shutdown"]


def test_lifespan_honours_disable_scheduler(monkeypatch):
    recording = _RecordingScheduler()
    monkeypatch.setattr(main, "scheduler", recording)
    monkeypatch.setenv("DISABLE_SCHEDULER", "1")

    with TestClient(app) as test_client:
        assert test_client.get("/").status_code == 200
    assert recording.calls == []
