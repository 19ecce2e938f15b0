import os
import tempfile

# Point the app at a throwaway SQLite file before `database` is imported.
_DB_DIR = tempfile.mkdtemp(prefix="medication-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["DISABLE_SCHEDULER"] = "1"

import pytest

import models  # noqa: F401
from database import Base, SessionLocal, engine
from crud.medication_order import ingest_approved_order
from schemas.medication_order import ApprovedMedicationOrder
from utils.notifier import RecordingNotifier

from tests.factories import INGEST_NOW, TENANT, order_payload


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_order(db):
    def _make(now=INGEST_NOW, tenant_id=TENANT, **overrides):
        approved = ApprovedMedicationOrder(**order_payload(**overrides))
        return ingest_approved_order(db, approved, tenant_id=tenant_id, now=now)
    return _make
