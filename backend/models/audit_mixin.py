from sqlalchemy import Column, DateTime, String, Enum
from datetime import datetime
import enum
import pytz

from config import SITE_TIMEZONE


def site_timestamp():
    return datetime.now(pytz.timezone(SITE_TIMEZONE))


class Lifecycle(enum.Enum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class TimestampMixin:
    """Mixin that provides created/updated timestamps and user info.

    This is the minimal mixin used for most models. Ledger tables that are
    insert-only still carry it so every row records who wrote it and when.
    """
    # DateTime(timezone=True) ensures the timezone info is persisted in the database.
    created_at = Column(DateTime(timezone=True), default=site_timestamp)
    updated_at = Column(DateTime(timezone=True), onupdate=site_timestamp)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)


class LifecycleMixin:
    """Explicit Active/Archived lifecycle.

    Archived rows are hidden from ordinary SELECTs by the listener in
    database.py; query with execution_options(include_archived=True) to see
    them.
    """
    lifecycle = Column(Enum(Lifecycle), default=Lifecycle.ACTIVE, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    archived_by = Column(String, nullable=True)

    @classmethod
    def active_criteria(cls):
        return cls.lifecycle == Lifecycle.ACTIVE

    def archive(self, archived_by: str = None):
        self.lifecycle = Lifecycle.ARCHIVED
        self.archived_at = site_timestamp()
        self.archived_by = archived_by
