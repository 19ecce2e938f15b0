import logging
import threading
from contextlib import contextmanager

from exceptions import MedicationEngineError
from utils.notifier import default_notifier, discard_outbox, flush_outbox

logger = logging.getLogger(__name__)


class OrderLockRegistry:
    """One lock per medication order id.

    Serializes stock and status changes for the same order within this
    process; the row lock taken by callers covers other processes on
    PostgreSQL.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, order_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[order_id] = lock
            return lock

    @contextmanager
    def hold(self, order_id: int):
        lock = self._lock_for(order_id)
        with lock:
            yield


order_locks = OrderLockRegistry()


@contextmanager
def order_transaction(db, order_id: int, notifier=None):
    """Run the body as one transaction on one order.

    Commits on success and then dispatches notifications queued on the
    session; rolls back and drops them on any error.
    """
    with order_locks.hold(order_id):
        try:
            yield
            db.commit()
        except Exception as e:
            if not isinstance(e, MedicationEngineError):
                logger.exception(f"Unexpected error while updating order {order_id}")
            db.rollback()
            discard_outbox(db)
            raise
    flush_outbox(db, notifier or default_notifier)
