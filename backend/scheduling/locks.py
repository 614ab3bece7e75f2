"""Mutual exclusion for writers, scoped to one provider and one day.

Two layers: a row in ``provider_day_locks`` held with ``SELECT ... FOR UPDATE``
for the length of the write transaction, and an in-process lock with the same
key. Databases without row locks (SQLite) still serialize through the latter.
Locks are always taken in sorted key order.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Iterable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.schedule_lock import SCOPE_BOOKING, SCOPE_QUEUE, ProviderDayLock
from backend.scheduling.timeslots import Interval

logger = logging.getLogger(__name__)

LOCK_ROW_ATTEMPTS = 3

# The walk-in queue allows one serving entry per provider across all days,
# so its lock row is keyed on this fixed day rather than the service date.
QUEUE_LOCK_DAY = date(1970, 1, 1)


class _KeyedLock:
    __slots__ = ('lock', '__weakref__')

    def __init__(self):
        self.lock = threading.Lock()


_registry_guard = threading.Lock()
_local_locks: 'weakref.WeakValueDictionary[tuple, _KeyedLock]' = weakref.WeakValueDictionary()


def _local_lock(key: tuple) -> _KeyedLock:
    with _registry_guard:
        keyed = _local_locks.get(key)
        if keyed is None:
            keyed = _KeyedLock()
            _local_locks[key] = keyed
        return keyed


def days_spanned(interval: Interval) -> set[date]:
    """UTC calendar days touched by ``interval``."""
    days = set()
    current = interval.start.date()
    last = (interval.end - timedelta(microseconds=1)).date()
    while current <= last:
        days.add(current)
        current += timedelta(days=1)
    return days


def _lock_row(db: Session, provider_id: int, day: date, scope: str) -> None:
    row = db.query(ProviderDayLock).filter(
        ProviderDayLock.provider_id == provider_id,
        ProviderDayLock.day == day,
        ProviderDayLock.scope == scope,
    ).with_for_update().first()

    if row is None:
        db.add(ProviderDayLock(provider_id=provider_id, day=day, scope=scope))
        db.flush()


def _lock_rows(db: Session, provider_id: int, days: list[date], scope: str) -> None:
    for attempt in range(1, LOCK_ROW_ATTEMPTS + 1):
        try:
            for day in days:
                _lock_row(db, provider_id, day, scope)
            return
        except IntegrityError:
            # A concurrent writer inserted the same lock row first. The
            # rollback also drops rows locked earlier in this pass, so start over.
            db.rollback()
            if attempt == LOCK_ROW_ATTEMPTS:
                raise
            logger.debug("Lock row race for provider %s; retrying.", provider_id)


@contextmanager
def provider_day_locks(
    db: Session,
    provider_id: int,
    days: Iterable[date],
    scope: str = SCOPE_BOOKING,
) -> Iterator[None]:
    """Hold the provider+day locks for ``days`` until the block exits.

    The block is expected to commit. If it raises, the transaction is rolled
    back before the locks are released, so nothing partial is ever visible.
    """
    ordered_days = sorted(set(days))
    held = [_local_lock((provider_id, day, scope)) for day in ordered_days]

    acquired: list[_KeyedLock] = []
    try:
        for keyed in held:
            keyed.lock.acquire()
            acquired.append(keyed)
        _lock_rows(db, provider_id, ordered_days, scope)
        yield
    except BaseException:
        db.rollback()
        raise
    finally:
        for keyed in reversed(acquired):
            keyed.lock.release()


def provider_queue_lock(db: Session, provider_id: int):
    """The provider-wide walk-in queue lock; same contract as ``provider_day_locks``."""
    return provider_day_locks(db, provider_id, [QUEUE_LOCK_DAY], scope=SCOPE_QUEUE)
