import logging
import time
from threading import Lock
from typing import Callable, TypeVar

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend.core import config


logger = logging.getLogger(__name__)

T = TypeVar('T')


def _connect_args(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'check_same_thread': False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    echo=config.DATABASE_ECHO,
    connect_args=_connect_args(config.DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_INDEXES = {
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_provider_range '
        'ON appointments(provider_id, start_time, end_time)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, start_time)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_time)',
    ],
    'blackouts': [
        'CREATE INDEX IF NOT EXISTS idx_blackouts_provider_range ON blackouts(provider_id, start_time, end_time)',
    ],
    'queue_entries': [
        'CREATE INDEX IF NOT EXISTS idx_queue_entries_provider_day_status '
        'ON queue_entries(provider_id, service_date, status)',
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_queue_entries_one_serving "
        "ON queue_entries(provider_id) WHERE status = 'serving'",
    ],
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        existing_tables = set(inspect(engine).get_table_names())

        with engine.begin() as connection:
            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _scheduling_schema_checked = True


def retry_read(db: Session, operation: Callable[[], T]) -> T:
    """Run a read-only ``operation``, retrying after a connection-level failure.

    Writes must never go through here: an ambiguous commit outcome has to be
    resolved by the caller re-querying state.
    """
    attempts = config.READ_RETRY_ATTEMPTS
    attempt = 1
    while True:
        try:
            return operation()
        except OperationalError:
            db.rollback()
            if attempt >= attempts:
                raise
            logger.warning('Read failed (attempt %s of %s); retrying.', attempt, attempts)
            time.sleep(config.READ_RETRY_BACKOFF_SECONDS * attempt)
            attempt += 1
