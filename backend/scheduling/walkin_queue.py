"""Same-day walk-in queue per provider.

Ordering is priority first, then arrival, then id. Only one entry per provider
may be ``serving``; ``call_next`` and ``complete`` hold the provider's queue
lock for the day so two front-desk clients cannot both act on the same state.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.database import retry_read
from backend.models.provider import Provider
from backend.models.queue_entry import QUEUE_COMPLETED, QUEUE_SERVING, QUEUE_WAITING, QueueEntry
from backend.scheduling.availability import local_date
from backend.scheduling.context import CAPACITY_PATIENT, RequestContext, capacities, is_staff
from backend.scheduling.errors import (
    InvalidTransition,
    NotAuthorized,
    ProviderBusy,
    QueueEmpty,
    UnknownProvider,
)
from backend.scheduling.locks import provider_queue_lock
from backend.scheduling.repository import ProviderRepository, QueueRepository, UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalkInPatient:
    """Identity captured at the desk; the patient may not have an account."""

    national_id: str
    first_name: str
    last_name: str
    patient_id: int | None = None


@dataclass
class QueueSnapshot:
    provider_id: int
    service_date: date
    generated_at: datetime
    serving: QueueEntry | None = None
    waiting: list[QueueEntry] = field(default_factory=list)


class WalkInQueueManager:
    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        ctx: RequestContext,
        provider_id: int,
        patient: WalkInPatient,
        priority: bool = False,
    ) -> QueueEntry:
        provider = self._get_provider(provider_id)

        patient_id = patient.patient_id
        if patient_id is None:
            registered = UserRepository.patient_by_national_id(self.db, patient.national_id)
            if registered is not None:
                patient_id = registered.id

        if not is_staff(ctx.principal, provider):
            # Patients may only check themselves in.
            if CAPACITY_PATIENT not in capacities(ctx.principal, provider, patient_id):
                raise NotAuthorized()

        entry = QueueEntry(
            provider_id=provider.id,
            hospital_id=provider.hospital_id,
            service_date=local_date(provider, ctx.now),
            patient_id=patient_id,
            national_id=patient.national_id,
            first_name=patient.first_name,
            last_name=patient.last_name,
            priority=priority,
            status=QUEUE_WAITING,
            arrived_at=ctx.now,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(entry)
        if patient_id is None:
            logger.info('Unregistered walk-in %s queued for provider %s.', entry.id, provider.id)
        else:
            logger.info('Walk-in %s (patient %s) queued for provider %s.', entry.id, patient_id, provider.id)
        return entry

    def call_next(self, ctx: RequestContext, provider_id: int) -> QueueEntry:
        provider = self._get_provider(provider_id)
        if not is_staff(ctx.principal, provider):
            raise NotAuthorized()

        service_date = local_date(provider, ctx.now)
        try:
            with provider_queue_lock(self.db, provider.id):
                serving = QueueRepository.serving(self.db, provider.id)
                if serving is not None:
                    raise ProviderBusy(provider.id, serving.id)

                head = QueueRepository.head(self.db, provider.id, service_date)
                if head is None:
                    raise QueueEmpty(provider.id)

                head.status = QUEUE_SERVING
                head.called_at = ctx.now
                head.called_by = ctx.principal.user_id
                self.db.commit()
        except (IntegrityError, StaleDataError) as exc:
            # Another process promoted an entry first.
            serving = QueueRepository.serving(self.db, provider.id)
            if serving is None:
                raise
            raise ProviderBusy(provider.id, serving.id) from exc

        self.db.refresh(head)
        logger.info('Provider %s now serving queue entry %s.', provider.id, head.id)
        return head

    def complete(self, ctx: RequestContext, entry_id: int) -> QueueEntry:
        entry = QueueRepository.get(self.db, entry_id)
        if entry is None or not is_staff(ctx.principal, entry.provider):
            raise NotAuthorized()

        try:
            with provider_queue_lock(self.db, entry.provider_id):
                entry = QueueRepository.get(self.db, entry_id, for_update=True)
                if entry.status != QUEUE_SERVING:
                    raise InvalidTransition(entry.status, QUEUE_COMPLETED)

                entry.status = QUEUE_COMPLETED
                entry.completed_at = ctx.now
                self.db.commit()
        except StaleDataError as exc:
            raise InvalidTransition(QUEUE_SERVING, QUEUE_COMPLETED, 'The entry changed concurrently.') from exc

        self.db.refresh(entry)
        logger.info('Queue entry %s completed.', entry.id)
        return entry

    def snapshot(self, ctx: RequestContext, provider_id: int) -> QueueSnapshot:
        """Current queue for polling displays; reads only, never blocks writers."""
        provider = self._get_provider(provider_id)
        if not is_staff(ctx.principal, provider):
            raise NotAuthorized()

        def read() -> QueueSnapshot:
            service_date = local_date(provider, ctx.now)
            return QueueSnapshot(
                provider_id=provider.id,
                service_date=service_date,
                generated_at=ctx.now,
                serving=QueueRepository.serving(self.db, provider.id),
                waiting=QueueRepository.waiting(self.db, provider.id, service_date),
            )

        return retry_read(self.db, read)

    def _get_provider(self, provider_id: int) -> Provider:
        provider = ProviderRepository.get(self.db, provider_id)
        if provider is None:
            raise UnknownProvider(provider_id)
        return provider
