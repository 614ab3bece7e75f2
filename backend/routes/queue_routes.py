from datetime import date, datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_request_context
from backend.database import get_db
from backend.models.queue_entry import QueueEntry
from backend.routes.http_errors import database_unavailable, to_http_exception
from backend.scheduling.context import RequestContext
from backend.scheduling.errors import SchedulingError
from backend.scheduling.timeslots import ensure_utc
from backend.scheduling.walkin_queue import WalkInPatient, WalkInQueueManager

router = APIRouter(tags=['queue'])


class EnqueueRequest(BaseModel):
    national_id: str
    first_name: str
    last_name: str
    patient_id: int | None = None
    priority: bool = False

    @field_validator('national_id', 'first_name', 'last_name')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized


class QueueEntryResponse(BaseModel):
    id: int
    provider_id: int
    service_date: date
    patient_id: int | None = None
    national_id: str
    first_name: str
    last_name: str
    priority: bool
    status: str
    arrived_at: datetime
    called_at: datetime | None = None
    completed_at: datetime | None = None
    position: int | None = None
    version: int


class QueueSnapshotResponse(BaseModel):
    provider_id: int
    service_date: date
    generated_at: datetime
    serving: QueueEntryResponse | None = None
    waiting: list[QueueEntryResponse]


def to_queue_entry_response(entry: QueueEntry, position: int | None = None) -> QueueEntryResponse:
    return QueueEntryResponse(
        id=entry.id,
        provider_id=entry.provider_id,
        service_date=entry.service_date,
        patient_id=entry.patient_id,
        national_id=entry.national_id,
        first_name=entry.first_name,
        last_name=entry.last_name,
        priority=bool(entry.priority),
        status=entry.status,
        arrived_at=ensure_utc(entry.arrived_at),
        called_at=ensure_utc(entry.called_at) if entry.called_at else None,
        completed_at=ensure_utc(entry.completed_at) if entry.completed_at else None,
        position=position,
        version=entry.version,
    )


@router.post(
    '/providers/{provider_id}/entries',
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def enqueue_walk_in(
    provider_id: int,
    data: EnqueueRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    patient = WalkInPatient(
        national_id=data.national_id,
        first_name=data.first_name,
        last_name=data.last_name,
        patient_id=data.patient_id,
    )
    try:
        entry = WalkInQueueManager(db).enqueue(ctx, provider_id, patient, priority=data.priority)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_queue_entry_response(entry)


@router.post('/providers/{provider_id}/call-next', response_model=QueueEntryResponse)
def call_next_walk_in(
    provider_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        entry = WalkInQueueManager(db).call_next(ctx, provider_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_queue_entry_response(entry)


@router.post('/entries/{entry_id}/complete', response_model=QueueEntryResponse)
def complete_walk_in(
    entry_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        entry = WalkInQueueManager(db).complete(ctx, entry_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_queue_entry_response(entry)


@router.get('/providers/{provider_id}', response_model=QueueSnapshotResponse)
def get_queue(
    provider_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        snapshot = WalkInQueueManager(db).snapshot(ctx, provider_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return QueueSnapshotResponse(
        provider_id=snapshot.provider_id,
        service_date=snapshot.service_date,
        generated_at=snapshot.generated_at,
        serving=to_queue_entry_response(snapshot.serving) if snapshot.serving else None,
        waiting=[
            to_queue_entry_response(entry, position=index)
            for index, entry in enumerate(snapshot.waiting, start=1)
        ],
    )
