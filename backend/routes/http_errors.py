from fastapi import HTTPException, status

from backend.scheduling.errors import (
    InvalidDuration,
    InvalidTransition,
    NotAuthorized,
    ProviderBusy,
    QueueEmpty,
    SchedulingError,
    SlotInPast,
    SlotMisaligned,
    SlotUnavailable,
    UnknownProvider,
)
from backend.scheduling.timeslots import Interval

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

STATUS_CODES = {
    InvalidDuration: status.HTTP_400_BAD_REQUEST,
    SlotMisaligned: status.HTTP_400_BAD_REQUEST,
    SlotInPast: status.HTTP_400_BAD_REQUEST,
    SlotUnavailable: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    ProviderBusy: status.HTTP_409_CONFLICT,
    QueueEmpty: status.HTTP_404_NOT_FOUND,
    UnknownProvider: status.HTTP_404_NOT_FOUND,
    NotAuthorized: status.HTTP_403_FORBIDDEN,
}


def interval_payload(interval: Interval) -> dict:
    return {'start_time': interval.start.isoformat(), 'end_time': interval.end.isoformat()}


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, SlotUnavailable):
        return HTTPException(
            status_code=status_code,
            detail={
                'message': 'This time is not available.',
                'conflict': interval_payload(exc.conflict),
                'alternatives': [interval_payload(alternative) for alternative in exc.alternatives],
            },
        )

    return HTTPException(status_code=status_code, detail=str(exc))


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )
