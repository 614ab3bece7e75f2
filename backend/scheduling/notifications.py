"""Fire-and-forget appointment events.

Publishing happens after the booking transaction has committed. A failing
dispatcher is logged and otherwise ignored; it never undoes a booking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)

EVENT_CONFIRMED = 'appointment.confirmed'
EVENT_CANCELLED = 'appointment.cancelled'
EVENT_RESCHEDULED = 'appointment.rescheduled'


@dataclass(frozen=True)
class AppointmentEvent:
    kind: str
    appointment_id: int
    provider_id: int
    patient_id: int
    start_time: datetime
    occurred_at: datetime


class NotificationDispatcher(Protocol):
    def publish(self, event: AppointmentEvent) -> None:
        ...


class LoggingNotificationDispatcher:
    def publish(self, event: AppointmentEvent) -> None:
        logger.info(
            'Notification %s for appointment %s (patient %s, provider %s, starts %s)',
            event.kind,
            event.appointment_id,
            event.patient_id,
            event.provider_id,
            event.start_time.isoformat(),
        )


class BackgroundTaskDispatcher:
    """Defers delivery until the HTTP response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, sink: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.sink = sink

    def publish(self, event: AppointmentEvent) -> None:
        self.background_tasks.add_task(dispatch_safely, self.sink, event)


def dispatch_safely(dispatcher: NotificationDispatcher | None, event: AppointmentEvent) -> None:
    if dispatcher is None:
        return
    try:
        dispatcher.publish(event)
    except Exception:
        logger.exception('Failed to dispatch %s for appointment %s', event.kind, event.appointment_id)
