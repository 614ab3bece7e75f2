"""The booking engine: the only writer of appointment slots.

Every commit re-checks availability while holding the provider+day locks for
the days the interval touches, so two overlapping bookings for one provider
cannot both succeed.
"""

import logging
from datetime import date, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import retry_read
from backend.models.appointment import ACTIVE_STATUSES, STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_REQUESTED, Appointment
from backend.models.provider import Provider
from backend.models.user import ROLE_PATIENT
from backend.scheduling.availability import AvailabilityIndex, local_date, provider_zone
from backend.scheduling.context import CAPACITY_PATIENT, CAPACITY_PROVIDER, RequestContext, capacities
from backend.scheduling.errors import (
    InvalidDuration,
    InvalidTransition,
    NotAuthorized,
    SlotInPast,
    SlotMisaligned,
    SlotUnavailable,
    UnknownProvider,
)
from backend.scheduling.lifecycle import appointment_event, record_transition
from backend.scheduling.locks import days_spanned, provider_day_locks
from backend.scheduling.notifications import (
    EVENT_CONFIRMED,
    EVENT_RESCHEDULED,
    NotificationDispatcher,
    dispatch_safely,
)
from backend.scheduling.repository import AppointmentRepository, BlackoutRepository, ProviderRepository, UserRepository
from backend.scheduling.timeslots import Interval, is_aligned, iterate_slots, overlaps

logger = logging.getLogger(__name__)

RESCHEDULED_NOTE = 'rescheduled'


class BookingEngine:
    def __init__(self, db: Session, notifier: NotificationDispatcher | None = None):
        self.db = db
        self.notifier = notifier
        self.availability = AvailabilityIndex(db)

    def get_availability(self, provider_id: int, start_date: date, end_date: date) -> list[Interval]:
        def read() -> list[Interval]:
            provider = self._get_provider(provider_id)
            return self.availability.for_dates(provider, start_date, end_date)

        return retry_read(self.db, read)

    def book(
        self,
        ctx: RequestContext,
        provider_id: int,
        patient_id: int,
        start,
        duration_minutes: int,
        title: str | None = None,
        appointment_type: str | None = None,
        description: str | None = None,
    ) -> Appointment:
        requested = Interval.from_duration(start, duration_minutes)
        provider = self._get_provider(provider_id)
        self._check_granularity(provider, duration_minutes)

        if not capacities(ctx.principal, provider, patient_id):
            raise NotAuthorized()
        patient = UserRepository.get(self.db, patient_id)
        if patient is None or patient.role != ROLE_PATIENT:
            raise NotAuthorized()

        try:
            with provider_day_locks(self.db, provider.id, days_spanned(requested)):
                self._ensure_bookable(provider, requested, ctx)

                appointment = Appointment(
                    provider_id=provider.id,
                    patient_id=patient_id,
                    hospital_id=provider.hospital_id,
                    created_by=ctx.principal.user_id,
                    start_time=requested.start,
                    end_time=requested.end,
                    duration_minutes=duration_minutes,
                    status=self._initial_status(provider),
                    title=title,
                    appointment_type=appointment_type,
                    description=description,
                    late_cancellation=False,
                    created_at=ctx.now,
                )
                self.db.add(appointment)
                record_transition(self.db, appointment, None, appointment.status, ctx.principal, ctx.now)
                self.db.commit()
        except SlotUnavailable as exc:
            logger.info('Booking for provider %s at %s rejected: slot unavailable.', provider_id, requested.start)
            raise exc.with_alternatives(self.suggest_alternatives(provider, requested, ctx)) from exc

        self.db.refresh(appointment)
        logger.info(
            'Appointment %s booked for patient %s with provider %s (%s).',
            appointment.id, patient_id, provider.id, appointment.status,
        )
        if appointment.status == STATUS_CONFIRMED:
            dispatch_safely(self.notifier, appointment_event(EVENT_CONFIRMED, appointment, ctx.now))
        return appointment

    def reschedule(self, ctx: RequestContext, appointment_id: int, new_start) -> Appointment:
        """Cancel an appointment and book its replacement in one transaction.

        If the new slot cannot be booked the original is left exactly as it was.
        """
        original = AppointmentRepository.get(self.db, appointment_id)
        if original is None:
            raise NotAuthorized()
        provider = original.provider
        caps = capacities(ctx.principal, provider, original.patient_id)
        if not caps & {CAPACITY_PATIENT, CAPACITY_PROVIDER}:
            raise NotAuthorized()
        if not original.is_active:
            raise InvalidTransition(original.status, STATUS_CANCELLED)

        requested = Interval.from_duration(new_start, original.duration_minutes)
        days = days_spanned(original.interval) | days_spanned(requested)

        try:
            with provider_day_locks(self.db, provider.id, days):
                original = AppointmentRepository.get(self.db, appointment_id, for_update=True)
                previous_status = original.status
                if previous_status not in ACTIVE_STATUSES:
                    raise InvalidTransition(previous_status, STATUS_CANCELLED)

                self._ensure_bookable(provider, requested, ctx, exclude_appointment_id=original.id)

                original.status = STATUS_CANCELLED
                record_transition(
                    self.db, original, previous_status, STATUS_CANCELLED, ctx.principal, ctx.now, RESCHEDULED_NOTE,
                )

                replacement = Appointment(
                    provider_id=provider.id,
                    patient_id=original.patient_id,
                    hospital_id=original.hospital_id,
                    created_by=ctx.principal.user_id,
                    start_time=requested.start,
                    end_time=requested.end,
                    duration_minutes=original.duration_minutes,
                    status=self._initial_status(provider),
                    title=original.title,
                    appointment_type=original.appointment_type,
                    description=original.description,
                    late_cancellation=False,
                    rescheduled_from_id=original.id,
                    created_at=ctx.now,
                )
                self.db.add(replacement)
                record_transition(self.db, replacement, None, replacement.status, ctx.principal, ctx.now)
                self.db.commit()
        except SlotUnavailable as exc:
            raise exc.with_alternatives(self.suggest_alternatives(provider, requested, ctx)) from exc

        self.db.refresh(replacement)
        logger.info('Appointment %s rescheduled as %s.', appointment_id, replacement.id)
        dispatch_safely(self.notifier, appointment_event(EVENT_RESCHEDULED, replacement, ctx.now))
        if replacement.status == STATUS_CONFIRMED:
            dispatch_safely(self.notifier, appointment_event(EVENT_CONFIRMED, replacement, ctx.now))
        return replacement

    def suggest_alternatives(self, provider: Provider, requested: Interval, ctx: RequestContext) -> list[Interval]:
        """Open aligned slots of the requested length, earliest first."""
        duration_minutes = int(requested.duration.total_seconds() // 60)
        first_day = local_date(provider, requested.start)
        last_day = first_day + timedelta(days=config.ALTERNATIVE_SEARCH_DAYS - 1)

        try:
            open_intervals = self.availability.for_dates(provider, first_day, last_day)
        except SQLAlchemyError:
            logger.exception('Could not compute alternatives for provider %s.', provider.id)
            self.db.rollback()
            return []

        alternatives: list[Interval] = []
        for interval in open_intervals:
            for slot in iterate_slots(interval, provider.slot_minutes, duration_minutes, provider_zone(provider)):
                if slot.start < ctx.now:
                    continue
                alternatives.append(slot)
                if len(alternatives) >= config.ALTERNATIVE_SLOT_LIMIT:
                    return alternatives
        return alternatives

    def _ensure_bookable(
        self,
        provider: Provider,
        requested: Interval,
        ctx: RequestContext,
        exclude_appointment_id: int | None = None,
    ) -> None:
        # Conflicts are reported before alignment so a caller always learns
        # that a slot is taken, whatever else is wrong with the request.
        conflicts = AppointmentRepository.active_overlapping(
            self.db, provider.id, requested, exclude_id=exclude_appointment_id,
        )
        if conflicts:
            raise SlotUnavailable(conflicts[0].interval)

        if not is_aligned(requested.start, provider.slot_minutes, provider_zone(provider)):
            raise SlotMisaligned(f'Appointments must start on {provider.slot_minutes}-minute boundaries.')

        if requested.start < ctx.now:
            raise SlotInPast('Appointments must be scheduled in the future.')

        open_intervals = self.availability.open_intervals(
            provider, requested, exclude_appointment_id=exclude_appointment_id,
        )
        if any(interval.contains(requested) for interval in open_intervals):
            return

        for blackout in BlackoutRepository.in_window(self.db, provider.id, requested):
            if overlaps(blackout.interval, requested):
                raise SlotUnavailable(blackout.interval)
        raise SlotUnavailable(requested)

    def _get_provider(self, provider_id: int) -> Provider:
        provider = ProviderRepository.get(self.db, provider_id)
        if provider is None:
            raise UnknownProvider(provider_id)
        return provider

    @staticmethod
    def _check_granularity(provider: Provider, duration_minutes: int) -> None:
        if duration_minutes % provider.slot_minutes != 0:
            raise InvalidDuration(f'Duration must be a multiple of {provider.slot_minutes} minutes.')

    @staticmethod
    def _initial_status(provider: Provider) -> str:
        if provider.hospital is not None and provider.hospital.auto_confirm:
            return STATUS_CONFIRMED
        return STATUS_REQUESTED
