"""Open intervals per provider, derived on every read and never stored.

Open time is the provider's weekly working hours, expanded for each local day
of the requested range, minus active appointments and minus blackouts.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from backend.models.provider import Provider
from backend.scheduling.repository import AppointmentRepository, BlackoutRepository
from backend.scheduling.timeslots import Interval, clip, merge_intervals, subtract_intervals


def provider_zone(provider: Provider) -> tzinfo:
    name = provider.timezone or 'UTC'
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def local_date(provider: Provider, moment: datetime) -> date:
    return moment.astimezone(provider_zone(provider)).date()


def local_day_window(provider: Provider, start_date: date, end_date: date) -> Interval:
    """UTC interval covering local midnight of ``start_date`` to the end of ``end_date``."""
    zone = provider_zone(provider)
    start = datetime.combine(start_date, time.min, tzinfo=zone)
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=zone)
    return Interval(start, end)


def working_hour_intervals(provider: Provider, window: Interval) -> list[Interval]:
    windows_by_weekday: dict[int, list] = {}
    for hours in provider.working_hours:
        windows_by_weekday.setdefault(hours.weekday, []).append(hours)
    if not windows_by_weekday:
        return []

    zone = provider_zone(provider)
    # One day of slack on each side: local days can straddle the UTC window.
    day = window.start.astimezone(zone).date() - timedelta(days=1)
    last_day = window.end.astimezone(zone).date() + timedelta(days=1)

    intervals: list[Interval] = []
    while day <= last_day:
        for hours in windows_by_weekday.get(day.weekday(), ()):
            if hours.end_time <= hours.start_time:
                continue
            opening = Interval(
                datetime.combine(day, hours.start_time, tzinfo=zone),
                datetime.combine(day, hours.end_time, tzinfo=zone),
            )
            clipped = clip(opening, window)
            if clipped is not None:
                intervals.append(clipped)
        day += timedelta(days=1)

    return merge_intervals(intervals)


class AvailabilityIndex:
    def __init__(self, db: Session):
        self.db = db

    def open_intervals(
        self,
        provider: Provider,
        window: Interval,
        exclude_appointment_id: int | None = None,
    ) -> list[Interval]:
        """Open time for ``provider`` inside ``window``.

        Sorted, non-overlapping and merged. A provider without working hours
        has no open time at all.
        """
        working = working_hour_intervals(provider, window)
        if not working:
            return []

        busy = [
            appointment.interval
            for appointment in AppointmentRepository.active_overlapping(
                self.db, provider.id, window, exclude_id=exclude_appointment_id,
            )
        ]
        busy.extend(blackout.interval for blackout in BlackoutRepository.in_window(self.db, provider.id, window))

        return subtract_intervals(working, busy)

    def for_dates(self, provider: Provider, start_date: date, end_date: date) -> list[Interval]:
        return self.open_intervals(provider, local_day_window(provider, start_date, end_date))
