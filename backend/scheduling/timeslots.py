"""Half-open UTC time intervals and the sweeps the availability index is built on."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Iterator

from backend.scheduling.errors import InvalidDuration

def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already (SQLite drops offsets)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, order=True)
class Interval:
    """``[start, end)`` in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        start = ensure_utc(self.start)
        end = ensure_utc(self.end)
        if end <= start:
            raise InvalidDuration('Interval end must be after its start.')
        object.__setattr__(self, 'start', start)
        object.__setattr__(self, 'end', end)

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> 'Interval':
        if minutes <= 0:
            raise InvalidDuration('Duration must be a positive number of minutes.')
        return cls(start, start + timedelta(minutes=minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, other: 'Interval') -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: 'Interval') -> bool:
        return overlaps(self, other)


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def snap(moment: datetime, granularity_minutes: int, zone: tzinfo = timezone.utc) -> datetime:
    """Round ``moment`` down to the nearest slot boundary.

    Boundaries are counted from local midnight in ``zone``.
    """
    if granularity_minutes <= 0:
        raise InvalidDuration('Slot granularity must be positive.')
    step = timedelta(minutes=granularity_minutes)
    local = ensure_utc(moment).astimezone(zone)
    midnight = datetime.combine(local.date(), time.min, tzinfo=zone)
    return ensure_utc(midnight + ((local - midnight) // step) * step)


def is_aligned(moment: datetime, granularity_minutes: int, zone: tzinfo = timezone.utc) -> bool:
    return snap(moment, granularity_minutes, zone) == ensure_utc(moment)


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort, then coalesce overlapping and touching intervals in one sweep."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = Interval(merged[-1].start, interval.end)
            continue
        merged.append(interval)
    return merged


def subtract_intervals(base: Iterable[Interval], removals: Iterable[Interval]) -> list[Interval]:
    """Return ``base`` minus ``removals``, sorted and merged.

    Both sides are merged first, then walked with two cursors, so the cost is
    dominated by the sorts.
    """
    blocks = merge_intervals(base)
    cuts = merge_intervals(removals)
    result: list[Interval] = []
    first_cut = 0

    for block in blocks:
        cursor = block.start
        while first_cut < len(cuts) and cuts[first_cut].end <= cursor:
            first_cut += 1

        index = first_cut
        while index < len(cuts) and cuts[index].start < block.end:
            cut = cuts[index]
            if cut.start > cursor:
                result.append(Interval(cursor, cut.start))
            cursor = max(cursor, cut.end)
            if cursor >= block.end:
                break
            index += 1

        if cursor < block.end:
            result.append(Interval(cursor, block.end))

    return result


def clip(interval: Interval, window: Interval) -> Interval | None:
    start = max(interval.start, window.start)
    end = min(interval.end, window.end)
    if end <= start:
        return None
    return Interval(start, end)


def iterate_slots(
    interval: Interval,
    granularity_minutes: int,
    duration_minutes: int,
    zone: tzinfo = timezone.utc,
) -> Iterator[Interval]:
    """Aligned candidate slots of ``duration_minutes`` that fit inside ``interval``."""
    step = timedelta(minutes=granularity_minutes)
    length = timedelta(minutes=duration_minutes)
    current = snap(interval.start, granularity_minutes, zone)
    if current < interval.start:
        current += step

    while current + length <= interval.end:
        yield Interval(current, current + length)
        current += step
