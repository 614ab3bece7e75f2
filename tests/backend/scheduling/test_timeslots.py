from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from backend.scheduling.errors import InvalidDuration
from backend.scheduling.timeslots import (
    Interval,
    ensure_utc,
    is_aligned,
    iterate_slots,
    merge_intervals,
    overlaps,
    snap,
    subtract_intervals,
)
from conftest import at


def test_interval_normalizes_naive_and_offset_datetimes_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    interval = Interval(datetime(2030, 1, 7, 11, 0, tzinfo=plus_two), datetime(2030, 1, 7, 10, 0))

    assert interval.start == at(9)
    assert interval.end == at(10)
    assert interval.start.tzinfo == timezone.utc


@pytest.mark.parametrize('minutes', [0, -15])
def test_from_duration_rejects_non_positive_durations(minutes: int) -> None:
    with pytest.raises(InvalidDuration):
        Interval.from_duration(at(9), minutes)


def test_interval_rejects_end_before_start() -> None:
    with pytest.raises(InvalidDuration):
        Interval(at(10), at(9))


def test_overlaps_is_half_open() -> None:
    morning = Interval(at(9), at(10))

    assert overlaps(morning, Interval(at(9, 30), at(10, 30)))
    assert not overlaps(morning, Interval(at(10), at(11)))
    assert not overlaps(Interval(at(8), at(9)), morning)
    assert morning.overlaps(Interval(at(8), at(12)))


def test_snap_rounds_down_to_slot_boundary() -> None:
    assert snap(at(9, 44), 30) == at(9, 30)
    assert snap(at(9, 30), 30) == at(9, 30)
    assert snap(datetime(2030, 1, 7, 9, 59, 59), 15) == at(9, 45)


def test_snap_rejects_non_positive_granularity() -> None:
    with pytest.raises(InvalidDuration):
        snap(at(9), 0)


def test_is_aligned() -> None:
    assert is_aligned(at(10), 30)
    assert not is_aligned(at(10, 15), 30)
    assert is_aligned(at(10, 15), 15)


def test_merge_intervals_sorts_and_coalesces_adjacent_and_overlapping() -> None:
    merged = merge_intervals([
        Interval(at(11), at(12)),
        Interval(at(9), at(10)),
        Interval(at(10), at(10, 30)),
        Interval(at(9, 15), at(9, 45)),
    ])

    assert merged == [Interval(at(9), at(10, 30)), Interval(at(11), at(12))]
    assert merge_intervals(merged) == merged


def test_subtract_intervals_splits_blocks() -> None:
    result = subtract_intervals(
        [Interval(at(9), at(12)), Interval(at(13), at(17))],
        [Interval(at(9, 30), at(10)), Interval(at(11, 30), at(13, 30)), Interval(at(16), at(18))],
    )

    assert result == [
        Interval(at(9), at(9, 30)),
        Interval(at(10), at(11, 30)),
        Interval(at(13, 30), at(16)),
    ]


def test_subtract_intervals_removes_fully_covered_blocks() -> None:
    assert subtract_intervals([Interval(at(9), at(10))], [Interval(at(8), at(11))]) == []
    assert subtract_intervals([Interval(at(9), at(10))], []) == [Interval(at(9), at(10))]


def test_iterate_slots_yields_aligned_slots_that_fit() -> None:
    slots = list(iterate_slots(Interval(at(9, 10), at(11)), 30, 60))

    assert slots == [Interval(at(9, 30), at(10, 30)), Interval(at(10), at(11))]


def test_ensure_utc_converts_offsets() -> None:
    minus_five = timezone(timedelta(hours=-5))

    assert ensure_utc(datetime(2030, 1, 7, 4, 0, tzinfo=minus_five)) == at(9)


def test_snap_counts_boundaries_from_local_midnight() -> None:
    kolkata = ZoneInfo('Asia/Kolkata')

    # 09:10 in Kolkata is 03:40 UTC; the local hour starts at 03:30 UTC.
    assert snap(at(3, 40), 60, kolkata) == at(3, 30)
    assert is_aligned(at(3, 30), 60, kolkata)
    assert not is_aligned(at(4), 60, kolkata)


def test_iterate_slots_uses_local_boundaries() -> None:
    kathmandu = ZoneInfo('Asia/Kathmandu')

    slots = list(iterate_slots(Interval(at(3), at(5)), 60, 60, kathmandu))

    assert slots == [Interval(at(3, 15), at(4, 15))]
