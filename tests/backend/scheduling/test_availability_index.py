from datetime import date, time

from backend.models.appointment import STATUS_CANCELLED, STATUS_CONFIRMED, Appointment
from backend.models.provider import Blackout, Provider, WorkingHours
from backend.scheduling.availability import AvailabilityIndex, local_date, local_day_window, working_hour_intervals
from backend.scheduling.timeslots import Interval
from conftest import MONDAY, NOW, at

TUESDAY = date(2030, 1, 8)


def add_appointment(db, clinic, start, end, status=STATUS_CONFIRMED) -> Appointment:
    appointment = Appointment(
        provider_id=clinic.provider.id,
        patient_id=clinic.patient.id,
        hospital_id=clinic.hospital.id,
        start_time=start,
        end_time=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        status=status,
        late_cancellation=False,
        created_at=NOW,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_open_intervals_are_working_hours_minus_appointments_and_blackouts(db, clinic) -> None:
    add_appointment(db, clinic, at(9, 30), at(10))
    add_appointment(db, clinic, at(10), at(10, 30), status=STATUS_CANCELLED)
    db.add(Blackout(provider_id=clinic.provider.id, start_time=at(11), end_time=at(13)))
    db.commit()

    result = AvailabilityIndex(db).for_dates(clinic.provider, MONDAY, MONDAY)

    assert result == [Interval(at(9), at(9, 30)), Interval(at(10), at(11))]


def test_excluded_appointment_does_not_block(db, clinic) -> None:
    appointment = add_appointment(db, clinic, at(9), at(10))

    result = AvailabilityIndex(db).open_intervals(
        clinic.provider, Interval(at(9), at(12)), exclude_appointment_id=appointment.id,
    )

    assert result == [Interval(at(9), at(12))]


def test_provider_without_working_hours_has_no_open_time(db, clinic) -> None:
    idle = Provider(hospital_id=clinic.hospital.id, name='Dr. Idle', slot_minutes=15, timezone='UTC')
    db.add(idle)
    db.commit()

    assert AvailabilityIndex(db).for_dates(idle, MONDAY, TUESDAY) == []


def test_adjacent_windows_merge_and_days_expand(db, clinic) -> None:
    clinic.provider.working_hours.append(
        WorkingHours(weekday=MONDAY.weekday(), start_time=time(12, 0), end_time=time(13, 0)),
    )
    clinic.provider.working_hours.append(
        WorkingHours(weekday=TUESDAY.weekday(), start_time=time(14, 0), end_time=time(15, 0)),
    )
    db.commit()

    result = AvailabilityIndex(db).for_dates(clinic.provider, MONDAY, TUESDAY)

    assert result == [Interval(at(9), at(13)), Interval(at(14, day=TUESDAY), at(15, day=TUESDAY))]


def test_working_hours_follow_provider_timezone(db, clinic) -> None:
    clinic.provider.timezone = 'Europe/Sarajevo'
    db.commit()

    result = AvailabilityIndex(db).for_dates(clinic.provider, MONDAY, MONDAY)

    assert result == [Interval(at(8), at(11))]
    assert local_day_window(clinic.provider, MONDAY, MONDAY) == Interval(at(23, day=date(2030, 1, 6)), at(23))
    assert local_date(clinic.provider, at(23, 30)) == TUESDAY


def test_working_hours_are_clipped_to_window(db, clinic) -> None:
    intervals = working_hour_intervals(clinic.provider, Interval(at(10), at(11)))

    assert intervals == [Interval(at(10), at(11))]
