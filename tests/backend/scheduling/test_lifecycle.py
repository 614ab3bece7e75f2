from datetime import timedelta

import pytest

from backend.models.appointment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_REJECTED,
    STATUS_REQUESTED,
    AuditTrailImmutable,
)
from backend.scheduling.booking import BookingEngine
from backend.scheduling.errors import InvalidTransition, NotAuthorized
from backend.scheduling.lifecycle import LATE_CANCELLATION_NOTE, TRANSITIONS, StatusLifecycleController
from backend.scheduling.notifications import EVENT_CANCELLED, EVENT_CONFIRMED
from backend.scheduling.repository import AppointmentQuery
from conftest import MONDAY, at, context_for


@pytest.fixture
def appointment(db, clinic):
    return BookingEngine(db).book(context_for(clinic.patient), clinic.provider.id, clinic.patient.id, at(9), 30)


def test_transition_table_only_allows_documented_moves() -> None:
    assert set(TRANSITIONS) == {
        (STATUS_REQUESTED, STATUS_CONFIRMED),
        (STATUS_REQUESTED, STATUS_REJECTED),
        (STATUS_REQUESTED, STATUS_CANCELLED),
        (STATUS_CONFIRMED, STATUS_COMPLETED),
        (STATUS_CONFIRMED, STATUS_CANCELLED),
        (STATUS_CONFIRMED, STATUS_NO_SHOW),
    }


def test_provider_confirms_and_patient_is_notified(db, clinic, appointment, dispatcher) -> None:
    confirmed = StatusLifecycleController(db, notifier=dispatcher).confirm(context_for(clinic.doctor), appointment.id)

    assert confirmed.status == STATUS_CONFIRMED
    assert confirmed.version == 2
    assert [(event.kind, event.patient_id) for event in dispatcher.events] == [(EVENT_CONFIRMED, clinic.patient.id)]

    history = StatusLifecycleController(db).history(context_for(clinic.admin), appointment.id)
    assert [(entry.from_status, entry.to_status, entry.actor_role) for entry in history] == [
        (None, STATUS_REQUESTED, 'patient'),
        (STATUS_REQUESTED, STATUS_CONFIRMED, 'doctor'),
    ]


def test_patient_cannot_confirm_own_appointment(db, clinic, appointment) -> None:
    with pytest.raises(NotAuthorized):
        StatusLifecycleController(db).confirm(context_for(clinic.patient), appointment.id)

    db.refresh(appointment)
    assert appointment.status == STATUS_REQUESTED


def test_admin_rejects_request(db, clinic, appointment) -> None:
    rejected = StatusLifecycleController(db).reject(context_for(clinic.admin), appointment.id)

    assert rejected.status == STATUS_REJECTED


def test_complete_requires_confirmation_first(db, clinic, appointment) -> None:
    with pytest.raises(InvalidTransition) as exception_info:
        StatusLifecycleController(db).complete(context_for(clinic.doctor), appointment.id)

    assert exception_info.value.current == STATUS_REQUESTED
    assert exception_info.value.target == STATUS_COMPLETED


def test_cancelling_completed_appointment_is_invalid_and_changes_nothing(db, clinic, appointment) -> None:
    controller = StatusLifecycleController(db)
    controller.confirm(context_for(clinic.doctor), appointment.id)
    controller.complete(context_for(clinic.doctor), appointment.id)

    with pytest.raises(InvalidTransition):
        controller.cancel(context_for(clinic.patient), appointment.id)

    db.refresh(appointment)
    assert appointment.status == STATUS_COMPLETED
    assert len(controller.history(context_for(clinic.patient), appointment.id)) == 3


def test_patient_cancels_early_without_flag(db, clinic, appointment, dispatcher) -> None:
    cancelled = StatusLifecycleController(db, notifier=dispatcher).cancel(context_for(clinic.patient), appointment.id)

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.late_cancellation is False
    assert [event.kind for event in dispatcher.events] == [EVENT_CANCELLED]


def test_cancellation_inside_cutoff_is_flagged(db, clinic, appointment) -> None:
    ctx = context_for(clinic.patient, now=at(8))

    cancelled = StatusLifecycleController(db).cancel(ctx, appointment.id)

    assert cancelled.late_cancellation is True
    assert cancelled.transitions[-1].note == LATE_CANCELLATION_NOTE


def test_hospital_cutoff_overrides_default(db, clinic, appointment) -> None:
    clinic.hospital.cancellation_cutoff_minutes = 30
    db.commit()

    cancelled = StatusLifecycleController(db).cancel(context_for(clinic.patient, now=at(8)), appointment.id)

    assert cancelled.late_cancellation is False


def test_admin_may_not_cancel(db, clinic, appointment) -> None:
    with pytest.raises(NotAuthorized):
        StatusLifecycleController(db).cancel(context_for(clinic.admin), appointment.id)


def test_no_show_only_after_start(db, clinic, appointment) -> None:
    controller = StatusLifecycleController(db)
    controller.confirm(context_for(clinic.doctor), appointment.id)

    with pytest.raises(InvalidTransition):
        controller.mark_no_show(context_for(clinic.doctor, now=at(8, 59)), appointment.id)

    marked = controller.mark_no_show(context_for(clinic.doctor, now=at(9, 20)), appointment.id)
    assert marked.status == STATUS_NO_SHOW


def test_unrelated_or_missing_appointment_is_not_authorized(db, clinic, appointment) -> None:
    controller = StatusLifecycleController(db)

    with pytest.raises(NotAuthorized):
        controller.confirm(context_for(clinic.other_doctor), appointment.id)
    with pytest.raises(NotAuthorized):
        controller.history(context_for(clinic.other_patient), appointment.id)
    with pytest.raises(NotAuthorized):
        controller.cancel(context_for(clinic.patient), 999)


def test_audit_records_cannot_be_modified_or_deleted(db, clinic, appointment) -> None:
    record = StatusLifecycleController(db).history(context_for(clinic.patient), appointment.id)[0]

    record.note = 'edited'
    with pytest.raises(AuditTrailImmutable):
        db.commit()
    db.rollback()

    db.delete(record)
    with pytest.raises(AuditTrailImmutable):
        db.commit()
    db.rollback()


def test_listing_is_scoped_by_role_and_tab(db, clinic, appointment) -> None:
    engine = BookingEngine(db)
    other = engine.book(context_for(clinic.other_patient), clinic.provider.id, clinic.other_patient.id, at(10), 30)
    StatusLifecycleController(db).cancel(context_for(clinic.other_patient), other.id)
    controller = StatusLifecycleController(db)

    mine = controller.list_appointments(context_for(clinic.patient), AppointmentQuery(tab='all'))
    assert [item.id for item in mine] == [appointment.id]

    doctor_view = controller.list_appointments(context_for(clinic.doctor), AppointmentQuery(tab='all'))
    assert [item.id for item in doctor_view] == [appointment.id, other.id]

    cancelled = controller.list_appointments(context_for(clinic.admin), AppointmentQuery(tab='cancelled'))
    assert [item.id for item in cancelled] == [other.id]

    pending = controller.list_appointments(context_for(clinic.admin), AppointmentQuery(tab=' Pending '))
    assert [item.id for item in pending] == [appointment.id]

    assert controller.list_appointments(context_for(clinic.other_admin), AppointmentQuery(tab='all')) == []
    assert controller.list_appointments(context_for(clinic.other_doctor), AppointmentQuery(tab='all')) == []


def test_listing_filters_by_date_and_hides_past_from_upcoming(db, clinic, appointment) -> None:
    controller = StatusLifecycleController(db)

    on_monday = controller.list_appointments(
        context_for(clinic.patient), AppointmentQuery(tab='all', on_date=MONDAY),
    )
    on_tuesday = controller.list_appointments(
        context_for(clinic.patient), AppointmentQuery(tab='all', on_date=MONDAY + timedelta(days=1)),
    )
    upcoming_later = controller.list_appointments(
        context_for(clinic.patient, now=at(10)), AppointmentQuery(),
    )

    assert [item.id for item in on_monday] == [appointment.id]
    assert on_tuesday == []
    assert upcoming_later == []
