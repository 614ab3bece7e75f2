import pytest
from pydantic import ValidationError

from backend.routes.queue_routes import EnqueueRequest


def test_enqueue_request_strips_identity_fields() -> None:
    request = EnqueueRequest(national_id=' 0101990170001 ', first_name=' Ana ', last_name='Kovac')

    assert request.national_id == '0101990170001'
    assert request.first_name == 'Ana'
    assert request.priority is False


def test_enqueue_request_requires_names() -> None:
    with pytest.raises(ValidationError):
        EnqueueRequest(national_id='0101990170001', first_name='   ', last_name='Kovac')


def test_walk_in_queue_endpoints(api, clinic) -> None:
    api.act_as(clinic.doctor)
    provider_id = clinic.provider.id

    first = api.post(
        f'/queue/providers/{provider_id}/entries',
        json={'national_id': '1111', 'first_name': 'Lejla', 'last_name': 'Begic'},
    )
    urgent = api.post(
        f'/queue/providers/{provider_id}/entries',
        json={'national_id': '2222', 'first_name': 'Mirza', 'last_name': 'Delic', 'priority': True},
    )
    assert first.status_code == 201
    assert urgent.status_code == 201

    snapshot = api.get(f'/queue/providers/{provider_id}').json()
    assert [(item['id'], item['position']) for item in snapshot['waiting']] == [
        (urgent.json()['id'], 1),
        (first.json()['id'], 2),
    ]
    assert snapshot['serving'] is None

    called = api.post(f'/queue/providers/{provider_id}/call-next')
    assert called.status_code == 200
    assert called.json()['id'] == urgent.json()['id']

    assert api.post(f'/queue/providers/{provider_id}/call-next').status_code == 409

    completed = api.post(f"/queue/entries/{urgent.json()['id']}/complete")
    assert completed.json()['status'] == 'completed'
    assert api.post(f"/queue/entries/{urgent.json()['id']}/complete").status_code == 409


def test_empty_queue_is_not_found(api, clinic) -> None:
    api.act_as(clinic.admin)

    assert api.post(f'/queue/providers/{clinic.provider.id}/call-next').status_code == 404


def test_patient_cannot_view_queue(api, clinic) -> None:
    assert api.get(f'/queue/providers/{clinic.provider.id}').status_code == 403
