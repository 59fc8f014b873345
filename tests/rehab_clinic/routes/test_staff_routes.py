import pytest
from pydantic import ValidationError

from rehab_clinic.routes.staff_routes import AvailabilityRequest, StaffRequest


def _staff_payload(**overrides) -> dict:
    payload = {
        'first_name': 'Maya',
        'last_name': 'Chen',
        'role': 'Doctor',
        'specialty': 'Orthopedics',
        'email': 'maya.chen@example.com',
        'phone': '5550001111',
        'availability': [
            {'day_of_week': 'monday', 'start_time': '8:00', 'end_time': '12:00'},
            {'day_of_week': 'Monday', 'start_time': '13:00', 'end_time': '16:00'},
        ],
    }
    payload.update(overrides)
    return payload


def test_staff_request_normalizes_windows() -> None:
    request = StaffRequest(**_staff_payload())

    assert request.availability[0].day_of_week == 'Monday'
    assert request.availability[0].start_time == '08:00'


def test_clinicians_need_a_specialty() -> None:
    with pytest.raises(ValidationError):
        StaffRequest(**_staff_payload(specialty=None))


def test_admin_staff_do_not_need_a_specialty() -> None:
    assert StaffRequest(**_staff_payload(role='Admin', specialty=None)).specialty is None


def test_overlapping_windows_on_same_day_are_rejected() -> None:
    with pytest.raises(ValidationError):
        AvailabilityRequest(
            availability=[
                {'day_of_week': 'Monday', 'start_time': '09:00', 'end_time': '12:00'},
                {'day_of_week': 'Monday', 'start_time': '11:30', 'end_time': '14:00'},
            ]
        )


def test_window_end_must_follow_start() -> None:
    with pytest.raises(ValidationError):
        AvailabilityRequest(availability=[{'day_of_week': 'Friday', 'start_time': '17:00', 'end_time': '09:00'}])


def test_public_listing_hides_contact_details(client, therapist, admin_user, auth_headers) -> None:
    public = client.get('/api/staff/')
    private = client.get('/api/staff/', headers=auth_headers(admin_user))

    public_member = public.json()['data'][0]
    private_member = private.json()['data'][0]
    assert 'email' not in public_member
    assert 'availability' not in public_member
    assert public_member['available_days'] == ['Monday']
    assert private_member['email'] == 'dana.reyes@example.com'
    assert private_member['availability'] == [
        {'day_of_week': 'Monday', 'start_time': '09:00', 'end_time': '17:00'},
    ]


def test_admin_creates_staff_with_split_shift(client, admin_user, auth_headers) -> None:
    response = client.post('/api/staff/', json=_staff_payload(), headers=auth_headers(admin_user))

    assert response.status_code == 201
    assert [window['start_time'] for window in response.json()['availability']] == ['08:00', '13:00']


def test_only_admins_create_staff(client, make_user, auth_headers) -> None:
    staff_user = make_user(role='staff', email='someone@example.com')

    response = client.post('/api/staff/', json=_staff_payload(), headers=auth_headers(staff_user))

    assert response.status_code == 403


def test_staff_member_replaces_own_availability(client, therapist, make_user, auth_headers, monday) -> None:
    own_account = make_user(role='staff', email=therapist.email)

    response = client.put(
        f'/api/staff/{therapist.id}/availability',
        json={'availability': [{'day_of_week': 'Tuesday', 'start_time': '10:00', 'end_time': '14:00'}]},
        headers=auth_headers(own_account),
    )
    slots = client.get(f'/api/staff/{therapist.id}/available-slots', params={'date': monday.isoformat(), 'duration': 30})

    assert response.status_code == 200
    assert response.json()['available_days'] == ['Tuesday']
    assert slots.json()['available_slots'] == []


def test_staff_cannot_edit_colleague_availability(client, therapist, make_user, auth_headers) -> None:
    colleague = make_user(role='staff', email='colleague@example.com')

    response = client.put(
        f'/api/staff/{therapist.id}/availability',
        json={'availability': []},
        headers=auth_headers(colleague),
    )

    assert response.status_code == 403


def test_available_slots_default_to_hour_long_visits(client, therapist, book, monday) -> None:
    book(monday, '10:00', '10:45')

    response = client.get(f'/api/staff/{therapist.id}/available-slots', params={'date': monday.isoformat()})

    body = response.json()
    starts = [slot['start_time'] for slot in body['available_slots']]
    assert body['duration_minutes'] == 60
    assert starts[:2] == ['09:00', '11:00']
    assert starts[-1] == '16:00'
    assert body['existing_appointments'] == 1


def test_schedule_lists_active_bookings(client, therapist, admin_user, auth_headers, book, monday, tuesday) -> None:
    kept = book(monday, '10:00', '10:30')
    book(monday, '11:00', '11:30', status='Cancelled')

    working = client.get(f'/api/staff/{therapist.id}/schedule', params={'date': monday.isoformat()}, headers=auth_headers(admin_user))
    day_off = client.get(f'/api/staff/{therapist.id}/schedule', params={'date': tuesday.isoformat()}, headers=auth_headers(admin_user))

    assert working.json()['available'] is True
    assert [item['id'] for item in working.json()['appointments']] == [kept.id]
    assert day_off.json()['available'] is False


def test_deactivated_staff_disappear_from_public_views(client, therapist, admin_user, auth_headers) -> None:
    response = client.delete(f'/api/staff/{therapist.id}', headers=auth_headers(admin_user))

    assert response.status_code == 200
    assert client.get(f'/api/staff/{therapist.id}').status_code == 404
    assert client.get('/api/staff/').json()['total'] == 0
    assert client.get(f'/api/staff/{therapist.id}/available-slots').status_code == 404


def test_clinician_profile_edit_keeps_linked_email(client, db_session, therapist, make_user, auth_headers) -> None:
    own_account = make_user(role='staff', email=therapist.email)
    payload = _staff_payload(
        first_name='Dana',
        last_name='Reyes',
        role='Therapist',
        specialty='Physiotherapy',
        email='dana.new@example.com',
        bio='Sports injuries',
    )

    response = client.put(f'/api/staff/{therapist.id}', json=payload, headers=auth_headers(own_account))
    db_session.refresh(therapist)

    assert response.status_code == 200
    assert therapist.bio == 'Sports injuries'
    assert therapist.email == 'dana.reyes@example.com'
