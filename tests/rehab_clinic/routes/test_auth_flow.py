import logging

from rehab_clinic.auth.jwt_handler import decode_access_token

REGISTRATION = {
    'first_name': 'Jordan',
    'last_name': 'Lee',
    'email': 'Jordan.Lee@Example.com',
    'password': 'secret123',
}
RESET_LOGGER = 'rehab_clinic.routes.auth_routes'


def test_public_registration_creates_patient_account(client) -> None:
    response = client.post('/api/auth/register', json=REGISTRATION)

    assert response.status_code == 201
    body = response.json()
    assert body['user']['email'] == 'jordan.lee@example.com'
    assert body['user']['role'] == 'patient'
    assert decode_access_token(body['access_token'])['sub'] == str(body['user']['id'])


def test_duplicate_registration_is_rejected(client) -> None:
    client.post('/api/auth/register', json=REGISTRATION)

    response = client.post('/api/auth/register', json=REGISTRATION)

    assert response.status_code == 400
    assert response.json()['detail'] == 'User already exists with this email'


def test_staff_accounts_need_an_admin(client, admin_user, auth_headers) -> None:
    staff_registration = {**REGISTRATION, 'role': 'staff'}

    anonymous = client.post('/api/auth/register', json=staff_registration)
    by_admin = client.post('/api/auth/register', json=staff_registration, headers=auth_headers(admin_user))

    assert anonymous.status_code == 403
    assert anonymous.json()['detail'] == 'Only admins can create staff or admin accounts.'
    assert by_admin.status_code == 201
    assert by_admin.json()['user']['role'] == 'staff'


def test_short_password_is_rejected(client) -> None:
    response = client.post('/api/auth/register', json={**REGISTRATION, 'password': '123'})

    assert response.status_code == 422


def test_login_and_me(client, make_user) -> None:
    make_user(role='staff', email='staff@example.com')

    bad = client.post('/api/auth/login', json={'email': 'staff@example.com', 'password': 'wrong-password'})
    good = client.post('/api/auth/login', json={'email': ' STAFF@example.com ', 'password': 'secret123'})
    me = client.get('/api/auth/me', headers={'Authorization': f"Bearer {good.json()['access_token']}"})

    assert bad.status_code == 401
    assert bad.json()['detail'] == 'Invalid credentials'
    assert good.status_code == 200
    assert good.json()['user']['last_login'] is not None
    assert me.json()['email'] == 'staff@example.com'


def test_me_rejects_bad_token(client) -> None:
    response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})

    assert response.status_code == 401


def test_update_details_and_password(client, make_user, auth_headers) -> None:
    user = make_user(role='patient', email='patient@example.com')
    headers = auth_headers(user)

    details = client.put('/api/auth/updatedetails', json={'phone': '5551112222'}, headers=headers)
    wrong = client.put(
        '/api/auth/updatepassword',
        json={'current_password': 'nope', 'new_password': 'another123'},
        headers=headers,
    )
    changed = client.put(
        '/api/auth/updatepassword',
        json={'current_password': 'secret123', 'new_password': 'another123'},
        headers=headers,
    )
    relogin = client.post('/api/auth/login', json={'email': 'patient@example.com', 'password': 'another123'})

    assert details.json()['phone'] == '5551112222'
    assert wrong.status_code == 401
    assert wrong.json()['detail'] == 'Password is incorrect'
    assert changed.status_code == 200
    assert relogin.status_code == 200


def _logged_reset_token(caplog) -> str:
    records = [record for record in caplog.records if record.name == RESET_LOGGER and 'reset token' in record.msg]
    return records[-1].args[1]


def test_forgot_password_response_carries_no_token(client, admin_user) -> None:
    response = client.post('/api/auth/forgotpassword', json={'email': admin_user.email})

    assert response.status_code == 200
    assert response.json() == {'message': 'Password reset token sent'}


def test_password_reset_flow(client, make_user, caplog) -> None:
    caplog.set_level(logging.INFO, logger=RESET_LOGGER)
    make_user(role='patient', email='patient@example.com')

    missing = client.post('/api/auth/forgotpassword', json={'email': 'nobody@example.com'})
    client.post('/api/auth/forgotpassword', json={'email': 'patient@example.com'})
    token = _logged_reset_token(caplog)
    guessed = client.put('/api/auth/resetpassword/not-the-token', json={'password': 'fresh-pass'})
    reset = client.put(f'/api/auth/resetpassword/{token}', json={'password': 'fresh-pass'})
    reused = client.put(f'/api/auth/resetpassword/{token}', json={'password': 'fresh-pass'})
    login = client.post('/api/auth/login', json={'email': 'patient@example.com', 'password': 'fresh-pass'})

    assert missing.status_code == 404
    assert guessed.status_code == 400
    assert reset.status_code == 200
    assert reused.status_code == 400
    assert reused.json()['detail'] == 'Invalid token'
    assert login.status_code == 200


def test_account_email_cannot_take_over_a_patient_record(client, make_user, auth_headers, patient) -> None:
    intruder = make_user(role='patient', email='intruder@example.com')
    headers = auth_headers(intruder)

    before = client.get(f'/api/patients/{patient.id}', headers=headers)
    switched = client.put('/api/auth/updatedetails', json={'email': patient.email}, headers=headers)
    after = client.get(f'/api/patients/{patient.id}', headers=headers)

    assert before.status_code == 403
    assert switched.status_code == 400
    assert switched.json()['detail'] == 'This email belongs to another clinic record'
    assert after.status_code == 403


def test_account_email_cannot_take_over_a_staff_record(client, make_user, auth_headers, therapist) -> None:
    colleague = make_user(role='staff', email='colleague@example.com')

    response = client.put('/api/auth/updatedetails', json={'email': therapist.email}, headers=auth_headers(colleague))

    assert response.status_code == 400


def test_unlinked_email_change_is_allowed(client, make_user, auth_headers) -> None:
    user = make_user(role='patient', email='old@example.com')

    response = client.put('/api/auth/updatedetails', json={'email': 'new@example.com'}, headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()['email'] == 'new@example.com'


def test_logout_is_stateless(client) -> None:
    assert client.get('/api/auth/logout').json() == {'message': 'User logged out successfully'}
