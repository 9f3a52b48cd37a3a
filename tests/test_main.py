from datetime import date, timedelta

import pytest

from extensions import db
from models import Holiday
from session_store import USER_UPDATED


def test_health(client):
    data = client.get('/health').get_json()
    assert data == {'status': 'ok', 'database_connected': True}


def test_user_profile(auth_client):
    data = auth_client.get('/api/user').get_json()
    assert data['email'] == 'alex@example.com'
    assert data['province'] == 'ON'
    assert data['total_vacation_days'] == 14


def test_settings_defaults(auth_client):
    assert auth_client.get('/api/user/settings').get_json() == {
        'total_vacation_days': 14,
        'province': 'ON',
        'employment_type': 'standard',
        'week_starts_on': 'sunday',
        'calendar_sync_enabled': False,
    }


def test_update_settings_emits_user_updated(app, auth_client):
    events = []
    unsubscribe = app.extensions['session_store'].on_auth_state_change(
        lambda event, user: events.append((event, user.province)))
    try:
        response = auth_client.put('/api/user/settings', json={
            'total_vacation_days': 20, 'province': 'bc', 'week_starts_on': 'monday'
        })
    finally:
        unsubscribe()

    assert response.status_code == 200
    data = response.get_json()
    assert data['total_vacation_days'] == 20
    assert data['province'] == 'BC'
    assert data['week_starts_on'] == 'monday'
    assert events == [(USER_UPDATED, 'BC')]


@pytest.mark.parametrize('body, field', [
    ({'total_vacation_days': 366}, 'total_vacation_days'),
    ({'total_vacation_days': -1}, 'total_vacation_days'),
    ({'total_vacation_days': '10'}, 'total_vacation_days'),
    ({'total_vacation_days': True}, 'total_vacation_days'),
    ({'province': 'ZZ'}, 'province'),
    ({'employment_type': 'contractor'}, 'employment_type'),
    ({'week_starts_on': 'friday'}, 'week_starts_on'),
])
def test_update_settings_validation(auth_client, body, field):
    response = auth_client.put('/api/user/settings', json=body)
    assert response.status_code == 400
    assert field in response.get_json()['errors']
    # Nothing is written on a rejected update
    assert auth_client.get('/api/user/settings').get_json()['total_vacation_days'] == 14


def test_update_settings_requires_body(auth_client):
    assert auth_client.put('/api/user/settings', json={}).status_code == 400


def test_dashboard_stats(app, auth_client):
    year = date.today().year
    # First full Monday-to-Friday week of March
    monday = date(year, 3, 1) + timedelta(days=(7 - date(year, 3, 1).weekday()) % 7)
    with app.app_context():
        db.session.add(Holiday(date=monday, name='Test Holiday', province='ON', type='provincial'))
        db.session.add(Holiday(date=monday + timedelta(days=1), name='Elsewhere', province='BC',
                               type='provincial'))
        db.session.commit()

    auth_client.post('/api/vacations', json={
        'startDate': monday.isoformat(), 'endDate': (monday + timedelta(days=6)).isoformat()
    })
    data = auth_client.get('/dashboard').get_json()

    # Five weekdays, one of them an Ontario holiday
    assert data['stats'] == {'used': 4, 'remaining': 10, 'total': 14}
    assert data['user']['id'] == 'google-user-1'


def test_dashboard_lists_upcoming_bookings(auth_client):
    start = date.today() + timedelta(days=30)
    auth_client.post('/api/vacations', json={'startDate': start.isoformat(), 'endDate': start.isoformat()})
    data = auth_client.get('/dashboard').get_json()
    assert [b['start_date'] for b in data['upcoming']] == [start.isoformat()]


def test_unknown_route_returns_json_404(auth_client):
    response = auth_client.get('/api/does-not-exist')
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Not found'
