import pytest
import requests

from client import ClientError, SessionClient, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED


class StubResponse:

    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError('No JSON body')
        return self.payload


class StubHTTP:

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses[(method, url)]
        if isinstance(response, Exception):
            raise response
        return response


BASE = 'http://vacations.test'


def test_get_user_returns_none_on_401():
    http = StubHTTP({('GET', f'{BASE}/api/auth/user'): StubResponse(401, {'error': 'Unauthorized'})})
    assert SessionClient(BASE, http=http).get_user() is None


def test_requests_carry_timeout():
    http = StubHTTP({('GET', f'{BASE}/api/auth/user'): StubResponse(200, {'user': {'id': 'u'}})})
    SessionClient(BASE + '/', http=http, timeout=3).get_user()
    assert http.calls[0][2]['timeout'] == 3


def test_server_error_raises_client_error():
    http = StubHTTP({('GET', f'{BASE}/api/auth/user'): StubResponse(500, {'error': 'Internal server error'})})
    with pytest.raises(ClientError) as info:
        SessionClient(BASE, http=http).get_user()
    assert info.value.status_code == 500
    assert str(info.value) == 'Internal server error'


def test_network_failure_raises_client_error():
    http = StubHTTP({('GET', f'{BASE}/api/auth/session'): requests.ConnectionError('refused')})
    with pytest.raises(ClientError):
        SessionClient(BASE, http=http).get_session()


def test_sign_out_and_refresh_notify_listeners():
    http = StubHTTP({
        ('POST', f'{BASE}/auth/signout'): StubResponse(200, {'success': True}),
        ('POST', f'{BASE}/api/auth/refresh'): StubResponse(200, {'session': {'user_id': 'u'}}),
    })
    client = SessionClient(BASE, http=http)
    events = []
    unsubscribe = client.on_auth_state_change(lambda event, session: events.append((event, session)))

    client.refresh_session()
    client.sign_out()
    unsubscribe()
    client.sign_out()

    assert events == [(TOKEN_REFRESHED, {'user_id': 'u'}), (SIGNED_OUT, None)]


def test_failing_listener_does_not_stop_others():
    http = StubHTTP({('POST', f'{BASE}/auth/signout'): StubResponse(200, {'success': True})})
    client = SessionClient(BASE, http=http)
    seen = []

    def broken(event, session):
        raise RuntimeError('listener bug')

    client.on_auth_state_change(broken)
    client.on_auth_state_change(lambda event, session: seen.append(event))
    client.sign_out()
    assert seen == [SIGNED_OUT]


def test_create_vacation_payload():
    http = StubHTTP({('POST', f'{BASE}/api/vacations'): StubResponse(201, {'id': 'b-1'})})
    SessionClient(BASE, http=http).create_vacation('2026-07-06', '2026-07-06', is_half_day=True,
                                                   half_day_portion='AM')
    assert http.calls[0][2]['json'] == {
        'startDate': '2026-07-06',
        'endDate': '2026-07-06',
        'note': None,
        'isHalfDay': True,
        'halfDayPortion': 'AM',
    }


def test_user_appearing_after_signed_out_check_emits_signed_in():
    url = f'{BASE}/api/auth/user'
    http = StubHTTP({('GET', url): StubResponse(401, {'error': 'Unauthorized'})})
    client = SessionClient(BASE, http=http)
    events = []
    client.on_auth_state_change(lambda event, session: events.append((event, session)))

    assert client.get_user() is None
    http.responses[('GET', url)] = StubResponse(200, {'user': {'id': 'u'}})
    client.get_user()
    client.get_user()

    assert events == [(SIGNED_IN, {'user_id': 'u'})]


def test_first_user_check_does_not_emit_signed_in():
    http = StubHTTP({('GET', f'{BASE}/api/auth/user'): StubResponse(200, {'user': {'id': 'u'}})})
    client = SessionClient(BASE, http=http)
    events = []
    client.on_auth_state_change(lambda event, session: events.append(event))
    client.get_user()
    assert events == []
