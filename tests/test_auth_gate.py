from urllib.parse import parse_qs, urlparse

from auth_gate import AUTH_PENDING_COOKIE, REDIRECT_COUNT_COOKIE, is_exempt, signin_url_for
from conftest import location, sign_in


def test_protected_path_redirects_to_signin_with_callback(client):
    response = client.get('/dashboard')
    assert response.status_code == 302
    assert location(response) == '/auth/signin?callbackUrl=/dashboard'


def test_callback_keeps_original_query(client):
    response = client.get('/dashboard/calendar?month=3&view=week')
    query = parse_qs(urlparse(response.headers['Location']).query)
    assert query['callbackUrl'] == ['/dashboard/calendar?month=3&view=week']


def test_public_only_path_with_session_goes_to_dashboard(auth_client):
    for path in ('/', '/auth/signin'):
        response = auth_client.get(path)
        assert response.status_code == 302
        assert location(response) == '/dashboard'


def test_public_only_path_without_session_passes(client):
    assert client.get('/').status_code == 200
    assert client.get('/auth/signin').status_code == 200


def test_exempt_paths_skip_the_gate(client):
    assert client.get('/health').status_code == 200
    response = client.get('/api/vacations')
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Unauthorized'}


def test_fourth_consecutive_redirect_passes_through(client, caplog):
    statuses = [client.get('/dashboard').status_code for _ in range(4)]
    assert statuses[:3] == [302, 302, 302]
    # Let through to the handler, which answers for itself
    assert statuses[3] == 401
    assert 'Too many auth redirects' in caplog.text


def test_counter_resets_after_pass_through(client):
    for _ in range(4):
        client.get('/dashboard')
    assert client.get('/dashboard').status_code == 302


def test_non_integer_counter_is_treated_as_zero(client):
    client.set_cookie(REDIRECT_COUNT_COOKIE, 'not-a-number')
    response = client.get('/dashboard')
    assert response.status_code == 302
    assert 'auth_redirect_count=1' in ' '.join(response.headers.getlist('Set-Cookie'))


def test_counter_cookie_is_short_lived(client):
    response = client.get('/dashboard')
    cookie = next(c for c in response.headers.getlist('Set-Cookie') if c.startswith(REDIRECT_COUNT_COOKIE))
    assert 'Max-Age=30' in cookie
    assert 'HttpOnly' in cookie


def test_disabled_limit_always_redirects(app, client):
    app.config['AUTH_REDIRECT_LIMIT'] = None
    statuses = [client.get('/dashboard').status_code for _ in range(6)]
    assert statuses == [302] * 6


def test_session_check_failure_fails_closed(app, client, monkeypatch):
    store = app.extensions['session_store']

    def broken():
        raise RuntimeError('session backend down')

    monkeypatch.setattr(store, 'get_user', broken)
    response = client.get('/dashboard')
    assert response.status_code == 302
    assert location(response).startswith('/auth/signin')


def test_bare_auth_success_marker_is_ignored(client):
    response = client.get('/dashboard?auth_success=true')
    assert response.status_code == 302
    assert location(response).startswith('/auth/signin')


def test_sign_in_round_trip_lands_on_dashboard(client, identity_provider):
    first = client.get('/dashboard')
    assert location(first) == '/auth/signin?callbackUrl=/dashboard'

    start = client.get('/auth/signin/google?callbackUrl=/dashboard')
    assert start.status_code == 302
    assert start.headers['Location'].startswith('https://accounts.example.test/authorize')

    callback = sign_in(client, identity_provider)
    assert location(callback) == '/dashboard?auth_success=true'
    assert f'{AUTH_PENDING_COOKIE}=1' in ' '.join(callback.headers.getlist('Set-Cookie'))

    landing = client.get('/dashboard?auth_success=true')
    assert landing.status_code == 302
    assert location(landing) == '/dashboard'
    # The pending cookie is single use
    assert any(c.startswith(f'{AUTH_PENDING_COOKIE}=;') for c in landing.headers.getlist('Set-Cookie'))

    dashboard = client.get('/dashboard')
    assert dashboard.status_code == 200
    assert dashboard.get_json()['user']['email'] == 'alex@example.com'


def test_auth_marker_is_stripped_and_other_params_kept(client, identity_provider):
    sign_in(client, identity_provider, code='code-2')
    response = client.get('/dashboard?month=3&auth_success=true&view=week')
    assert response.status_code == 302
    assert location(response) == '/dashboard?month=3&view=week'
    # Without the pending cookie the marker is an ordinary parameter again
    again = client.get('/dashboard?auth_success=true')
    assert again.status_code == 200


def test_signed_in_user_resets_counter(app, identity_provider):
    client = app.test_client()
    client.get('/dashboard')
    client.get('/dashboard')
    sign_in(client, identity_provider)
    response = client.get('/dashboard')
    assert response.status_code == 200
    assert any(c.startswith(f'{REDIRECT_COUNT_COOKIE}=;') for c in response.headers.getlist('Set-Cookie'))


def test_exemption_rules():
    assert is_exempt('/static/app.css')
    assert is_exempt('/auth/callback')
    assert is_exempt('/api/holidays')
    assert is_exempt('/health')
    assert not is_exempt('/auth/signin')
    assert not is_exempt('/')
    assert not is_exempt('/dashboard')


def test_signin_url_for_plain_path():
    assert signin_url_for('/dashboard/settings') == '/auth/signin?callbackUrl=/dashboard/settings'
