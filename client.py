"""
HTTP client for the vacation tracker API.

Keeps the server session cookie in a requests.Session and tells listeners
about the auth changes it sees: sign-in detected on the next user check,
sign-out, refresh and settings update.
"""

import logging

import requests

from session_store import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, USER_UPDATED

logger = logging.getLogger(__name__)

_UNKNOWN = object()

__all__ = ['ClientError', 'SessionClient', 'SIGNED_IN', 'SIGNED_OUT', 'TOKEN_REFRESHED', 'USER_UPDATED']


class ClientError(Exception):

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class SessionClient:

    def __init__(self, base_url, http=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.http = http or requests.Session()
        self.timeout = timeout
        self._listeners = []
        self._user_id = _UNKNOWN

    def _request(self, method, path, **kwargs):
        kwargs.setdefault('timeout', self.timeout)
        try:
            return self.http.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as e:
            raise ClientError(f"{method} {path} failed: {e}") from e

    def _json(self, response, expected=(200,)):
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code not in expected:
            message = payload.get('error') if isinstance(payload, dict) else None
            raise ClientError(message or f"HTTP {response.status_code}", response.status_code, payload)
        return payload

    # -- auth -----------------------------------------------------------------

    def get_user(self):
        """Verified user dict, or None when the server does not recognise the session."""
        response = self._request('GET', '/api/auth/user')
        if response.status_code == 401:
            self._user_id = None
            return None
        user = self._json(response)['user']
        previous, self._user_id = self._user_id, user.get('id')
        # Signed out on the last check, signed in now
        if previous is None:
            self._emit(SIGNED_IN, {'user_id': self._user_id})
        return user

    def get_session(self):
        return self._json(self._request('GET', '/api/auth/session'))

    def signin_url(self, callback_url=None):
        params = {'callbackUrl': callback_url} if callback_url else None
        request = requests.Request('GET', f"{self.base_url}/auth/signin/google", params=params)
        return request.prepare().url

    def sign_out(self):
        self._json(self._request('POST', '/auth/signout'))
        self._user_id = None
        self._emit(SIGNED_OUT, None)

    def refresh_session(self):
        payload = self._json(self._request('POST', '/api/auth/refresh'))
        self._emit(TOKEN_REFRESHED, payload.get('session'))
        return payload

    def on_auth_state_change(self, callback):
        """Register callback(event, session). Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event, session):
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error(f"Auth listener failed on {event}: {e}")

    # -- resources ------------------------------------------------------------

    def get_settings(self):
        return self._json(self._request('GET', '/api/user/settings'))

    def update_settings(self, **settings):
        payload = self._json(self._request('PUT', '/api/user/settings', json=settings))
        self._emit(USER_UPDATED, None)
        return payload

    def list_vacations(self):
        return self._json(self._request('GET', '/api/vacations'))

    def create_vacation(self, start_date, end_date, note=None, is_half_day=False, half_day_portion=None):
        body = {
            'startDate': str(start_date),
            'endDate': str(end_date),
            'note': note,
            'isHalfDay': is_half_day,
            'halfDayPortion': half_day_portion,
        }
        return self._json(self._request('POST', '/api/vacations', json=body), expected=(201,))

    def delete_vacation(self, vacation_id):
        return self._json(self._request('DELETE', f"/api/vacations/{vacation_id}"))

    def get_holidays(self, year=None):
        params = {'year': year} if year else None
        return self._json(self._request('GET', '/api/holidays', params=params))

    def dashboard(self):
        return self._json(self._request('GET', '/dashboard', allow_redirects=False))
