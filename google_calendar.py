"""
Google Calendar access: OAuth authorization-code grant, token storage and
refresh, and one-way sync of vacation bookings as all-day events.
"""

import logging
from datetime import timedelta

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from flask import current_app

from extensions import db
from models import GoogleToken, VacationBooking, utcnow

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]
EVENT_COLOR_ID = '5'


class CalendarError(Exception):

    def __init__(self, message, code='calendar_error'):
        super().__init__(message)
        self.code = code


class GoogleCalendarClient:

    def __init__(self, client_id, client_secret, timeout=10):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(config.get('GOOGLE_CLIENT_ID', ''),
                   config.get('GOOGLE_CLIENT_SECRET', ''),
                   timeout=config.get('GOOGLE_HTTP_TIMEOUT', 10))

    @property
    def configured(self):
        return bool(self.client_id and self.client_id.strip()
                    and self.client_secret and self.client_secret.strip())

    def _session(self, redirect_uri=None, token=None):
        return OAuth2Session(
            self.client_id,
            self.client_secret,
            scope=' '.join(CALENDAR_SCOPES),
            redirect_uri=redirect_uri,
            token=token,
            token_endpoint_auth_method='client_secret_post'
        )

    def authorization_url(self, redirect_uri):
        if not self.client_id:
            raise CalendarError('Google Client ID not configured', code='not_configured')
        url, _state = self._session(redirect_uri=redirect_uri).create_authorization_url(
            AUTHORIZATION_ENDPOINT,
            access_type='offline',
            prompt='consent'
        )
        return url

    def exchange_code(self, code, redirect_uri):
        """Post the code and client credentials to the token endpoint."""
        if not self.configured:
            raise CalendarError('Google OAuth credentials missing or empty', code='not_configured')
        logger.info(f"Exchanging calendar authorization code (client id present: {bool(self.client_id)})")
        try:
            return dict(self._session(redirect_uri=redirect_uri).fetch_token(
                TOKEN_ENDPOINT, code=code, timeout=self.timeout))
        except (AuthlibBaseError, requests.RequestException, ValueError) as e:
            raise CalendarError(f"Token exchange error: {e}", code='token_exchange_failed') from e

    def refresh_access_token(self, refresh_token):
        if not refresh_token:
            raise CalendarError('Refresh token is missing', code='missing_refresh_token')
        try:
            return dict(self._session().refresh_token(
                TOKEN_ENDPOINT, refresh_token=refresh_token, timeout=self.timeout))
        except (AuthlibBaseError, requests.RequestException, ValueError) as e:
            raise CalendarError(f"Token refresh error: {e}", code='token_refresh_failed') from e

    def _authorized(self, access_token):
        return self._session(token={'access_token': access_token, 'token_type': 'Bearer'})

    def _check(self, response):
        if response.ok:
            return response.json() if response.content else {}
        try:
            message = response.json().get('error', {}).get('message') or response.reason
        except ValueError:
            message = response.reason
        raise CalendarError(f"Google Calendar API error: {message}", code='calendar_api_error')

    def insert_event(self, access_token, booking):
        try:
            response = self._authorized(access_token).post(
                EVENTS_URL, json=build_event(booking), timeout=self.timeout)
        except (AuthlibBaseError, requests.RequestException) as e:
            raise CalendarError(str(e), code='calendar_api_error') from e
        return self._check(response)['id']

    def update_event(self, access_token, event_id, booking):
        try:
            response = self._authorized(access_token).patch(
                f"{EVENTS_URL}/{requests.utils.quote(event_id, safe='')}",
                json=build_event(booking), timeout=self.timeout)
        except (AuthlibBaseError, requests.RequestException) as e:
            raise CalendarError(str(e), code='calendar_api_error') from e
        return self._check(response)['id']

    def delete_event(self, access_token, event_id):
        try:
            response = self._authorized(access_token).delete(
                f"{EVENTS_URL}/{requests.utils.quote(event_id, safe='')}", timeout=self.timeout)
        except (AuthlibBaseError, requests.RequestException) as e:
            raise CalendarError(str(e), code='calendar_api_error') from e
        if response.status_code in (404, 410):
            return True
        self._check(response)
        return True


def build_event(booking):
    # All-day events use an exclusive end date
    return {
        'summary': 'Vacation (half day)' if booking.is_half_day else 'Vacation',
        'description': booking.note or 'Time off from work',
        'start': {'date': booking.start_date.isoformat(), 'timeZone': 'UTC'},
        'end': {'date': (booking.end_date + timedelta(days=1)).isoformat(), 'timeZone': 'UTC'},
        'colorId': EVENT_COLOR_ID,
        'extendedProperties': {'private': {'vacationId': booking.id}},
    }


def get_calendar_client():
    return current_app.extensions['calendar_client']


# -- token storage ------------------------------------------------------------

def save_tokens(user_id, tokens, now=None):
    """
    Insert or update the user's token row.

    A re-authorization without a refresh token keeps the stored one.
    """
    now = now or utcnow()
    expires_at = now + timedelta(seconds=int(tokens.get('expires_in') or 3600))

    token = GoogleToken.query.filter_by(user_id=user_id).first()
    if token is None:
        token = GoogleToken(user_id=user_id)
        db.session.add(token)
    logger.info(f"Saving calendar tokens for user {user_id} (existing row: {token.id is not None})")

    token.access_token = tokens['access_token']
    if tokens.get('refresh_token'):
        token.refresh_token = tokens['refresh_token']
    token.expires_at = expires_at
    token.token_type = tokens.get('token_type') or 'Bearer'
    token.scope = tokens.get('scope') or token.scope
    token.updated_at = now
    db.session.commit()
    return token


def refresh_stored_token(token, client=None):
    client = client or get_calendar_client()
    refreshed = client.refresh_access_token(token.refresh_token)
    now = utcnow()
    token.access_token = refreshed['access_token']
    token.expires_at = now + timedelta(seconds=int(refreshed.get('expires_in') or 3600))
    if refreshed.get('refresh_token'):
        token.refresh_token = refreshed['refresh_token']
    token.updated_at = now
    db.session.commit()
    logger.info(f"Calendar token refreshed for user {token.user_id}, valid until {token.expires_at.isoformat()}")
    return token


def get_access_token(user_id, client=None):
    """Return a usable access token for the user, refreshing it when expired."""
    token = GoogleToken.query.filter_by(user_id=user_id).first()
    if token is None:
        logger.info(f"No calendar token found for user {user_id}")
        return None
    if not token.is_expired():
        return token.access_token

    logger.info(f"Calendar token expired at {token.expires_at.isoformat()}, refreshing...")
    try:
        return refresh_stored_token(token, client).access_token
    except CalendarError as e:
        db.session.rollback()
        logger.error(f"Error refreshing calendar token for user {user_id}: {e}")
        return None


# -- sync ---------------------------------------------------------------------

def sync_vacation(user_id, booking, client=None):
    """Create or update the booking's event. Returns the event id or None."""
    client = client or get_calendar_client()
    booking.last_sync_attempt = utcnow()
    try:
        access_token = get_access_token(user_id, client)
        if not access_token:
            raise CalendarError('No valid Google token found', code='not_authorized')
        if booking.google_event_id:
            event_id = client.update_event(access_token, booking.google_event_id, booking)
        else:
            event_id = client.insert_event(access_token, booking)
    except CalendarError as e:
        logger.error(f"Failed to sync vacation {booking.id} to calendar: {e}")
        booking.sync_status = 'failed'
        booking.sync_error = str(e)
        db.session.commit()
        return None

    booking.google_event_id = event_id
    booking.sync_status = 'synced'
    booking.sync_error = None
    db.session.commit()
    return event_id


def sync_all_vacations(user_id, client=None):
    pending = VacationBooking.query.filter(
        VacationBooking.user_id == user_id,
        db.or_(VacationBooking.google_event_id.is_(None), VacationBooking.sync_status == 'failed')
    ).all()

    results = {'total': len(pending), 'successful': 0, 'failed': 0}
    for booking in pending:
        if sync_vacation(user_id, booking, client):
            results['successful'] += 1
        else:
            results['failed'] += 1
    return results


def delete_vacation_event(user_id, booking, client=None):
    if not booking.google_event_id:
        return True
    client = client or get_calendar_client()
    try:
        access_token = get_access_token(user_id, client)
        if not access_token:
            return False
        return client.delete_event(access_token, booking.google_event_id)
    except CalendarError as e:
        logger.error(f"Failed to delete calendar event {booking.google_event_id}: {e}")
        return False
