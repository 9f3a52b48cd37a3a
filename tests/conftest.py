"""
Pytest configuration and shared fixtures.
"""

from urllib.parse import urlparse

import pytest
from flask import redirect

from app import create_app
from config import Config
from extensions import db
from google_calendar import CALENDAR_SCOPES, CalendarError, build_event
from models import User
from session_store import SessionStoreError


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SESSION_COOKIE_SECURE = False
    SITE_URL = 'http://localhost'
    GOOGLE_CLIENT_ID = 'test-client-id'
    GOOGLE_CLIENT_SECRET = 'test-client-secret'
    AUTH_REDIRECT_LIMIT = 3


class FakeIdentityProvider:
    """Stands in for Google sign-in. Codes map to identities."""

    name = 'google'

    def __init__(self):
        self.identities = {}

    def authorize_redirect(self, redirect_uri):
        return redirect(f"https://accounts.example.test/authorize?redirect_uri={redirect_uri}")

    def exchange_code(self, code):
        if code not in self.identities:
            raise SessionStoreError('invalid_grant', code='auth_callback_error')
        return self.identities[code]


class FakeCalendarClient:
    """Stands in for GoogleCalendarClient, recording every call."""

    configured = True

    def __init__(self):
        self.events = {}
        self.deleted = []
        self.exchanges = []
        self.refreshed = []
        self.fail_insert = False
        self.exchange_error = None

    def authorization_url(self, redirect_uri):
        return f"https://accounts.google.com/o/oauth2/v2/auth?redirect_uri={redirect_uri}"

    def exchange_code(self, code, redirect_uri):
        if self.exchange_error:
            raise CalendarError(self.exchange_error, code='token_exchange_failed')
        self.exchanges.append(code)
        return {
            'access_token': f'access-{code}',
            'refresh_token': f'refresh-{code}',
            'expires_in': 3600,
            'token_type': 'Bearer',
            'scope': ' '.join(CALENDAR_SCOPES),
        }

    def refresh_access_token(self, refresh_token):
        self.refreshed.append(refresh_token)
        return {'access_token': 'refreshed-access', 'expires_in': 3600, 'token_type': 'Bearer'}

    def insert_event(self, access_token, booking):
        if self.fail_insert:
            raise CalendarError('Google Calendar API error: backend error', code='calendar_api_error')
        event_id = f'evt-{len(self.events) + 1}'
        self.events[event_id] = build_event(booking)
        return event_id

    def update_event(self, access_token, event_id, booking):
        self.events[event_id] = build_event(booking)
        return event_id

    def delete_event(self, access_token, event_id):
        self.deleted.append(event_id)
        self.events.pop(event_id, None)
        return True


def identity(user_id='google-user-1', email='alex@example.com', **metadata):
    return {
        'id': user_id,
        'email': email,
        'name': 'Alex Example',
        'image': None,
        'metadata': metadata,
    }


def sign_in(client, identity_provider, ident=None, code=None):
    """Run the identity callback for ``ident`` and return the callback response."""
    ident = ident or identity()
    code = code or f"code-{ident['id']}"
    identity_provider.identities[code] = ident
    return client.get(f'/auth/callback?code={code}')


def location(response):
    parts = urlparse(response.headers['Location'])
    return parts.path + (f'?{parts.query}' if parts.query else '')


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def calendar_client():
    return FakeCalendarClient()


@pytest.fixture
def app(identity_provider, calendar_client):
    app = create_app(TestingConfig)
    app.extensions['session_store'].identity_provider = identity_provider
    app.extensions['calendar_client'] = calendar_client
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(app, identity_provider):
    """A test client signed in as google-user-1."""
    client = app.test_client()
    response = sign_in(client, identity_provider)
    assert response.status_code == 302
    return client


@pytest.fixture
def other_user(app):
    with app.app_context():
        db.session.add(User(id='google-user-2', email='sam@example.com', name='Sam'))
        db.session.commit()
    return 'google-user-2'
