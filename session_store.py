"""
Session store.

Single source of truth for "who is signed in". The session lives in Flask's
signed cookie session: Flask-Login keeps the user id and we keep an auth
envelope next to it holding a timed, signed session token. Verifying a user
means checking that token and reloading the user row, not trusting the
cookie contents alone.

Auth-change notifications go out as blinker signals; Flask-Login's own
user_logged_in / user_logged_out signals double as SIGNED_IN / SIGNED_OUT.
"""

import logging
import time
from datetime import datetime, timedelta, timezone

from blinker import Namespace
from flask import current_app, request, session
from flask_login import current_user, login_user, logout_user, user_logged_in, user_logged_out
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from authlib.integrations.base_client.errors import OAuthError

from extensions import db, oauth
from models import User

logger = logging.getLogger(__name__)

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'
TOKEN_REFRESHED = 'TOKEN_REFRESHED'
USER_UPDATED = 'USER_UPDATED'

SESSION_KEY = 'auth_session'
TOKEN_SALT = 'auth-session'

_signals = Namespace()
token_refreshed = _signals.signal('token-refreshed')
user_updated = _signals.signal('user-updated')


class SessionStoreError(Exception):
    """Raised when the session store or the identity provider fails."""

    def __init__(self, message, code='session_error'):
        super().__init__(message)
        self.code = code


class GoogleIdentityProvider:
    """Google sign-in through Authlib's Flask client."""

    name = 'google'
    scopes = 'openid email profile'

    def __init__(self, app):
        self.client = oauth.register(
            name='google',
            client_id=app.config.get('GOOGLE_CLIENT_ID'),
            client_secret=app.config.get('GOOGLE_CLIENT_SECRET'),
            server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
            client_kwargs={'scope': self.scopes}
        )

    def authorize_redirect(self, redirect_uri):
        return self.client.authorize_redirect(redirect_uri)

    def exchange_code(self, code):
        # Authlib reads code and state from the current request itself
        try:
            token = self.client.authorize_access_token()
        except OAuthError as e:
            raise SessionStoreError(e.description or e.error, code='auth_callback_error') from e

        userinfo = token.get('userinfo') or self.client.userinfo(token=token)
        if not userinfo or not userinfo.get('sub'):
            raise SessionStoreError('Identity provider returned no user', code='auth_callback_error')

        return {
            'id': userinfo['sub'],
            'email': userinfo.get('email'),
            'name': userinfo.get('name'),
            'image': userinfo.get('picture'),
            'metadata': dict(userinfo),
        }


class SessionStore:

    def __init__(self, app=None, identity_provider=None):
        self.identity_provider = identity_provider
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        if self.identity_provider is None:
            self.identity_provider = GoogleIdentityProvider(app)
        app.extensions['session_store'] = self

    # -- tokens -------------------------------------------------------------

    def _serializer(self):
        return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)

    def _lifetime(self):
        return current_app.config.get('AUTH_SESSION_LIFETIME', 3600)

    def _issue_envelope(self, identity):
        issued_at = datetime.now(timezone.utc)
        envelope = {
            'user_id': identity['id'],
            'email': identity.get('email'),
            'provider': self.identity_provider.name,
            'access_token': self._serializer().dumps({'uid': identity['id']}),
            'token_type': 'bearer',
            'issued_at': issued_at.isoformat(),
            'expires_at': (issued_at + timedelta(seconds=self._lifetime())).isoformat(),
        }
        session[SESSION_KEY] = envelope
        session.permanent = True
        return envelope

    # -- reads --------------------------------------------------------------

    def get_session(self):
        """Return the cached session envelope, or None when absent or expired."""
        envelope = session.get(SESSION_KEY)
        if not envelope:
            return None
        expires_at = datetime.fromisoformat(envelope['expires_at'])
        if expires_at <= datetime.now(timezone.utc):
            return None
        return envelope

    def get_user(self):
        """
        Verified identity check.

        Validates the signed session token, matches it against the Flask-Login
        user and reloads the row. Returns None when any part is missing.
        Sessions past half their lifetime are re-issued (TOKEN_REFRESHED).
        """
        envelope = session.get(SESSION_KEY)
        if not envelope or not current_user.is_authenticated:
            return None

        try:
            payload, signed_at = self._serializer().loads(
                envelope.get('access_token', ''),
                max_age=self._lifetime(),
                return_timestamp=True
            )
        except SignatureExpired:
            logger.info("Session token expired")
            return None
        except BadSignature:
            logger.warning("Session token signature mismatch")
            return None

        if payload.get('uid') != current_user.get_id():
            logger.warning("Session token does not match the signed-in user")
            return None

        user = db.session.get(User, payload['uid'])
        if user is None:
            return None

        age = time.time() - signed_at.timestamp()
        if age > self._lifetime() / 2:
            self.refresh_session(user)
        return user

    # -- sign-in / sign-out -------------------------------------------------

    def sign_in_redirect(self, redirect_uri):
        return self.identity_provider.authorize_redirect(redirect_uri)

    def exchange_code_for_session(self, code):
        """Trade an authorization code for an identity and a session envelope."""
        if not code:
            raise SessionStoreError('No authorization code provided', code='missing_code')
        identity = self.identity_provider.exchange_code(code)
        self._issue_envelope(identity)
        return identity

    def establish(self, user):
        login_user(user)
        if self.get_session() is None:
            self._issue_envelope({'id': user.id, 'email': user.email})

    def sign_out(self):
        session.pop(SESSION_KEY, None)
        if current_user.is_authenticated:
            logout_user()

    def refresh_session(self, user=None):
        user = user or current_user._get_current_object()
        envelope = self._issue_envelope({'id': user.id, 'email': user.email})
        token_refreshed.send(current_app._get_current_object(), user=user)
        return envelope

    def notify_user_updated(self, user):
        user_updated.send(current_app._get_current_object(), user=user)

    # -- subscriptions ------------------------------------------------------

    def on_auth_state_change(self, callback):
        """
        Subscribe to auth-change events as callback(event, user).

        Returns a function that removes the subscription.
        """
        def on_signed_in(sender, user=None, **extra):
            callback(SIGNED_IN, user)

        def on_signed_out(sender, user=None, **extra):
            callback(SIGNED_OUT, user)

        def on_token_refreshed(sender, user=None, **extra):
            callback(TOKEN_REFRESHED, user)

        def on_user_updated(sender, user=None, **extra):
            callback(USER_UPDATED, user)

        pairs = [
            (user_logged_in, on_signed_in),
            (user_logged_out, on_signed_out),
            (token_refreshed, on_token_refreshed),
            (user_updated, on_user_updated),
        ]
        for signal, receiver in pairs:
            signal.connect(receiver, weak=False)

        def unsubscribe():
            for signal, receiver in pairs:
                signal.disconnect(receiver)

        return unsubscribe

    # -- cookies ------------------------------------------------------------

    def get_cookie(self, name, default=None):
        return request.cookies.get(name, default)

    def set_cookie(self, response, name, value, max_age, httponly=True):
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path='/',
            httponly=httponly,
            secure=current_app.config.get('SESSION_COOKIE_SECURE', False),
            samesite='Lax'
        )
        return response

    def remove_cookie(self, response, name):
        response.set_cookie(name, '', max_age=0, path='/')
        return response


def get_session_store():
    return current_app.extensions['session_store']
