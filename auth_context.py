"""
Client-side mirror of the server session.

AuthContext keeps ``user``, ``session``, ``is_loading`` and
``is_authenticated`` in step with the server through a SessionClient. It is
passed explicitly to whatever needs it; there is no module-level instance.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from client import ClientError, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, USER_UPDATED

logger = logging.getLogger(__name__)


def _session_user_id(session):
    if not session:
        return None
    if session.get('user_id'):
        return session['user_id']
    user = session.get('user') or {}
    return user.get('id')


class AuthContext:

    def __init__(self, client, hydration=None, init_timeout=10, dedupe_window=2.0, clock=time.monotonic):
        self.client = client
        self.hydration = hydration
        self.init_timeout = init_timeout
        self.dedupe_window = dedupe_window
        self._clock = clock

        self.user = None
        self.session = None
        self.is_loading = True
        self.is_authenticated = False

        self._lock = threading.Lock()
        self._initializing = False
        self._last_event = None
        self._last_event_at = None
        self._unsubscribe = None

    def _set(self, user, session):
        self.user = user
        self.session = session
        self.is_authenticated = user is not None

    def _clear(self):
        self._set(None, None)

    # -- initialization -------------------------------------------------------

    def _fetch_identity(self):
        # Verified user first, session second
        user = self.client.get_user()
        if user is None:
            return None, None
        payload = self.client.get_session() or {}
        return user, payload.get('session')

    def _fetch_with_timeout(self):
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            return executor.submit(self._fetch_identity).result(timeout=self.init_timeout)
        finally:
            executor.shutdown(wait=False)

    def initialize(self):
        """Resolve the current identity. Returns False if another initialization is running."""
        with self._lock:
            if self._initializing:
                return False
            self._initializing = True
            self.is_loading = True

        try:
            user, session = self._fetch_with_timeout()
            self._set(user, session)
            if user:
                logger.info(f"Auth initialized for {user.get('email')}")
            else:
                logger.info("No authenticated user found")
        except FutureTimeout:
            logger.warning(f"Auth initialization timed out after {self.init_timeout}s")
            self._clear()
        except ClientError as e:
            hydrated = self.hydration or {}
            if hydrated.get('user'):
                logger.warning(f"Auth check failed ({e}), using server-provided session")
                self._set(hydrated['user'], hydrated.get('session'))
            elif self.user is None:
                logger.error(f"Error initializing auth state: {e}")
                self._clear()
            else:
                logger.error(f"Error initializing auth state, keeping current user: {e}")
        finally:
            with self._lock:
                self._initializing = False
            self.is_loading = False
        return True

    # -- events ---------------------------------------------------------------

    def _is_duplicate(self, event, session):
        now = self._clock()
        key = (event, _session_user_id(session))
        duplicate = (
            self._last_event == key
            and self._last_event_at is not None
            and now - self._last_event_at < self.dedupe_window
        )
        if not duplicate:
            self._last_event = key
            self._last_event_at = now
        return duplicate

    def handle_auth_event(self, event, session=None):
        """Apply one auth-change event. Returns False when it was dropped as a duplicate."""
        if self._is_duplicate(event, session):
            logger.debug(f"Ignoring duplicate auth event: {event}")
            return False

        logger.info(f"Auth state changed: {event}")
        if event == SIGNED_OUT:
            self._clear()
            self.is_loading = False
        elif event == SIGNED_IN:
            with self._lock:
                in_flight = self._initializing
            if in_flight:
                logger.info("Sign-in event arrived during initialization, deferring to it")
            else:
                self.initialize()
        elif event in (TOKEN_REFRESHED, USER_UPDATED):
            self._reverify(event, session)
        return True

    def _reverify(self, event, session):
        try:
            user = self.client.get_user()
        except ClientError as e:
            logger.error(f"Error verifying user after {event}: {e}")
            if self.user is None:
                self._clear()
            return

        if user is not None:
            self._set(user, session or self.session)
        elif self.user is not None:
            logger.warning(f"{event} had no verifiable user, keeping current state")
        else:
            self._clear()

    # -- actions --------------------------------------------------------------

    def sign_in_with_google(self, callback_url=None):
        """URL the browser should open to start Google sign-in."""
        return self.client.signin_url(callback_url)

    def sign_out(self):
        self.client.sign_out()
        self._clear()

    def refresh_session(self):
        return self.client.refresh_session()

    # -- lifecycle ------------------------------------------------------------

    def mount(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.client.on_auth_state_change(self.handle_auth_event)
        self.initialize()
        return self

    def unmount(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self):
        return self.mount()

    def __exit__(self, exc_type, exc, tb):
        self.unmount()
        return False
