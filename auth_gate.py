"""
Auth gate: runs before every request and decides between passing the request
through, redirecting to sign-in, or redirecting to the dashboard.

A short-lived counter cookie bounds consecutive sign-in redirects. Once it
reaches AUTH_REDIRECT_LIMIT the gate lets the request through (logged as a
warning) instead of redirecting again.
"""

import logging
from urllib.parse import urlencode

from flask import current_app, g, redirect, request

from session_store import get_session_store

logger = logging.getLogger(__name__)

REDIRECT_COUNT_COOKIE = 'auth_redirect_count'
AUTH_PENDING_COOKIE = 'auth_pending'
AUTH_SUCCESS_PARAM = 'auth_success'

SIGNIN_PATH = '/auth/signin'
DASHBOARD_PATH = '/dashboard'
PUBLIC_ONLY_PATHS = ('/', SIGNIN_PATH)
EXEMPT_PREFIXES = ('/static/', '/api/', '/auth/')
EXEMPT_PATHS = ('/health', '/favicon.ico')


def is_exempt(path):
    if path in PUBLIC_ONLY_PATHS:
        return False
    if path in EXEMPT_PATHS:
        return True
    return path.startswith(EXEMPT_PREFIXES)


def read_redirect_count():
    raw = request.cookies.get(REDIRECT_COUNT_COOKIE, '0')
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def signin_url_for(path, query_string=b''):
    callback = path
    if query_string:
        callback = f"{path}?{query_string.decode('utf-8', 'replace')}"
    return f"{SIGNIN_PATH}?{urlencode({'callbackUrl': callback}, safe='/')}"


def without_auth_marker(path, args):
    params = [(k, v) for k, v in args.items(multi=True) if k != AUTH_SUCCESS_PARAM]
    if not params:
        return path
    return f"{path}?{urlencode(params)}"


def _reset_counter():
    g.redirect_count = 0


def check_request():
    """before_request hook. Returns a redirect response or None to pass through."""
    path = request.path
    if is_exempt(path):
        return None

    store = get_session_store()

    # First request after a completed sign-in: drop the marker with one redirect
    if request.args.get(AUTH_SUCCESS_PARAM) and request.cookies.get(AUTH_PENDING_COOKIE):
        g.clear_auth_pending = True
        _reset_counter()
        return redirect(without_auth_marker(path, request.args))

    redirect_count = read_redirect_count()
    limit = current_app.config.get('AUTH_REDIRECT_LIMIT')
    if limit is not None and redirect_count >= limit:
        logger.warning(f"Too many auth redirects ({redirect_count}) for {path}, allowing request through")
        _reset_counter()
        return None

    try:
        user = store.get_user()
    except Exception as e:
        logger.error(f"Error in auth gate for {path}: {str(e)}")
        user = None

    if user is not None:
        if path in PUBLIC_ONLY_PATHS:
            return redirect(DASHBOARD_PATH)
        if redirect_count:
            _reset_counter()
        return None

    if path in PUBLIC_ONLY_PATHS:
        return None

    logger.info(f"No authenticated user for {path}, redirecting to sign-in")
    g.redirect_count = redirect_count + 1
    return redirect(signin_url_for(path, request.query_string))


def write_cookies(response):
    """after_request hook. Cookie writes are the last thing the gate does."""
    store = get_session_store()
    count = g.pop('redirect_count', None)
    if count is not None:
        if count:
            store.set_cookie(response, REDIRECT_COUNT_COOKIE, str(count),
                             max_age=current_app.config.get('AUTH_REDIRECT_COOKIE_MAX_AGE', 30))
        else:
            store.remove_cookie(response, REDIRECT_COUNT_COOKIE)
    if g.pop('clear_auth_pending', False):
        store.remove_cookie(response, AUTH_PENDING_COOKIE)
    return response


def init_auth_gate(app):
    app.before_request(check_request)
    app.after_request(write_cookies)
