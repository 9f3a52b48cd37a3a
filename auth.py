import logging
from functools import wraps
from urllib.parse import urlencode, urljoin, urlparse, parse_qsl, urlunparse

from flask import Blueprint, current_app, redirect, url_for, request, jsonify, session, g
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import User, EMPLOYMENT_TYPES, PROVINCES, WEEK_START_DAYS
from session_store import SessionStoreError, get_session_store
from auth_gate import AUTH_PENDING_COOKIE, AUTH_SUCCESS_PARAM, DASHBOARD_PATH, SIGNIN_PATH

logger = logging.getLogger(__name__)

auth = Blueprint('auth', __name__)

CALLBACK_URL_KEY = 'auth_callback_url'
AUTH_PENDING_MAX_AGE = 120

SIGNIN_ERRORS = {
    'auth_callback_error': 'We could not complete sign-in with Google. Please try again.',
    'session_not_established': 'Your session could not be started. Please try again.',
    'user_record_failed': 'We could not set up your account. Please try again.',
    'unexpected': 'Something went wrong while signing you in.',
    'access_denied': 'Google sign-in was cancelled.',
}


def is_safe_url(target):
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ('http',
                               'https') and ref_url.netloc == test_url.netloc


def with_query(url, **params):
    """Return ``url`` with ``params`` merged into its query string."""
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunparse(parts._replace(query=urlencode(query)))


def api_login_required(view):
    """Resolve the verified user for a JSON endpoint, answering 401 without one."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        try:
            user = get_session_store().get_user()
        except Exception as e:
            logger.error(f"Error verifying user for {request.path}: {str(e)}")
            user = None
        if user is None:
            return jsonify({'error': 'Unauthorized'}), 401
        g.user = user
        return view(*args, **kwargs)
    return wrapped


def _metadata_value(metadata, key, allowed=None):
    value = metadata.get(key)
    if value is None:
        return None
    if allowed is not None and value not in allowed:
        return None
    return value


def ensure_user_record(identity):
    """
    Create the local user row for an identity, or refresh its profile fields.

    Settings found in the provider metadata seed a new row; an existing row
    keeps its settings.
    """
    metadata = identity.get('metadata') or {}
    user = db.session.get(User, identity['id'])

    if user is None:
        user = User(id=identity['id'], email=identity.get('email'))
        province = _metadata_value(metadata, 'province', PROVINCES)
        employment_type = _metadata_value(metadata, 'employment_type', EMPLOYMENT_TYPES)
        week_starts_on = _metadata_value(metadata, 'week_starts_on', WEEK_START_DAYS)
        total_days = metadata.get('total_vacation_days')
        user.province = province or current_app.config.get('DEFAULT_PROVINCE', 'ON')
        user.employment_type = employment_type or 'standard'
        user.week_starts_on = week_starts_on or 'sunday'
        user.total_vacation_days = total_days if isinstance(total_days, int) and 0 <= total_days <= 365 \
            else current_app.config.get('DEFAULT_VACATION_DAYS', 14)
        db.session.add(user)
        logger.info(f"Creating user record for {identity['id']}")

    user.email = identity.get('email') or user.email
    user.name = identity.get('name') or user.name
    user.image = identity.get('image') or user.image
    db.session.commit()
    return user


@auth.route('/auth/signin')
def signin():
    callback_url = request.args.get('callbackUrl') or DASHBOARD_PATH
    error = request.args.get('error')
    return jsonify({
        'signin_url': url_for('auth.signin_google', callbackUrl=callback_url),
        'callbackUrl': callback_url,
        'error': error,
        'message': SIGNIN_ERRORS.get(error, 'Sign-in failed.') if error else None
    })


@auth.route('/auth/signin/google')
def signin_google():
    callback_url = request.args.get('callbackUrl')
    if not callback_url or not is_safe_url(callback_url):
        callback_url = DASHBOARD_PATH
    session[CALLBACK_URL_KEY] = callback_url
    return get_session_store().sign_in_redirect(url_for('auth.callback', _external=True))


@auth.route('/auth/callback')
def callback():
    error = request.args.get('error')
    if error:
        logger.warning(f"Identity provider returned error: {error}")
        return redirect(with_query(SIGNIN_PATH, error=error))

    code = request.args.get('code')
    if not code:
        return redirect(SIGNIN_PATH)

    store = get_session_store()
    try:
        try:
            identity = store.exchange_code_for_session(code)
        except SessionStoreError as e:
            logger.error(f"Error exchanging code for session: {str(e)}")
            return redirect(with_query(SIGNIN_PATH, error='auth_callback_error'))

        if store.get_session() is None:
            logger.warning("Session not established after code exchange")
            return redirect(with_query(SIGNIN_PATH, error='session_not_established'))

        try:
            user = ensure_user_record(identity)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error ensuring user record: {str(e)}")
            store.sign_out()
            return redirect(with_query(SIGNIN_PATH, error='user_record_failed'))

        store.establish(user)
        logger.info(f"Auth successful, session established for user: {user.email}")

        callback_url = session.pop(CALLBACK_URL_KEY, None) or request.args.get('callbackUrl')
        if not callback_url or not is_safe_url(callback_url):
            callback_url = DASHBOARD_PATH
        response = redirect(with_query(callback_url, **{AUTH_SUCCESS_PARAM: 'true'}))
        store.set_cookie(response, AUTH_PENDING_COOKIE, '1', max_age=AUTH_PENDING_MAX_AGE)
        return response
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unexpected error in auth callback: {str(e)}")
        return redirect(with_query(SIGNIN_PATH, error='unexpected'))


@auth.route('/auth/signout', methods=['GET', 'POST'])
def signout():
    get_session_store().sign_out()
    if request.method == 'POST':
        return jsonify({'success': True})
    return redirect('/')


def public_session(envelope):
    if envelope is None:
        return None
    return {k: v for k, v in envelope.items() if k != 'access_token'}


@auth.route('/api/auth/user')
@api_login_required
def current_user_info():
    return jsonify({'user': g.user.to_dict()})


@auth.route('/api/auth/session')
def current_session():
    store = get_session_store()
    user = store.get_user()
    envelope = store.get_session() if user is not None else None
    return jsonify({
        'session': public_session(envelope),
        'user': user.to_dict() if user is not None else None
    })


@auth.route('/api/auth/refresh', methods=['POST'])
@api_login_required
def refresh():
    envelope = get_session_store().refresh_session(g.user)
    return jsonify({'session': public_session(envelope), 'user': g.user.to_dict()})
