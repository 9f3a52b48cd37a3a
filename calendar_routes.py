import logging

from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for
from markupsafe import escape
from sqlalchemy.exc import SQLAlchemyError

from auth import api_login_required, is_safe_url, with_query
from extensions import db
from models import GoogleToken, VacationBooking
from session_store import get_session_store
import google_calendar
from google_calendar import CalendarError, get_calendar_client

logger = logging.getLogger(__name__)

calendar = Blueprint('calendar', __name__)

REDIRECT_COOKIE = 'calendar_auth_redirect'
REDIRECT_COOKIE_MAX_AGE = 60 * 10
DEFAULT_REDIRECT = '/dashboard/calendar'

ERROR_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Google Calendar Authorization Error</title>
  <style>
    body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 2rem; }}
    .error-container {{ background-color: #f8f9fa; border-radius: 8px; padding: 2rem; }}
    h1 {{ color: #e53e3e; margin-top: 0; }}
    .btn {{ display: inline-block; padding: 0.5rem 1rem; background-color: #3182ce; color: white; border-radius: 4px; text-decoration: none; margin-right: 1rem; }}
  </style>
</head>
<body>
  <div class="error-container">
    <h1>Google Calendar Authorization Error</h1>
    <p>There was a problem with Google Calendar authorization. This is likely due to a configuration issue.</p>
    <p>Error details: <strong>{message}</strong></p>
    <p>
      <a href="/dashboard/settings" class="btn">Return to Settings</a>
      <a href="/dashboard" class="btn">Go to Dashboard</a>
    </p>
  </div>
</body>
</html>
"""


def _callback_uri():
    site_url = current_app.config.get('SITE_URL')
    if site_url:
        return f"{site_url.rstrip('/')}/api/calendar/auth/callback"
    return url_for('calendar.auth_callback', _external=True)


def _redirect_target():
    target = request.cookies.get(REDIRECT_COOKIE) or DEFAULT_REDIRECT
    if not is_safe_url(target):
        target = DEFAULT_REDIRECT
    return target


def _finish(target, **params):
    response = redirect(with_query(target, **params))
    get_session_store().remove_cookie(response, REDIRECT_COOKIE)
    return response


@calendar.route('/api/calendar/auth/authorize')
@api_login_required
def auth_authorize():
    client = get_calendar_client()
    try:
        auth_url = client.authorization_url(_callback_uri())
    except CalendarError as e:
        logger.error(f"Error building calendar authorization URL: {str(e)}")
        return redirect(url_for('calendar.auth_error', message=str(e)))

    target = request.args.get('redirect') or DEFAULT_REDIRECT
    response = redirect(auth_url)
    get_session_store().set_cookie(response, REDIRECT_COOKIE, target, max_age=REDIRECT_COOKIE_MAX_AGE)
    return response


@calendar.route('/api/calendar/auth/callback')
def auth_callback():
    target = _redirect_target()

    error = request.args.get('error')
    if error:
        logger.warning(f"Calendar authorization returned error: {error}")
        return _finish(target, error=error)

    code = request.args.get('code')
    if not code:
        return _finish(target, error='missing_code')

    user = get_session_store().get_user()
    if user is None:
        return jsonify({'error': 'Not authenticated'}), 401

    try:
        tokens = get_calendar_client().exchange_code(code, _callback_uri())
    except CalendarError as e:
        logger.error(f"Calendar token exchange failed for user {user.id}: {str(e)}")
        return _finish(target, error='token_exchange_failed', details=str(e))

    try:
        google_calendar.save_tokens(user.id, tokens)
        user.calendar_sync_enabled = True
        db.session.commit()
    except (SQLAlchemyError, KeyError) as e:
        db.session.rollback()
        logger.error(f"Error saving calendar tokens for user {user.id}: {str(e)}")
        return _finish(target, error='token_save_failed', details=str(e))

    logger.info(f"Calendar authorized for user {user.id}")
    return _finish(target, success='true')


@calendar.route('/api/calendar/auth/check')
@api_login_required
def auth_check():
    token = GoogleToken.query.filter_by(user_id=g.user.id).first()
    return jsonify({'authorized': token is not None})


@calendar.route('/api/calendar/auth/error')
def auth_error():
    message = request.args.get('message') or 'Unknown Google Calendar authorization error'
    logger.error(f"Google Calendar authorization error: {message}")
    return ERROR_PAGE.format(message=escape(message)), 200, {'Content-Type': 'text/html; charset=utf-8'}


@calendar.route('/api/auth/refresh-token', methods=['POST'])
@api_login_required
def refresh_token():
    token = GoogleToken.query.filter_by(user_id=g.user.id).first()
    if token is None:
        return jsonify({'error': 'No Google token found'}), 404
    if not token.refresh_token:
        return jsonify({'error': 'No refresh token available'}), 400

    try:
        token = google_calendar.refresh_stored_token(token)
    except CalendarError as e:
        db.session.rollback()
        logger.error(f"Error refreshing calendar token for user {g.user.id}: {str(e)}")
        return jsonify({'error': 'Failed to refresh token', 'details': str(e)}), 502

    return jsonify({
        'access_token': token.access_token,
        'expires_at': token.expires_at.isoformat(),
        'token_type': token.token_type
    })


@calendar.route('/api/calendar/sync', methods=['POST'])
@api_login_required
def toggle_sync():
    data = request.get_json(silent=True) or {}
    enabled = data.get('enabled')
    if not isinstance(enabled, bool):
        return jsonify({'error': 'enabled must be true or false'}), 400

    user = g.user
    if not enabled:
        user.calendar_sync_enabled = False
        db.session.commit()
        return jsonify({'success': True, 'enabled': False})

    if not google_calendar.get_access_token(user.id):
        return jsonify({'error': 'Google Calendar is not authorized'}), 400

    user.calendar_sync_enabled = True
    db.session.commit()
    results = google_calendar.sync_all_vacations(user.id)
    logger.info(f"Calendar sync for user {user.id}: {results}")
    return jsonify({'success': True, 'enabled': True, 'results': results})


@calendar.route('/api/calendar/sync', methods=['PATCH'])
@api_login_required
def sync_one():
    data = request.get_json(silent=True) or {}
    vacation_id = data.get('vacationId')
    if not vacation_id:
        return jsonify({'error': 'vacationId is required'}), 400

    booking = VacationBooking.query.filter_by(id=vacation_id, user_id=g.user.id).first()
    if booking is None:
        return jsonify({'error': 'Vacation not found'}), 404

    event_id = google_calendar.sync_vacation(g.user.id, booking)
    if not event_id:
        return jsonify({'error': 'Failed to sync vacation', 'details': booking.sync_error}), 502
    return jsonify({'success': True, 'eventId': event_id, 'vacation': booking.to_dict()})
