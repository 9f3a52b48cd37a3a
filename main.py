from datetime import date
import logging

from flask import Blueprint, jsonify, request, g

from auth import api_login_required
from auth_gate import SIGNIN_PATH
from extensions import db
from models import EMPLOYMENT_TYPES, PROVINCES, WEEK_START_DAYS
from session_store import get_session_store
import holiday_service
import vacations
from holiday_service import HolidayServiceError
from vacations import VacationServiceError

logger = logging.getLogger(__name__)

main = Blueprint('main', __name__)


def _error(e):
    return jsonify({'error': e.message, 'code': e.code}), e.status_code


def _year_arg(value):
    if value is None or value == '':
        return date.today().year
    year = int(value)
    if year < 1900 or year > 2200:
        raise ValueError(year)
    return year


@main.route('/health')
def health():
    status = {"status": "ok"}
    try:
        db.session.execute(db.text('SELECT 1'))
        status["database_connected"] = True
    except Exception as e:
        status["status"] = "degraded"
        status["database_connected"] = False
        status["database_error"] = str(e)
        return jsonify(status), 503
    return jsonify(status)


@main.route('/')
def index():
    return jsonify({'name': 'Vacation Tracker', 'signin_url': SIGNIN_PATH})


@main.route('/dashboard')
def dashboard():
    user = get_session_store().get_user()
    if user is None:
        return jsonify({'error': 'Unauthorized', 'signin_url': SIGNIN_PATH}), 401

    upcoming = vacations.get_upcoming_bookings(user.id)
    return jsonify({
        'user': user.to_dict(),
        'stats': vacations.vacation_stats_for_user(user),
        'upcoming': [b.to_dict() for b in upcoming]
    })


# -- vacations ----------------------------------------------------------------

def _booking_args(data, booking=None):
    """Booking fields from a request body. With ``booking``, omitted fields keep their stored values."""
    def given(key):
        return booking is None or key in data

    if given('startDate'):
        start_date = vacations.parse_date(data.get('startDate'), 'startDate')
    else:
        start_date = booking.start_date
    if given('endDate'):
        end_date = vacations.parse_date(data.get('endDate'), 'endDate')
    else:
        end_date = booking.end_date
    if given('note'):
        note = data.get('note') or None
    else:
        note = booking.note

    if given('isHalfDay'):
        is_half_day = data.get('isHalfDay', False)
        if is_half_day is None:
            is_half_day = False
        if not isinstance(is_half_day, bool):
            raise VacationServiceError('isHalfDay must be true or false', vacations.VALIDATION_ERROR)
    else:
        is_half_day = booking.is_half_day

    if given('halfDayPortion'):
        half_day_portion = data.get('halfDayPortion') or None
    else:
        # Turning a half day into a full booking drops the stored portion
        half_day_portion = booking.half_day_portion if is_half_day else None

    return {
        'start_date': start_date,
        'end_date': end_date,
        'note': note,
        'is_half_day': is_half_day,
        'half_day_portion': half_day_portion,
    }


@main.route('/api/vacations', methods=['GET'])
@api_login_required
def get_vacations():
    return jsonify([b.to_dict() for b in vacations.get_user_bookings(g.user.id)])


@main.route('/api/vacations', methods=['POST'])
@api_login_required
def create_vacation():
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({'error': 'Request body is required'}), 400
    try:
        booking = vacations.create_booking(g.user, **_booking_args(data))
    except VacationServiceError as e:
        return _error(e)
    return jsonify(booking.to_dict()), 201


@main.route('/api/vacations/<vacation_id>', methods=['PUT'])
@api_login_required
def update_vacation(vacation_id):
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({'error': 'Request body is required'}), 400
    try:
        booking = vacations.get_owned_booking(g.user, vacation_id)
        booking = vacations.update_booking(g.user, booking, **_booking_args(data, booking))
    except VacationServiceError as e:
        return _error(e)
    return jsonify(booking.to_dict())


@main.route('/api/vacations/<vacation_id>', methods=['DELETE'])
@api_login_required
def delete_vacation(vacation_id):
    try:
        vacations.delete_booking(g.user, vacation_id)
    except VacationServiceError as e:
        return _error(e)
    return jsonify({'success': True})


# -- holidays -----------------------------------------------------------------

@main.route('/api/holidays', methods=['GET'])
@api_login_required
def get_holidays():
    try:
        year = _year_arg(request.args.get('year'))
    except ValueError:
        return jsonify({'error': 'Invalid year'}), 400

    user = g.user
    result = []
    for holiday in holiday_service.get_holidays_for_year(year, user.province):
        item = holiday.to_dict()
        item['applies_to_user'] = holiday_service.applies_to(holiday, user)
        result.append(item)
    return jsonify(result)


@main.route('/api/holidays', methods=['POST'])
@api_login_required
def sync_holidays():
    data = request.get_json(silent=True) or {}
    try:
        year = _year_arg(data.get('year'))
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid year'}), 400

    try:
        count = holiday_service.sync_holidays_for_year(year)
    except HolidayServiceError as e:
        db.session.rollback()
        logger.error(f"Holiday sync failed: {str(e)}")
        return jsonify({'error': 'Failed to sync holidays', 'details': str(e)}), 502
    return jsonify({'success': True, 'year': year, 'count': count})


@main.route('/api/holidays/range', methods=['POST'])
@api_login_required
def holidays_in_range():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    missing = [k for k in ('startDate', 'endDate', 'province') if not data.get(k)]
    if missing:
        return jsonify({'error': 'Missing required parameters', 'missing': missing}), 400

    try:
        start_date = vacations.parse_date(data['startDate'], 'startDate')
        end_date = vacations.parse_date(data['endDate'], 'endDate')
    except VacationServiceError as e:
        return _error(e)
    if not isinstance(data['province'], str):
        return jsonify({'error': 'province must be a 2-letter code'}), 400

    found = holiday_service.get_holidays_in_range(start_date, end_date, data['province'].upper())
    return jsonify([h.to_dict() for h in found])


# -- user ---------------------------------------------------------------------

@main.route('/api/user', methods=['GET'])
@api_login_required
def get_user():
    return jsonify(g.user.to_dict())


@main.route('/api/user/settings', methods=['GET'])
@api_login_required
def get_settings():
    return jsonify(g.user.settings_dict())


def validate_settings(data):
    errors = {}
    updates = {}

    if 'total_vacation_days' in data:
        value = data['total_vacation_days']
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 365:
            errors['total_vacation_days'] = 'Must be a whole number between 0 and 365'
        else:
            updates['total_vacation_days'] = value

    if 'province' in data:
        province = str(data['province'] or '').upper()
        if province not in PROVINCES:
            errors['province'] = 'Unknown province code'
        else:
            updates['province'] = province

    if 'employment_type' in data:
        if data['employment_type'] not in EMPLOYMENT_TYPES:
            errors['employment_type'] = f"Must be one of: {', '.join(EMPLOYMENT_TYPES)}"
        else:
            updates['employment_type'] = data['employment_type']

    if 'week_starts_on' in data:
        if data['week_starts_on'] not in WEEK_START_DAYS:
            errors['week_starts_on'] = f"Must be one of: {', '.join(WEEK_START_DAYS)}"
        else:
            updates['week_starts_on'] = data['week_starts_on']

    return updates, errors


@main.route('/api/user/settings', methods=['PUT'])
@api_login_required
def update_settings():
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({'error': 'Request body is required'}), 400

    updates, errors = validate_settings(data)
    if errors:
        return jsonify({'error': 'Invalid settings', 'errors': errors}), 400

    user = g.user
    for key, value in updates.items():
        setattr(user, key, value)
    db.session.commit()
    logger.info(f"Updated settings for user {user.id}: {sorted(updates)}")

    get_session_store().notify_user_updated(user)
    return jsonify(user.settings_dict())
