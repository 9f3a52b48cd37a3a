"""
Vacation booking service: validation, overlap checks, persistence and the
business-day arithmetic behind the dashboard numbers.
"""

import logging
from datetime import date, timedelta

from extensions import db
from models import HALF_DAY_PORTIONS, VacationBooking
from holiday_service import applicable_holidays
import google_calendar

logger = logging.getLogger(__name__)

VALIDATION_ERROR = 'VALIDATION_ERROR'
OVERLAPPING_BOOKING = 'OVERLAPPING_BOOKING'
NOT_FOUND = 'NOT_FOUND'
FORBIDDEN = 'FORBIDDEN'

STATUS_BY_CODE = {
    VALIDATION_ERROR: 400,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    OVERLAPPING_BOOKING: 409,
}


class VacationServiceError(Exception):

    def __init__(self, message, code='UNKNOWN_ERROR'):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def status_code(self):
        return STATUS_BY_CODE.get(self.code, 500)


def parse_date(value, field):
    if not value:
        raise VacationServiceError(f"{field} is required", VALIDATION_ERROR)
    try:
        # Accept full ISO timestamps as well as plain dates
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise VacationServiceError(f"Invalid {field}. Use YYYY-MM-DD", VALIDATION_ERROR)


def validate_booking(start_date, end_date, is_half_day=False, half_day_portion=None):
    if start_date > end_date:
        raise VacationServiceError('Start date must be on or before end date', VALIDATION_ERROR)
    if is_half_day:
        if start_date != end_date:
            raise VacationServiceError('A half day booking must start and end on the same day',
                                       VALIDATION_ERROR)
        if half_day_portion not in HALF_DAY_PORTIONS:
            raise VacationServiceError('Half day portion must be AM or PM', VALIDATION_ERROR)
    elif half_day_portion is not None:
        raise VacationServiceError('Half day portion is only valid for half day bookings',
                                   VALIDATION_ERROR)


def has_overlap(user_id, start_date, end_date, exclude_id=None):
    query = VacationBooking.query.filter(
        VacationBooking.user_id == user_id,
        VacationBooking.start_date <= end_date,
        VacationBooking.end_date >= start_date
    )
    if exclude_id:
        query = query.filter(VacationBooking.id != exclude_id)
    return db.session.query(query.exists()).scalar()


def get_user_bookings(user_id):
    return VacationBooking.query.filter_by(user_id=user_id).order_by(VacationBooking.start_date).all()


def get_upcoming_bookings(user_id, today=None, limit=5):
    today = today or date.today()
    return VacationBooking.query.filter(
        VacationBooking.user_id == user_id,
        VacationBooking.end_date >= today
    ).order_by(VacationBooking.start_date).limit(limit).all()


def create_booking(user, start_date, end_date, note=None, is_half_day=False,
                   half_day_portion=None, calendar_client=None):
    validate_booking(start_date, end_date, is_half_day, half_day_portion)
    if has_overlap(user.id, start_date, end_date):
        raise VacationServiceError('This vacation overlaps with an existing booking',
                                   OVERLAPPING_BOOKING)

    booking = VacationBooking(
        user_id=user.id,
        start_date=start_date,
        end_date=end_date,
        note=note,
        is_half_day=bool(is_half_day),
        half_day_portion=half_day_portion if is_half_day else None,
        sync_status='pending'
    )
    db.session.add(booking)
    db.session.commit()
    logger.info(f"Created vacation {booking.id} for user {user.id}: {start_date} to {end_date}")

    if user.calendar_sync_enabled:
        # Failures are recorded on the booking
        google_calendar.sync_vacation(user.id, booking, calendar_client)
    return booking


def update_booking(user, booking, start_date, end_date, note=None, is_half_day=False,
                   half_day_portion=None, calendar_client=None):
    """Apply new values to a booking already checked with ``get_owned_booking``."""
    validate_booking(start_date, end_date, is_half_day, half_day_portion)
    if has_overlap(user.id, start_date, end_date, exclude_id=booking.id):
        raise VacationServiceError('This vacation overlaps with an existing booking',
                                   OVERLAPPING_BOOKING)

    booking.start_date = start_date
    booking.end_date = end_date
    booking.note = note
    booking.is_half_day = bool(is_half_day)
    booking.half_day_portion = half_day_portion if is_half_day else None
    booking.sync_status = 'pending'
    db.session.commit()

    if user.calendar_sync_enabled:
        google_calendar.sync_vacation(user.id, booking, calendar_client)
    return booking


def get_owned_booking(user, booking_id):
    booking = db.session.get(VacationBooking, booking_id)
    if booking is None:
        raise VacationServiceError('Vacation booking not found', NOT_FOUND)
    if booking.user_id != user.id:
        logger.warning(f"User {user.id} tried to access vacation {booking_id} owned by another user")
        raise VacationServiceError('You do not have permission to modify this booking', FORBIDDEN)
    return booking


def delete_booking(user, booking_id, calendar_client=None):
    booking = get_owned_booking(user, booking_id)
    if booking.google_event_id:
        if not google_calendar.delete_vacation_event(user.id, booking, calendar_client):
            logger.warning(f"Calendar event {booking.google_event_id} was not removed")
    db.session.delete(booking)
    db.session.commit()
    logger.info(f"Deleted vacation {booking_id} for user {user.id}")


def count_vacation_days(booking, holiday_dates, period_start=None, period_end=None):
    """Business days in a booking, skipping weekends and holidays. A single half day counts 0.5.

    With ``period_start``/``period_end`` only the days inside that period are counted.
    """
    start = booking.start_date
    end = booking.end_date
    if period_start is not None:
        start = max(start, period_start)
    if period_end is not None:
        end = min(end, period_end)

    days = 0
    current = start
    while current <= end:
        if current.weekday() < 5 and current not in holiday_dates:
            if booking.is_half_day and booking.start_date == booking.end_date:
                days += 0.5
            else:
                days += 1
        current += timedelta(days=1)
    return days


def calculate_vacation_stats(total_allowance, bookings, holidays, period_start=None, period_end=None):
    if total_allowance is None or total_allowance < 0:
        logger.warning(f"Invalid vacation allowance: {total_allowance}")
        return {'used': 0, 'remaining': 0, 'total': 0}

    holiday_dates = {h.date for h in holidays}
    used = sum(count_vacation_days(b, holiday_dates, period_start, period_end) for b in bookings)
    return {
        'used': used,
        'remaining': max(0, total_allowance - used),
        'total': total_allowance,
    }


def vacation_stats_for_user(user, year=None):
    """Stats for one calendar year. Bookings crossing New Year only count their days inside it."""
    year = year or date.today().year
    start, end = date(year, 1, 1), date(year, 12, 31)
    bookings = VacationBooking.query.filter(
        VacationBooking.user_id == user.id,
        VacationBooking.start_date <= end,
        VacationBooking.end_date >= start
    ).all()
    return calculate_vacation_stats(user.total_vacation_days, bookings,
                                    applicable_holidays(user, start, end), start, end)
