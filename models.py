import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from extensions import db

EMPLOYMENT_TYPES = ('standard', 'bank', 'federal')
WEEK_START_DAYS = ('sunday', 'monday')
HALF_DAY_PORTIONS = ('AM', 'PM')
PROVINCES = ('AB', 'BC', 'MB', 'NB', 'NL', 'NS', 'NT', 'NU', 'ON', 'PE', 'QC', 'SK', 'YT')


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id():
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    # Identity-provider subject id
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255))
    email = db.Column(db.String(255), unique=True, nullable=False)
    image = db.Column(db.String(500))
    total_vacation_days = db.Column(db.Integer, nullable=False, default=14)
    province = db.Column(db.String(2), nullable=False, default='ON')
    employment_type = db.Column(db.String(20), nullable=False, default='standard')
    week_starts_on = db.Column(db.String(10), nullable=False, default='sunday')
    calendar_sync_enabled = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    vacations = db.relationship('VacationBooking', back_populates='user', lazy=True,
                                cascade='all, delete-orphan')
    google_token = db.relationship('GoogleToken', back_populates='user', uselist=False,
                                   cascade='all, delete-orphan')

    def settings_dict(self):
        return {
            'total_vacation_days': self.total_vacation_days,
            'province': self.province,
            'employment_type': self.employment_type,
            'week_starts_on': self.week_starts_on,
            'calendar_sync_enabled': self.calendar_sync_enabled,
        }

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'image': self.image,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        data.update(self.settings_dict())
        return data


class VacationBooking(db.Model):
    __tablename__ = 'vacation_bookings'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    note = db.Column(db.Text)
    is_half_day = db.Column(db.Boolean, nullable=False, default=False)
    half_day_portion = db.Column(db.String(2))
    google_event_id = db.Column(db.String(255))
    sync_status = db.Column(db.String(20), nullable=False, default='pending')
    sync_error = db.Column(db.Text)
    last_sync_attempt = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', back_populates='vacations')

    __table_args__ = (
        db.CheckConstraint('start_date <= end_date', name='ck_vacation_date_range'),
        db.Index('ix_vacation_dates', 'start_date', 'end_date'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'note': self.note,
            'is_half_day': self.is_half_day,
            'half_day_portion': self.half_day_portion,
            'google_event_id': self.google_event_id,
            'sync_status': self.sync_status,
            'sync_error': self.sync_error,
            'last_sync_attempt': self.last_sync_attempt.isoformat() if self.last_sync_attempt else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class Holiday(db.Model):
    __tablename__ = 'holidays'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    # None means the holiday is observed nationwide
    province = db.Column(db.String(2), index=True)
    type = db.Column(db.String(20), nullable=False, default='provincial')
    created_at = db.Column(db.DateTime, default=utcnow)

    @property
    def is_nationwide(self):
        return self.province is None

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'name': self.name,
            'province': self.province,
            'type': self.type,
            'display_type': 'Bank Holiday' if self.type == 'bank' else 'Provincial',
        }


class GoogleToken(db.Model):
    __tablename__ = 'google_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, unique=True)
    access_token = db.Column(db.Text, nullable=False)
    refresh_token = db.Column(db.Text)
    expires_at = db.Column(db.DateTime, nullable=False)
    token_type = db.Column(db.String(20), default='Bearer')
    scope = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='google_token')

    def is_expired(self, now=None, leeway=60):
        now = now or utcnow()
        return (self.expires_at - now).total_seconds() <= leeway

    def to_dict(self):
        # Token values never leave the server
        return {
            'user_id': self.user_id,
            'expires_at': self.expires_at.isoformat(),
            'token_type': self.token_type,
            'scope': self.scope,
            'has_refresh_token': bool(self.refresh_token),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
