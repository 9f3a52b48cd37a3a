import os

from dotenv import load_dotenv

load_dotenv()


def _int_or_none(value, default):
    if value is None:
        return default
    if value.strip().lower() in ('', 'none', 'off'):
        return None
    return int(value)


class Config:
    SECRET_KEY = os.environ.get('SESSION_SECRET', os.urandom(32).hex())
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL',
                                             'sqlite:///vacations.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # PostgreSQL-specific options (keepalives) only apply when using PostgreSQL
    _db_uri = os.environ.get('DATABASE_URL', '')
    if _db_uri.startswith('postgres'):
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_pre_ping': True,
            'pool_recycle': 300,
            'connect_args': {
                'keepalives': 1,
                'keepalives_idle': 60,
                'keepalives_interval': 10,
                'keepalives_count': 10,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_pre_ping': True,
            'pool_recycle': 300,
        }

    # Session cookie (signed by SECRET_KEY); the only source of auth truth
    SESSION_COOKIE_NAME = 'vacay_session'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE',
                                           'false').lower() in ['true', 'on', '1']
    AUTH_SESSION_LIFETIME = int(os.environ.get('AUTH_SESSION_LIFETIME', 3600))

    # None disables the forced pass-through after repeated sign-in redirects
    AUTH_REDIRECT_LIMIT = _int_or_none(os.environ.get('AUTH_REDIRECT_LIMIT'), 3)
    AUTH_REDIRECT_COOKIE_MAX_AGE = 30

    SITE_URL = os.environ.get('SITE_URL', 'http://localhost:5000')

    # Google OAuth (identity sign-in and calendar access share one client)
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID', '')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')
    GOOGLE_HTTP_TIMEOUT = int(os.environ.get('GOOGLE_HTTP_TIMEOUT', 10))

    HOLIDAY_API_URL = os.environ.get('HOLIDAY_API_URL',
                                     'https://date.nager.at/api/v3/PublicHolidays')
    HOLIDAY_COUNTRY_CODE = os.environ.get('HOLIDAY_COUNTRY_CODE', 'CA')
    DEFAULT_PROVINCE = os.environ.get('DEFAULT_PROVINCE', 'ON')
    DEFAULT_VACATION_DAYS = int(os.environ.get('DEFAULT_VACATION_DAYS', 14))
