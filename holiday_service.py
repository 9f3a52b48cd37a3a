"""
Statutory holiday data.

Holidays are fetched per year from the Nager.Date public holiday API and
stored as reference rows. Nationwide holidays are stored once with no
province; regional ones get one row per province.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

import requests
from flask import current_app

from extensions import db
from models import Holiday

logger = logging.getLogger(__name__)


class HolidayServiceError(Exception):
    pass


def fetch_holidays_from_api(year: int) -> List[Dict]:
    base_url = current_app.config.get('HOLIDAY_API_URL', 'https://date.nager.at/api/v3/PublicHolidays')
    country = current_app.config.get('HOLIDAY_COUNTRY_CODE', 'CA')
    url = f"{base_url}/{year}/{country}"
    try:
        response = requests.get(url, timeout=current_app.config.get('GOOGLE_HTTP_TIMEOUT', 10))
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as e:
        raise HolidayServiceError(f"Failed to fetch holidays for {year}: {e}") from e


def is_bank_holiday(holiday: Dict) -> bool:
    """National holidays and those typed 'Public' are non-working days."""
    return bool(holiday.get('global')) or 'Public' in (holiday.get('types') or [])


def _province_code(county: str) -> str:
    # Nager.Date reports subdivisions as ISO 3166-2 codes, e.g. CA-ON
    return county.split('-')[-1].upper()


def holiday_rows(api_holidays: List[Dict]) -> List[Holiday]:
    rows = []
    for item in api_holidays:
        try:
            holiday_date = date.fromisoformat(item['date'])
        except (KeyError, TypeError, ValueError):
            logger.error(f"Invalid date for holiday: {item.get('localName')}")
            continue

        name = item.get('localName') or item.get('name')
        kind = 'bank' if is_bank_holiday(item) else 'provincial'

        if item.get('global'):
            rows.append(Holiday(date=holiday_date, name=name, province=None, type=kind))
        elif item.get('counties'):
            for county in item['counties']:
                rows.append(Holiday(date=holiday_date, name=name,
                                    province=_province_code(county), type=kind))
        else:
            rows.append(Holiday(date=holiday_date, name=name, province=None, type='provincial'))
    return rows


def sync_holidays_for_year(year: int) -> int:
    """Replace the stored holidays of ``year`` with fresh API data. Returns the row count."""
    api_holidays = fetch_holidays_from_api(year)
    if not api_holidays:
        logger.warning(f"Holiday API returned nothing for {year}, keeping existing rows")
        return 0

    rows = holiday_rows(api_holidays)
    Holiday.query.filter(
        Holiday.date >= date(year, 1, 1),
        Holiday.date <= date(year, 12, 31)
    ).delete(synchronize_session=False)
    db.session.add_all(rows)
    db.session.commit()
    logger.info(f"Synced {len(rows)} holidays for {year}")
    return len(rows)


def get_holidays_in_range(start_date: date, end_date: date, province: Optional[str] = None) -> List[Holiday]:
    query = Holiday.query.filter(Holiday.date >= start_date, Holiday.date <= end_date)
    if province:
        query = query.filter(db.or_(Holiday.province.is_(None), Holiday.province == province))
    return query.order_by(Holiday.date).all()


def get_holidays_for_year(year: int, province: Optional[str] = None) -> List[Holiday]:
    return get_holidays_in_range(date(year, 1, 1), date(year, 12, 31), province)


def applies_to(holiday: Holiday, user) -> bool:
    """
    Whether ``holiday`` is a day off for ``user``.

    standard employees get nationwide and own-province holidays, bank
    employees only bank holidays, federal employees only nationwide ones.
    """
    in_province = holiday.province is None or holiday.province == user.province
    if user.employment_type == 'federal':
        return holiday.province is None
    if user.employment_type == 'bank':
        return in_province and holiday.type == 'bank'
    return in_province


def applicable_holidays(user, start_date: date, end_date: date) -> List[Holiday]:
    return [h for h in get_holidays_in_range(start_date, end_date, user.province) if applies_to(h, user)]
