"""
Database Seeder Module

Loads statutory holidays into the holidays table. Used by the
`flask seed-holidays YEAR` command and safe to run repeatedly: a year that
already has rows is left alone unless force is set.
"""

from datetime import date

from models import Holiday
from holiday_service import HolidayServiceError, sync_holidays_for_year


def seed_holidays(year, force=False):
    """
    Seeds the holidays of a year.
    Returns True if seeding occurred, False if the year already had data or the fetch failed.
    """
    existing_count = Holiday.query.filter(
        Holiday.date >= date(year, 1, 1),
        Holiday.date <= date(year, 12, 31)
    ).count()
    if existing_count > 0 and not force:
        print(f"[Seeder] Database already has {existing_count} holidays for {year}. Skipping seed.")
        return False

    print(f"[Seeder] Fetching holidays for {year}...")
    try:
        count = sync_holidays_for_year(year)
    except HolidayServiceError as e:
        print(f"[Seeder] Error: {e}")
        return False

    print(f"[Seeder] Imported {count} holidays for {year}.")
    return count > 0
