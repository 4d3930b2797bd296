"""
Calendar helpers

Cheque routing and PDC maturity compare calendar days in UTC.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Union

Today = Callable[[], date]


def today_utc() -> date:
    """Current calendar day in UTC"""
    return datetime.now(timezone.utc).date()


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Accept ISO strings, dates and datetimes; datetimes are truncated to the day"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text or " " in text:
        return parse_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    return date.fromisoformat(text)


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def is_post_dated(value: Optional[date], today: date) -> bool:
    """True when the day is strictly after today"""
    return value is not None and value > today


def is_today(value: Optional[date], today: date) -> bool:
    return value is not None and value == today


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)
