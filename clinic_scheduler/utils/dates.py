"""Civil date and time helpers.

Dates travel as ``YYYY-MM-DD`` and times as ``HH:MM[:SS]``; both are read in
the doctor's local calendar without any timezone conversion. Times are kept
at minute precision.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

def parse_date(value: Union[str, date]) -> date:
    """Parse ``YYYY-MM-DD`` (an ISO timestamp suffix is ignored)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Date is required")
    raw = value.strip().split("T")[0]
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")

def parse_time(value: Union[str, time]) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``; seconds are dropped."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Time is required")
    raw = value.strip()
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(raw, fmt).time().replace(second=0)
        except ValueError:
            continue
    raise ValueError(f"Invalid time '{value}', expected HH:MM or HH:MM:SS")

def parse_optional_time(value: Optional[Union[str, time]]) -> Optional[time]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_time(value)

def format_time(value: time) -> str:
    return value.strftime("%H:%M")

def day_of_week(day: date) -> int:
    """Day index with Sunday as 0 and Saturday as 6."""
    return (day.weekday() + 1) % 7

def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute

def time_from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)

def tomorrow(today: Optional[date] = None) -> date:
    return (today or date.today()) + timedelta(days=1)
