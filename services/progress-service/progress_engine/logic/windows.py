"""UTC calendar helpers shared by statistics and leaderboard windows"""
from datetime import date, datetime, timedelta, timezone


def start_of_day(moment: datetime) -> datetime:
    return datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)


def start_of_week(day: date) -> date:
    """Weeks start on Sunday"""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def start_of_quarter(day: date) -> date:
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def to_datetime(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
