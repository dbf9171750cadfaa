"""
Recurrence rule expansion.

Pure date arithmetic: given a rule and a window, produce the calendar dates
on which an instance should exist. Nothing here touches the database, so
the same rule always expands to the same dates.

Weekdays use 0 = Sunday ... 6 = Saturday throughout.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterator, List, Optional, Tuple

RECURRENCE_TYPES = ("daily", "weekly", "biweekly", "monthly", "custom")

DEFAULT_CUSTOM_INTERVAL_DAYS = 7


def weekday_index(day: date) -> int:
    """Sunday-based weekday index."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class RecurrenceRule:
    recurrence_type: str
    start_date: date
    interval_days: Optional[int] = None
    days_of_week: Tuple[int, ...] = field(default_factory=tuple)
    days_of_month: Tuple[int, ...] = field(default_factory=tuple)
    end_date: Optional[date] = None
    occurrence_count: Optional[int] = None

    @classmethod
    def from_pattern(cls, pattern) -> "RecurrenceRule":
        return cls(
            recurrence_type=pattern.recurrence_type,
            start_date=pattern.start_date,
            interval_days=pattern.interval_days,
            days_of_week=tuple(pattern.days_of_week or ()),
            days_of_month=tuple(pattern.days_of_month or ()),
            end_date=pattern.end_date,
            occurrence_count=pattern.occurrence_count,
        )


def _step_dates(start: date, step_days: int) -> Iterator[date]:
    day = start
    while True:
        yield day
        day += timedelta(days=step_days)


def _weekly_dates(rule: RecurrenceRule, every_other: bool) -> Iterator[date]:
    weekdays = {d for d in rule.days_of_week if 0 <= d <= 6}
    if not weekdays:
        weekdays = {weekday_index(rule.start_date)}

    # Weeks run Sunday..Saturday; biweekly keeps the start date's week and every second one after it
    first_week = rule.start_date - timedelta(days=weekday_index(rule.start_date))

    day = rule.start_date
    while True:
        if weekday_index(day) in weekdays:
            week_number = (day - first_week).days // 7
            if not every_other or week_number % 2 == 0:
                yield day
        day += timedelta(days=1)


def _monthly_dates(rule: RecurrenceRule) -> Iterator[date]:
    month_days = sorted({d for d in rule.days_of_month if 1 <= d <= 31})
    if not month_days:
        month_days = [rule.start_date.day]

    year, month = rule.start_date.year, rule.start_date.month
    while True:
        last_day = calendar.monthrange(year, month)[1]
        for day_of_month in month_days:
            # Months without that day are skipped, never clamped to month end
            if day_of_month > last_day:
                continue
            day = date(year, month, day_of_month)
            if day >= rule.start_date:
                yield day
        month += 1
        if month > 12:
            year, month = year + 1, 1


def iter_rule_dates(rule: RecurrenceRule) -> Iterator[date]:
    """Every date the rule produces, ascending from start_date, unbounded."""
    if rule.recurrence_type == "daily":
        return _step_dates(rule.start_date, max(1, rule.interval_days or 1))
    if rule.recurrence_type == "custom":
        return _step_dates(rule.start_date, max(1, rule.interval_days or DEFAULT_CUSTOM_INTERVAL_DAYS))
    if rule.recurrence_type == "weekly":
        return _weekly_dates(rule, every_other=False)
    if rule.recurrence_type == "biweekly":
        return _weekly_dates(rule, every_other=True)
    if rule.recurrence_type == "monthly":
        return _monthly_dates(rule)
    raise ValueError(f"Unknown recurrence type: {rule.recurrence_type}")


def expand_occurrences(rule: RecurrenceRule, window_start: date, window_end: date) -> List[date]:
    """
    Dates of the rule that fall in [window_start, window_end).

    occurrence_count caps the whole sequence counted from start_date, not
    the window, so expanding adjacent windows never exceeds the cap.
    No date precedes start_date or follows end_date.
    """
    dates = []
    for index, day in enumerate(iter_rule_dates(rule)):
        if rule.occurrence_count is not None and index >= rule.occurrence_count:
            break
        if rule.end_date is not None and day > rule.end_date:
            break
        if day >= window_end:
            break
        if day >= window_start:
            dates.append(day)
    return dates
