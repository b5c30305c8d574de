"""
Time utilities for the Task Tracker application.

This module provides a single source of truth for time operations,
ensuring consistency across all endpoints and preventing clock drift issues.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a stored timestamp to an aware UTC datetime.

    Some backends (SQLite) hand back naive datetimes for timezone-aware
    columns; those are UTC by construction.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_late(due_date: Optional[datetime], at: Optional[datetime] = None) -> bool:
    """
    Check whether a submission at `at` (default: now) misses the due date.

    A task without a due date is never late.

    Args:
        due_date: The task's due date
        at: Moment of submission

    Returns:
        True if `at` is strictly after the due date
    """
    if due_date is None:
        return False
    moment = ensure_utc(at) if at is not None else utc_now()
    return moment > ensure_utc(due_date)


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Whole minutes from start to end (rounded down), None if either is missing."""
    if start is None or end is None:
        return None
    delta = ensure_utc(end) - ensure_utc(start)
    return int(delta.total_seconds() // 60)


def format_minutes(minutes: Optional[int]) -> str:
    """
    Format a minute count for humans.

    Example:
        >>> format_minutes(150)
        '2 hours 30 minutes'
    """
    if minutes is None or minutes < 0:
        return "0 minutes"

    hours, mins = divmod(minutes, 60)
    if hours > 0:
        text = f"{hours} hour{'s' if hours != 1 else ''}"
        if mins > 0:
            text += f" {mins} minute{'s' if mins != 1 else ''}"
        return text
    return f"{mins} minute{'s' if mins != 1 else ''}"
