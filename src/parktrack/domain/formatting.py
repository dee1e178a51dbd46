# File: src/parktrack/domain/formatting.py
"""Human-readable renderings of durations and timestamps used in operator messages"""

from datetime import datetime
from typing import Optional

from .models import utc_now


def format_duration(minutes: int) -> str:
    """Format minutes as "2h 15m", "2h" or "45m" """
    if minutes < 1:
        return "< 1m"
    if minutes < 60:
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"


def format_date_time(moment: datetime) -> str:
    """Format as "Jan 15, 2:30 PM" """
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{moment.strftime('%b')} {moment.day}, {hour}:{moment.minute:02d} {suffix}"


def relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """Render a past moment as "just now", "5 mins ago", "1 day ago", ..."""
    now = now or utc_now()
    diff_ms = abs((now - moment).total_seconds()) * 1000

    if diff_ms < 60_000:
        return "just now"
    if diff_ms < 120_000:
        return "1 min ago"
    if diff_ms < 3_600_000:
        return f"{int(diff_ms // 60_000)} mins ago"
    if diff_ms < 7_200_000:
        return "1 hour ago"
    if diff_ms < 86_400_000:
        return f"{int(diff_ms // 3_600_000)} hours ago"
    if diff_ms < 172_800_000:
        return "1 day ago"

    days = int(diff_ms // 86_400_000)
    return f"{days} days ago" if days <= 7 else format_date_time(moment)


def format_countdown(milliseconds: int) -> str:
    """Format a credential countdown as "5s" or "1m 30s" """
    if milliseconds <= 0:
        return "0s"
    if milliseconds < 1_000:
        return f"{milliseconds // 100}00ms"
    if milliseconds < 60_000:
        return f"{milliseconds // 1_000}s"
    minutes, rest = divmod(milliseconds, 60_000)
    return f"{minutes}m {rest // 1_000}s"
