"""
Rate and duration calculation for parking sessions.

Durations are integer milliseconds. Sessions shorter than a day bill per
started hour with a one hour minimum; a day or longer bills per started day.
"""
from datetime import datetime, timedelta
from decimal import Decimal

from parking_engine.errors import InvalidTimeRange

MS_PER_MINUTE = 1000 * 60
MS_PER_HOUR = MS_PER_MINUTE * 60
MS_PER_DAY = MS_PER_HOUR * 24


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def elapsed_millis(check_in: datetime, now: datetime) -> int:
    if now < check_in:
        raise InvalidTimeRange(
            f"Check-out time {now.isoformat()} is before check-in time {check_in.isoformat()}"
        )
    return (now - check_in) // timedelta(milliseconds=1)


def billed_amount(duration_ms: int, hourly_rate, daily_rate) -> Decimal:
    if duration_ms < 0:
        raise InvalidTimeRange(f"Negative parking duration: {duration_ms}ms")

    if duration_ms >= MS_PER_DAY:
        days = _ceil_div(duration_ms, MS_PER_DAY)
        return days * Decimal(str(daily_rate))

    hours = max(1, _ceil_div(duration_ms, MS_PER_HOUR))
    return hours * Decimal(str(hourly_rate))


def format_duration(duration_ms) -> str:
    duration_ms = int(duration_ms)
    hours = duration_ms // MS_PER_HOUR
    minutes = (duration_ms % MS_PER_HOUR) // MS_PER_MINUTE

    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def average_duration(sessions) -> str:
    """Average stay of the closed sessions in ``sessions``, formatted."""
    durations = [
        elapsed_millis(s.check_in_time, s.check_out_time)
        for s in sessions
        if s.check_out_time is not None
    ]
    if not durations:
        return "0m"
    return format_duration(sum(durations) // len(durations))
