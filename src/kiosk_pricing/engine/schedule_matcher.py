"""
Schedule Matcher - Decides whether a price list's schedule covers an instant.

Used by the price list resolver to gate scheduled lists on weekday and
time-of-day windows.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .models import ScheduleRule

logger = logging.getLogger(__name__)


def weekday_index(moment: datetime) -> int:
    """Weekday of `moment` with 0 = Sunday ... 6 = Saturday."""
    return moment.isoweekday() % 7


@dataclass
class RuleCheck:
    """Outcome of testing one schedule rule against an instant."""
    rule: ScheduleRule
    matched: bool
    reason: str
    malformed: bool = False


def check_rule(rule: ScheduleRule, now: datetime) -> RuleCheck:
    """
    Test a single rule against `now`.

    The window is built on `now`'s own calendar date (and tzinfo) and is
    closed at both ends. Malformed rules never match and never raise.
    """
    try:
        start, end = rule.parse_window()
    except (TypeError, ValueError) as e:
        logger.warning("Skipping malformed schedule rule %s: %s", rule, e)
        return RuleCheck(rule=rule, matched=False, reason=f"malformed ({e})", malformed=True)

    today = weekday_index(now)
    if rule.day != today:
        return RuleCheck(rule=rule, matched=False, reason=f"not today (day {today})")

    window_start = datetime.combine(now.date(), start, tzinfo=now.tzinfo)
    window_end = datetime.combine(now.date(), end, tzinfo=now.tzinfo)
    if window_start <= now <= window_end:
        return RuleCheck(rule=rule, matched=True, reason=f"{now:%H:%M:%S} within {rule.start}-{rule.end}")
    return RuleCheck(rule=rule, matched=False, reason=f"{now:%H:%M:%S} outside {rule.start}-{rule.end}")


def find_matching_rule(schedule: Iterable[ScheduleRule], now: datetime) -> Optional[ScheduleRule]:
    """Return the first rule in `schedule` that covers `now`, or None."""
    for rule in schedule:
        if check_rule(rule, now).matched:
            return rule
    return None
