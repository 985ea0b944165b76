"""
Price List Resolver - Picks the single price list active at an instant.

Precedence:
1. Inactive lists never take part
2. Higher priority first; equal priorities keep definition order
3. A list with no schedule is an always-on baseline and wins on the spot
4. A scheduled list wins when one of its rules covers the instant
5. Fallback: no list (products sell at their base price)
"""
from datetime import datetime
from typing import Optional, Sequence

from ..engine.models import PriceList, Resolution
from ..engine.schedule_matcher import check_rule, weekday_index


def order_candidates(lists: Sequence[PriceList]) -> list[PriceList]:
    """Active lists, highest priority first. sorted() is stable, so ties keep input order."""
    active = [pl for pl in lists if pl.is_active]
    return sorted(active, key=lambda pl: -(pl.priority or 0))


def resolve_with_trace(lists: Sequence[PriceList], now: datetime) -> Resolution:
    """Resolve the active list and record every decision taken on the way."""
    resolution = Resolution(active_list=None, at=now)
    resolution.add_trace("Clock", f"Resolving at {now.isoformat()}", f"day {weekday_index(now)}")

    for pl in lists:
        if not pl.is_active:
            resolution.add_trace("Skip", f"List {pl.name} is inactive")

    for pl in order_candidates(lists):
        if not pl.schedule:
            resolution.add_trace("Match", f"List {pl.name} has no schedule (always active)", f"priority {pl.priority}")
            resolution.active_list = pl
            return resolution

        todays = [rule for rule in pl.schedule if rule.day == weekday_index(now)]
        if not todays:
            resolution.add_trace("Schedule", f"List {pl.name} has no rules for today")

        for rule in pl.schedule:
            check = check_rule(rule, now)
            if check.malformed:
                warning = f"List {pl.name}: ignored malformed rule {rule.to_dict()}"
                resolution.warnings.append(warning)
                resolution.add_trace("Schedule", warning)
                continue
            if rule.day != weekday_index(now):
                continue
            if check.matched:
                resolution.add_trace("Match", f"List {pl.name} rule {rule.label()}", f"priority {pl.priority}")
                resolution.active_list = pl
                return resolution
            resolution.add_trace("Schedule", f"List {pl.name} rule {rule.label()} did not match", check.reason)

    resolution.add_trace("Fallback", "No list matched, using base prices")
    return resolution


def resolve_active_list(lists: Sequence[PriceList], now: datetime) -> Optional[PriceList]:
    """
    Return the price list active at `now`, or None.

    Pure: the answer depends only on the arguments, so it is re-evaluated on
    every call and is safe to run from concurrent checkouts.
    """
    return resolve_with_trace(lists, now).active_list
