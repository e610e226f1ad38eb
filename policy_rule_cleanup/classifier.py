"""Decide which rules to disable and which to delete. No I/O."""

import calendar
import datetime
from typing import Iterable, List, Optional

from .models import ActionSet, Rule


def subtract_months(day: datetime.date, months: int) -> datetime.date:
    """
    Go back a number of calendar months, clamping to the end of shorter months.

    Args:
        day: Starting date
        months: Months to go back (non-negative)

    Returns:
        The same day of month ``months`` earlier, e.g. 2024-03-31 - 1 -> 2024-02-29
    """
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def _sorted(rules: Iterable[Rule]) -> List[Rule]:
    return sorted(rules, key=lambda rule: rule.rule_number)


def classify_for_disable(rules: Iterable[Rule], now: datetime.date) -> List[Rule]:
    """Enabled rules without a single hit in the window the rules were fetched for."""
    return _sorted(rule for rule in rules if rule.enabled and rule.hit_count == 0)


def classify_for_delete(rules: Iterable[Rule], delete_months: int,
                        now: datetime.date) -> List[Rule]:
    """
    Disabled rules whose disable date is strictly older than the threshold.

    A disabled rule without a disable date was not disabled by this tool
    and is never selected.
    """
    cutoff = subtract_months(now, delete_months)
    selected = []
    for rule in rules:
        disabled_on = rule.effective_disable_date
        if disabled_on is not None and disabled_on < cutoff:
            selected.append(rule)
    return _sorted(selected)


def build_action_set(now: datetime.date,
                     disable_pool: Optional[Iterable[Rule]] = None,
                     delete_pool: Optional[Iterable[Rule]] = None,
                     delete_months: Optional[int] = None) -> ActionSet:
    """
    Classify both pools into an ActionSet.

    Args:
        now: Reference date
        disable_pool: Rules fetched with hits scoped to the disable window
        delete_pool: Rules fetched without a hit window
        delete_months: Retention threshold for disabled rules
    """
    to_disable = classify_for_disable(disable_pool, now) if disable_pool is not None else []
    to_delete = []
    if delete_pool is not None and delete_months is not None:
        to_delete = classify_for_delete(delete_pool, delete_months, now)
    return ActionSet(to_disable=tuple(to_disable), to_delete=tuple(to_delete))
