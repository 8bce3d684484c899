from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from timecalc.models import BonusCalculationType, BonusRule, HolidayRecord, WorkInterval
from timecalc.services.time_utils import MINUTES_PER_DAY, calculate_overlap


@dataclass(frozen=True, slots=True)
class BonusResult:
    accounts: dict[str, int] = field(default_factory=dict)

    @property
    def total_minutes(self) -> int:
        return sum(self.accounts.values())


def split_overnight_window(time_from: int, time_to: int) -> list[tuple[int, int]]:
    """22:00-06:00 becomes [22:00-24:00, 00:00-06:00]."""
    if time_from < time_to:
        return [(time_from, time_to)]
    return [(time_from, MINUTES_PER_DAY), (0, time_to)]


def bonus_applies(rule: BonusRule, holiday: HolidayRecord | None) -> bool:
    if holiday is None:
        return rule.applies_on_workday
    if not rule.applies_on_holiday:
        return False
    return not rule.holiday_categories or holiday.category in rule.holiday_categories


def window_overlap_minutes(rule: BonusRule, intervals: Sequence[WorkInterval]) -> int:
    total = 0
    for window_from, window_to in split_overnight_window(rule.time_from, rule.time_to):
        # Intervals crossing midnight also meet the neighbouring day's window.
        for shift in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY):
            for interval in intervals:
                if interval.is_open:
                    continue
                total += calculate_overlap(
                    interval.start,
                    interval.end,
                    window_from + shift,
                    window_to + shift,
                )
    return total


def _bonus_minutes(rule: BonusRule, overlap: int) -> int:
    match rule.calculation_type:
        case BonusCalculationType.FIXED:
            return rule.value_minutes
        case BonusCalculationType.PER_MINUTE:
            return rule.value_minutes * overlap
        case BonusCalculationType.PERCENTAGE:
            return overlap * rule.value_minutes // 100
    return 0


def calculate_bonuses(
    rules: Sequence[BonusRule],
    intervals: Sequence[WorkInterval],
    *,
    net_work_minutes: int,
    holiday: HolidayRecord | None = None,
) -> BonusResult:
    accounts: dict[str, int] = {}
    for rule in rules:
        if not bonus_applies(rule, holiday):
            continue
        if rule.min_work_minutes is not None and net_work_minutes < rule.min_work_minutes:
            continue
        overlap = window_overlap_minutes(rule, intervals)
        if overlap <= 0:
            continue
        minutes = _bonus_minutes(rule, overlap)
        if minutes > 0:
            accounts[rule.account] = accounts.get(rule.account, 0) + minutes
    return BonusResult(accounts=accounts)
