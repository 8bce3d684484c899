from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from timecalc.errors import ConfigurationError
from timecalc.models import (
    BookingDirection,
    CappingSource,
    DayPlanConfig,
    PlanType,
    RoundingRule,
    RoundingType,
    TimeAdjustment,
    WorkInterval,
)
from timecalc.services.time_utils import nearest_anchor


@dataclass(frozen=True, slots=True)
class AdjustedIntervals:
    intervals: tuple[WorkInterval, ...]
    adjustments: tuple[TimeAdjustment, ...] = ()

    @property
    def rounding_applied(self) -> bool:
        return any(item.rounding_applied for item in self.adjustments)


def _early_come_tolerance(plan: DayPlanConfig) -> int:
    if plan.plan_type == PlanType.FIXED and not plan.variable_work_time:
        return 0
    return plan.tolerance.come_minus


def apply_come_tolerance(value: int, plan: DayPlanConfig) -> int:
    """Snap an arrival inside [comeFrom - minus, comeFrom + plus] to comeFrom."""
    if plan.come_from is None:
        return value
    anchor = nearest_anchor(value, plan.come_from)
    if anchor - _early_come_tolerance(plan) <= value <= anchor + plan.tolerance.come_plus:
        return anchor
    return value


def apply_go_tolerance(value: int, plan: DayPlanConfig) -> int:
    """Snap a departure inside [goTo - minus, goTo + plus] to goTo (goFrom when goTo is unset)."""
    planned = plan.go_to if plan.go_to is not None else plan.go_from
    if planned is None:
        return value
    anchor = nearest_anchor(value, planned)
    if anchor - plan.tolerance.go_minus <= value <= anchor + plan.tolerance.go_plus:
        return anchor
    return value


def _require_interval(rule: RoundingRule) -> int:
    if rule.interval is None or rule.interval <= 0:
        raise ConfigurationError(
            f"Rounding '{rule.type.value}' needs a positive interval",
            code="INVALID_ROUNDING",
        )
    return rule.interval


def _require_add_value(rule: RoundingRule) -> int:
    if rule.add_value is None or rule.add_value < 0:
        raise ConfigurationError(
            f"Rounding '{rule.type.value}' needs a non-negative add value",
            code="INVALID_ROUNDING",
        )
    return rule.add_value


def round_time(value: int, rule: RoundingRule, *, direction: BookingDirection = BookingDirection.IN) -> int:
    match rule.type:
        case RoundingType.NONE:
            return value
        case RoundingType.UP:
            interval = _require_interval(rule)
            return -(-value // interval) * interval
        case RoundingType.DOWN:
            interval = _require_interval(rule)
            return value // interval * interval
        case RoundingType.NEAREST:
            interval = _require_interval(rule)
            lower = value // interval * interval
            twice_remainder = (value - lower) * 2
            # Ties: arrivals go later, departures go earlier.
            if twice_remainder > interval or (twice_remainder == interval and direction == BookingDirection.IN):
                return lower + interval
            return lower
        case RoundingType.ADD:
            return value + _require_add_value(rule)
        case RoundingType.SUBTRACT:
            return value - _require_add_value(rule)
    return value


def _adjust(
    value: int,
    direction: BookingDirection,
    plan: DayPlanConfig,
    *,
    round_it: bool,
    adjustments: list[TimeAdjustment],
) -> int:
    if direction == BookingDirection.IN:
        tolerated = apply_come_tolerance(value, plan)
        adjusted = round_time(tolerated, plan.rounding_come, direction=direction) if round_it else tolerated
    else:
        tolerated = apply_go_tolerance(value, plan)
        adjusted = round_time(tolerated, plan.rounding_go, direction=direction) if round_it else tolerated
    if adjusted != value:
        adjustments.append(
            TimeAdjustment(direction=direction, original=value, tolerated=tolerated, adjusted=adjusted)
        )
    return adjusted


def adjust_intervals(intervals: Sequence[WorkInterval], plan: DayPlanConfig) -> AdjustedIntervals:
    """Apply tolerance then rounding to paired intervals.

    Without ``round_all_bookings`` only the first arrival and the last
    departure of the date are rounded. Synthetic midnight boundaries are
    left untouched.
    """
    if not intervals:
        return AdjustedIntervals(intervals=())

    first_index = 0
    last_closed_index = max(
        (index for index, item in enumerate(intervals) if not item.is_open),
        default=None,
    )

    adjustments: list[TimeAdjustment] = []
    adjusted_intervals: list[WorkInterval] = []
    previous_end: int | None = None
    for index, interval in enumerate(intervals):
        start = interval.start
        if not interval.start_synthetic:
            start = _adjust(
                start,
                BookingDirection.IN,
                plan,
                round_it=plan.round_all_bookings or index == first_index,
                adjustments=adjustments,
            )
        end = interval.end
        if end is not None and not interval.end_synthetic:
            end = _adjust(
                end,
                BookingDirection.OUT,
                plan,
                round_it=plan.round_all_bookings or index == last_closed_index,
                adjustments=adjustments,
            )

        if previous_end is not None:
            start = max(start, previous_end)
        if end is not None:
            end = max(end, start)
            previous_end = end
        adjusted_intervals.append(
            WorkInterval(
                start=start,
                end=end,
                start_synthetic=interval.start_synthetic,
                end_synthetic=interval.end_synthetic,
            )
        )

    return AdjustedIntervals(intervals=tuple(adjusted_intervals), adjustments=tuple(adjustments))


@dataclass(frozen=True, slots=True)
class WindowCapping:
    intervals: tuple[WorkInterval, ...]
    early_arrival_minutes: int = 0
    late_leave_minutes: int = 0

    @property
    def total_minutes(self) -> int:
        return self.early_arrival_minutes + self.late_leave_minutes

    def by_source(self) -> dict[str, int]:
        sources = {
            CappingSource.EARLY_ARRIVAL.value: self.early_arrival_minutes,
            CappingSource.LATE_LEAVE.value: self.late_leave_minutes,
        }
        return {key: value for key, value in sources.items() if value > 0}


def cap_to_evaluation_window(intervals: Sequence[WorkInterval], plan: DayPlanConfig) -> WindowCapping:
    """Clip adjusted intervals to [comeFrom - early tolerance, goTo + goPlus].

    Runs after tolerance and rounding. Minutes outside the window are not
    credited and are reported per source. Window bounds are anchored on the
    day nearest each booking, like tolerance. Synthetic midnight boundaries
    and open intervals are left alone.
    """
    early_total = 0
    late_total = 0
    capped: list[WorkInterval] = []
    for interval in intervals:
        if interval.end is None:
            capped.append(interval)
            continue
        start, end = interval.start, interval.end

        if plan.come_from is not None and not interval.start_synthetic:
            window_start = nearest_anchor(start, plan.come_from) - _early_come_tolerance(plan)
            start = min(max(start, window_start), end)
        if plan.go_to is not None and not interval.end_synthetic:
            window_end = nearest_anchor(end, plan.go_to) + plan.tolerance.go_plus
            end = max(min(end, window_end), start)

        early_total += start - interval.start
        late_total += interval.end - end
        capped.append(
            WorkInterval(
                start=start,
                end=end,
                start_synthetic=interval.start_synthetic,
                end_synthetic=interval.end_synthetic,
            )
        )

    return WindowCapping(
        intervals=tuple(capped),
        early_arrival_minutes=early_total,
        late_leave_minutes=late_total,
    )
