from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from timecalc.errors import AmbiguousShiftDetectionError, ConfigurationError
from timecalc.models import (
    AbsenceRecord,
    DayPlanConfig,
    FixedBreak,
    MinimumBreak,
    PlanType,
    RoundingRule,
    RoundingType,
    ShiftDetectionWindows,
    ShiftMatchType,
    VariableBreak,
)
from timecalc.services.time_utils import MINUTES_PER_DAY, format_minutes, in_window

logger = logging.getLogger("timecalc.day_plan_resolver")

MAX_ALTERNATE_PLANS = 6

_INTERVAL_ROUNDING = {RoundingType.UP, RoundingType.DOWN, RoundingType.NEAREST}
_OFFSET_ROUNDING = {RoundingType.ADD, RoundingType.SUBTRACT}

DayPlanLookup = Mapping[str, DayPlanConfig]


@dataclass(frozen=True, slots=True)
class ShiftDetectionResult:
    plan: DayPlanConfig
    matched_by: ShiftMatchType
    is_original_plan: bool
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ResolvedDayPlan:
    plan: DayPlanConfig
    base_plan_id: str
    target_minutes: int
    shift_detected: bool
    matched_by: ShiftMatchType
    warnings: tuple[str, ...] = ()


def build_plan_lookup(plans: Iterable[DayPlanConfig]) -> dict[str, DayPlanConfig]:
    lookup: dict[str, DayPlanConfig] = {}
    for plan in plans:
        if plan.plan_id in lookup:
            raise ConfigurationError(f"Duplicate day plan id {plan.plan_id!r}", code="DUPLICATE_DAY_PLAN")
        lookup[plan.plan_id] = plan
    return lookup


def _check_window(plan_id: str, name: str, start: int | None, end: int | None) -> None:
    for value in (start, end):
        if value is not None and not 0 <= value <= MINUTES_PER_DAY:
            raise ConfigurationError(
                f"{plan_id}: {name} value {value} is outside 0..{MINUTES_PER_DAY}",
                code="INVALID_TIME_WINDOW",
            )
    if start is not None and end is not None and start > end:
        raise ConfigurationError(
            f"{plan_id}: {name} starts at {format_minutes(start)} after it ends at {format_minutes(end)}",
            code="INVALID_TIME_WINDOW",
        )


def _check_rounding(plan_id: str, name: str, rule: RoundingRule) -> None:
    if rule.type in _INTERVAL_ROUNDING and (rule.interval is None or rule.interval <= 0):
        raise ConfigurationError(
            f"{plan_id}: {name} rounding '{rule.type.value}' needs a positive interval",
            code="INVALID_ROUNDING",
        )
    if rule.type in _OFFSET_ROUNDING and (rule.add_value is None or rule.add_value < 0):
        raise ConfigurationError(
            f"{plan_id}: {name} rounding '{rule.type.value}' needs a non-negative add value",
            code="INVALID_ROUNDING",
        )


def _check_shift_detection(plan_id: str, windows: ShiftDetectionWindows) -> None:
    pairs = (
        ("shift detection arrival window", windows.arrive_from, windows.arrive_to),
        ("shift detection departure window", windows.depart_from, windows.depart_to),
    )
    for name, start, end in pairs:
        if (start is None) != (end is None):
            raise ConfigurationError(
                f"{plan_id}: {name} needs both bounds",
                code="INVALID_SHIFT_DETECTION",
            )
        _check_window(plan_id, name, start, end)


def validate_day_plan(plan: DayPlanConfig) -> None:
    pid = plan.plan_id
    _check_window(pid, "arrival window", plan.come_from, plan.come_to)
    _check_window(pid, "departure window", plan.go_from, plan.go_to)
    _check_window(pid, "core time", plan.core_start, plan.core_end)
    if plan.plan_type == PlanType.FLEXTIME and plan.come_to is None:
        raise ConfigurationError(f"{pid}: flextime plans need an arrival window end", code="INVALID_TIME_WINDOW")

    tolerance = plan.tolerance
    if min(tolerance.come_plus, tolerance.come_minus, tolerance.go_plus, tolerance.go_minus) < 0:
        raise ConfigurationError(f"{pid}: tolerances must not be negative", code="INVALID_TOLERANCE")

    _check_rounding(pid, "arrival", plan.rounding_come)
    _check_rounding(pid, "departure", plan.rounding_go)
    _check_shift_detection(pid, plan.shift_detection)

    if len(plan.alternate_plan_ids) > MAX_ALTERNATE_PLANS:
        raise ConfigurationError(
            f"{pid}: at most {MAX_ALTERNATE_PLANS} alternate plans are allowed",
            code="INVALID_SHIFT_DETECTION",
        )
    if pid in plan.alternate_plan_ids:
        raise ConfigurationError(f"{pid}: a plan cannot be its own alternate", code="INVALID_SHIFT_DETECTION")

    for rule in plan.breaks:
        if rule.duration_minutes < 0:
            raise ConfigurationError(f"{pid}: break duration must not be negative", code="INVALID_BREAK")
        match rule:
            case FixedBreak(start=start, end=end):
                _check_window(pid, "fixed break", start, end)
                if start == end:
                    raise ConfigurationError(f"{pid}: fixed break window is empty", code="INVALID_BREAK")
            case VariableBreak(min_minutes=low, max_minutes=high):
                if low is not None and high is not None and low > high:
                    raise ConfigurationError(f"{pid}: variable break minimum exceeds maximum", code="INVALID_BREAK")
            case MinimumBreak(after_work_minutes=threshold):
                if threshold < 0:
                    raise ConfigurationError(f"{pid}: minimum break threshold must not be negative", code="INVALID_BREAK")

    for bonus in plan.bonuses:
        for value in (bonus.time_from, bonus.time_to):
            if not 0 <= value <= MINUTES_PER_DAY:
                raise ConfigurationError(f"{pid}: bonus window for {bonus.account} is outside the day", code="INVALID_BONUS")
        if bonus.time_from == bonus.time_to:
            raise ConfigurationError(f"{pid}: bonus window for {bonus.account} is empty", code="INVALID_BONUS")
        if bonus.value_minutes < 0:
            raise ConfigurationError(f"{pid}: bonus value for {bonus.account} must not be negative", code="INVALID_BONUS")

    for credit in (plan.holiday_credit_cat1, plan.holiday_credit_cat2, plan.holiday_credit_cat3):
        if credit is not None and credit < 0:
            raise ConfigurationError(f"{pid}: holiday credit must not be negative", code="INVALID_HOLIDAY_CREDIT")


def _matches_plan(
    windows: ShiftDetectionWindows,
    first_arrival: int | None,
    last_departure: int | None,
) -> ShiftMatchType:
    has_arrival = windows.has_arrival_window
    has_departure = windows.has_departure_window
    arrival_matches = first_arrival is not None and in_window(first_arrival, windows.arrive_from, windows.arrive_to)
    departure_matches = last_departure is not None and in_window(
        last_departure, windows.depart_from, windows.depart_to
    )

    if has_arrival and has_departure:
        return ShiftMatchType.BOTH if arrival_matches and departure_matches else ShiftMatchType.NONE
    if has_arrival:
        return ShiftMatchType.ARRIVAL if arrival_matches else ShiftMatchType.NONE
    if has_departure:
        return ShiftMatchType.DEPARTURE if departure_matches else ShiftMatchType.NONE
    return ShiftMatchType.NONE


def detect_shift(
    plan: DayPlanConfig,
    lookup: DayPlanLookup,
    *,
    first_arrival: int | None,
    last_departure: int | None,
) -> ShiftDetectionResult:
    if not plan.shift_detection.is_configured:
        return ShiftDetectionResult(plan=plan, matched_by=ShiftMatchType.NONE, is_original_plan=True)
    if first_arrival is None and last_departure is None:
        return ShiftDetectionResult(plan=plan, matched_by=ShiftMatchType.NONE, is_original_plan=True)

    own_match = _matches_plan(plan.shift_detection, first_arrival, last_departure)
    if own_match != ShiftMatchType.NONE:
        return ShiftDetectionResult(plan=plan, matched_by=own_match, is_original_plan=True)

    matches: list[tuple[DayPlanConfig, ShiftMatchType]] = []
    for alt_plan_id in plan.alternate_plan_ids:
        alt_plan = lookup.get(alt_plan_id)
        if alt_plan is None:
            raise ConfigurationError(
                f"{plan.plan_id}: alternate plan {alt_plan_id!r} is not configured",
                code="UNKNOWN_DAY_PLAN",
            )
        match_type = _matches_plan(alt_plan.shift_detection, first_arrival, last_departure)
        if match_type != ShiftMatchType.NONE:
            matches.append((alt_plan, match_type))

    matched_ids = list(dict.fromkeys(item.plan_id for item, _ in matches))
    if not matched_ids:
        return ShiftDetectionResult(
            plan=plan,
            matched_by=ShiftMatchType.NONE,
            is_original_plan=True,
            warnings=("NO_MATCHING_SHIFT",),
        )
    if len(matched_ids) > 1:
        raise AmbiguousShiftDetectionError(
            f"{plan.plan_id}: shift detection matches alternates {', '.join(matched_ids)}",
            plan_ids=matched_ids,
        )

    alt_plan, match_type = matches[0]
    return ShiftDetectionResult(plan=alt_plan, matched_by=match_type, is_original_plan=False)


def resolve_target_minutes(
    plan: DayPlanConfig,
    *,
    has_absence: bool,
    employee_master_target: int | None,
) -> int:
    # Employee master > absence-day target > regular target.
    if plan.from_employee_master and employee_master_target is not None:
        return employee_master_target
    if has_absence and plan.regular_hours_2 is not None:
        return plan.regular_hours_2
    if plan.regular_hours is None:
        raise ConfigurationError(
            f"{plan.plan_id}: no target minutes configured and no employee master value",
            code="MISSING_TARGET",
        )
    return plan.regular_hours


def resolve_day_plan(
    plan: DayPlanConfig,
    lookup: DayPlanLookup,
    *,
    first_arrival: int | None,
    last_departure: int | None,
    absence: AbsenceRecord | None = None,
    employee_master_target: int | None = None,
) -> ResolvedDayPlan:
    validate_day_plan(plan)
    detection = detect_shift(
        plan,
        lookup,
        first_arrival=first_arrival,
        last_departure=last_departure,
    )
    effective = detection.plan
    if not detection.is_original_plan:
        validate_day_plan(effective)
        logger.info(
            "shift_detected",
            extra={
                "base_plan_id": plan.plan_id,
                "plan_id": effective.plan_id,
                "matched_by": detection.matched_by.value,
            },
        )

    target = resolve_target_minutes(
        effective,
        has_absence=absence is not None,
        employee_master_target=employee_master_target,
    )
    return ResolvedDayPlan(
        plan=effective,
        base_plan_id=plan.plan_id,
        target_minutes=target,
        shift_detected=not detection.is_original_plan,
        matched_by=detection.matched_by,
        warnings=detection.warnings,
    )
