from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from timecalc.errors import (
    CalculationError,
    CarryOverUnresolvedError,
    ConfigurationError,
    RecalculationCancelledError,
)
from timecalc.models import (
    AbsenceRecord,
    BookingDirection,
    BookingEvent,
    BookingKind,
    CalculationFlags,
    CalculationStage,
    CappingSource,
    CarryOver,
    DailyCalculationResult,
    DayChangeBehavior,
    DayPlanConfig,
    HolidayRecord,
    WorkInterval,
)
from timecalc.services.absence_credit import (
    NoWorkCredit,
    resolve_no_work_credit,
    vacation_days_used,
)
from timecalc.services.bonuses import calculate_bonuses
from timecalc.services.booking_pairing import has_trailing_arrival, pair_bookings
from timecalc.services.breaks import calculate_break_deduction
from timecalc.services.day_plan_resolver import DayPlanLookup, resolve_day_plan
from timecalc.services.time_utils import local_date, minutes_since_day_start
from timecalc.services.time_windows import validate_booking_windows
from timecalc.services.tolerance_rounding import adjust_intervals, cap_to_evaluation_window

logger = logging.getLogger("timecalc.daily_calc")


@dataclass(frozen=True, slots=True)
class DayOutcome:
    day_date: date
    result: DailyCalculationResult | None = None
    error: CalculationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _work_bounds(day_date: date, events: Sequence[BookingEvent]) -> tuple[int | None, int | None]:
    arrivals = [
        minutes_since_day_start(day_date, event.timestamp)
        for event in events
        if event.kind == BookingKind.WORK and event.direction == BookingDirection.IN
    ]
    departures = [
        minutes_since_day_start(day_date, event.timestamp)
        for event in events
        if event.kind == BookingKind.WORK and event.direction == BookingDirection.OUT
    ]
    return (min(arrivals) if arrivals else None, max(departures) if departures else None)


def _adjusted_bounds(intervals: Sequence[WorkInterval]) -> tuple[int | None, int | None]:
    if not intervals:
        return None, None
    closed = [item for item in intervals if not item.is_open]
    return intervals[0].start, (closed[-1].end if closed else None)


def _dedupe(codes: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(codes))


def _off_day_result(employee_id: int, day_date: date, bookings: Sequence[BookingEvent]) -> DailyCalculationResult:
    warnings = ["OFF_DAY"]
    if bookings:
        warnings.append("BOOKINGS_ON_OFF_DAY")
    return DailyCalculationResult(
        employee_id=employee_id,
        day_date=day_date,
        plan_id=None,
        target_minutes=0,
        warnings=tuple(warnings),
    )


def calculate(
    employee_id: int,
    day_date: date,
    day_plan: DayPlanConfig | None,
    bookings: Iterable[BookingEvent],
    *,
    plans: DayPlanLookup | None = None,
    absence: AbsenceRecord | None = None,
    holiday: HolidayRecord | None = None,
    employee_master_target: int | None = None,
    next_day_bookings: Iterable[BookingEvent] = (),
    carry_in: CarryOver | None = None,
) -> DailyCalculationResult:
    """Run the daily pipeline for one employee and date.

    Returns a complete result or raises a ``CalculationError`` tagged with
    the date and the stage that failed.
    """
    bookings = list(bookings)
    if day_plan is None:
        return _off_day_result(employee_id, day_date, bookings)

    stage = CalculationStage.RESOLVE
    try:
        first_arrival, last_departure = _work_bounds(day_date, bookings)
        resolved = resolve_day_plan(
            day_plan,
            plans or {},
            first_arrival=first_arrival,
            last_departure=last_departure,
            absence=absence,
            employee_master_target=employee_master_target,
        )
        plan = resolved.plan
        target = resolved.target_minutes

        stage = CalculationStage.PAIR
        pairing = pair_bookings(
            day_date,
            bookings,
            day_change=plan.day_change_behavior,
            next_day_events=next_day_bookings,
            carry_in=carry_in,
        )

        stage = CalculationStage.TOLERANCE_ROUND
        adjusted = adjust_intervals(pairing.work_intervals, plan)
        adjusted_arrival, adjusted_departure = _adjusted_bounds(adjusted.intervals)
        window_codes: tuple[str, ...] = ()
        if adjusted.intervals:
            window_codes = validate_booking_windows(
                plan,
                first_arrival=adjusted_arrival,
                last_departure=adjusted_departure,
            )
        window = cap_to_evaluation_window(adjusted.intervals, plan)

        stage = CalculationStage.DEDUCT_BREAKS
        gross = sum(item.duration for item in window.intervals)
        breaks = calculate_break_deduction(plan.breaks, window.intervals, pairing.break_intervals)
        net = max(0, gross - breaks.deducted_minutes)
        cap_codes: list[str] = []
        capping = window.by_source()
        if plan.max_net_work_minutes is not None and net > plan.max_net_work_minutes:
            capping[CappingSource.MAX_NET_TIME.value] = net - plan.max_net_work_minutes
            net = plan.max_net_work_minutes
            cap_codes.append("MAX_NET_TIME_REACHED")
        if plan.min_work_minutes is not None and adjusted.intervals and net < plan.min_work_minutes:
            cap_codes.append("BELOW_MIN_WORK_TIME")

        stage = CalculationStage.ADD_BONUSES
        bonuses = calculate_bonuses(plan.bonuses, window.intervals, net_work_minutes=net, holiday=holiday)

        stage = CalculationStage.RESOLVE_ABSENCE
        credit = NoWorkCredit(credited_minutes=0)
        holiday_codes: list[str] = []
        if net == 0:
            has_work_bookings = bool(pairing.work_intervals) or any(
                event.kind == BookingKind.WORK for event in bookings
            )
            credit = resolve_no_work_credit(
                plan,
                target,
                absence=absence,
                holiday=holiday,
                has_work_bookings=has_work_bookings,
            )
        elif holiday is not None:
            holiday_codes.append("WORKED_ON_HOLIDAY")

        stage = CalculationStage.AGGREGATE
        credited = net + credit.credited_minutes
        balance = credited - target
        result = DailyCalculationResult(
            employee_id=employee_id,
            day_date=day_date,
            plan_id=plan.plan_id,
            target_minutes=target,
            intervals=window.intervals,
            adjustments=adjusted.adjustments,
            gross_minutes=gross,
            break_minutes=breaks.deducted_minutes,
            paid_break_minutes=breaks.paid_minutes,
            capped_minutes=sum(capping.values()),
            capping=capping,
            net_work_minutes=net,
            bonus_minutes=bonuses.total_minutes,
            bonus_accounts=dict(bonuses.accounts),
            absence_minutes=credit.credited_minutes,
            credited_minutes=credited,
            balance_minutes=balance,
            overtime_minutes=max(0, balance),
            undertime_minutes=max(0, -balance),
            vacation_days=vacation_days_used(plan, absence),
            flags=CalculationFlags(
                shift_detected=resolved.shift_detected,
                day_changed=pairing.day_changed,
                no_booking_triggered=credit.no_booking_triggered,
                rounding_applied=adjusted.rounding_applied,
            ),
            warnings=_dedupe(
                [
                    *resolved.warnings,
                    *pairing.warnings,
                    *window_codes,
                    *breaks.warnings,
                    *cap_codes,
                    *credit.warnings,
                    *holiday_codes,
                ]
            ),
            carry_over=pairing.carry_out,
        )
    except CalculationError as exc:
        exc.attach(day_date=day_date, stage=stage.value)
        logger.warning(
            "daily_calc_failed",
            extra={
                "employee_id": employee_id,
                "date": day_date.isoformat(),
                "plan_id": day_plan.plan_id,
                "error_code": exc.code,
                "stage": exc.stage,
            },
        )
        raise

    logger.debug(
        "daily_calc_completed",
        extra={
            "employee_id": employee_id,
            "date": day_date.isoformat(),
            "plan_id": result.plan_id,
            "net_work_minutes": result.net_work_minutes,
            "balance_minutes": result.balance_minutes,
        },
    )
    return result


def group_bookings_by_date(bookings: Iterable[BookingEvent]) -> dict[date, list[BookingEvent]]:
    grouped: dict[date, list[BookingEvent]] = defaultdict(list)
    for event in bookings:
        grouped[local_date(event.timestamp)].append(event)
    return dict(grouped)


def iter_dates(start_date: date, end_date: date) -> list[date]:
    days = (end_date - start_date).days
    return [start_date + timedelta(days=offset) for offset in range(days + 1)]


def _carries_forward(plan: DayPlanConfig | None, day_date: date, events: Sequence[BookingEvent]) -> bool:
    if plan is None or plan.day_change_behavior == DayChangeBehavior.NONE:
        return False
    return has_trailing_arrival(day_date, events)


def calculate_range(
    employee_id: int,
    start_date: date,
    end_date: date,
    *,
    day_plan_ids: Mapping[date, str | None],
    plans: DayPlanLookup,
    bookings: Iterable[BookingEvent],
    absences: Mapping[date, AbsenceRecord] | None = None,
    holidays: Mapping[date, HolidayRecord] | None = None,
    employee_master_target: int | None = None,
    carry_in: CarryOver | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> list[DayOutcome]:
    """Calculate ``start_date..end_date`` in ascending order.

    Per-date failures are collected, not raised. A failed date whose shift
    runs past midnight marks the following date(s) as unresolved instead of
    letting them compute without the carried interval.
    """
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")

    absences = absences or {}
    holidays = holidays or {}
    by_date = group_bookings_by_date(bookings)
    outcomes: list[DayOutcome] = []
    carry = carry_in
    blocked_by: date | None = None

    dates = iter_dates(start_date, end_date)
    for index, day_date in enumerate(dates):
        if should_stop is not None and should_stop():
            for remaining in dates[index:]:
                outcomes.append(
                    DayOutcome(
                        day_date=remaining,
                        error=RecalculationCancelledError("Recalculation cancelled", day_date=remaining),
                    )
                )
            break

        day_bookings = by_date.get(day_date, [])
        plan_id = day_plan_ids.get(day_date)
        plan = plans.get(plan_id) if plan_id is not None else None

        if blocked_by is not None:
            error = CarryOverUnresolvedError(
                f"Previous shift from {blocked_by.isoformat()} could not be resolved",
                blocked_by=blocked_by,
                day_date=day_date,
                stage=CalculationStage.PAIR.value,
            )
            logger.warning(
                "daily_calc_failed",
                extra={
                    "employee_id": employee_id,
                    "date": day_date.isoformat(),
                    "plan_id": plan_id,
                    "error_code": error.code,
                    "stage": error.stage,
                },
            )
            outcomes.append(DayOutcome(day_date=day_date, error=error))
            carry = None
            if not _carries_forward(plan, day_date, day_bookings):
                blocked_by = None
            continue

        try:
            if plan_id is not None and plan is None:
                raise ConfigurationError(
                    f"Day plan {plan_id!r} is not configured",
                    code="UNKNOWN_DAY_PLAN",
                    day_date=day_date,
                    stage=CalculationStage.RESOLVE.value,
                )
            result = calculate(
                employee_id,
                day_date,
                plan,
                day_bookings,
                plans=plans,
                absence=absences.get(day_date),
                holiday=holidays.get(day_date),
                employee_master_target=employee_master_target,
                next_day_bookings=by_date.get(day_date + timedelta(days=1), []),
                carry_in=carry,
            )
        except CalculationError as exc:
            outcomes.append(DayOutcome(day_date=day_date, error=exc))
            carry = None
            if _carries_forward(plan, day_date, day_bookings):
                blocked_by = day_date
            continue

        outcomes.append(DayOutcome(day_date=day_date, result=result))
        carry = result.carry_over

    return outcomes
