from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from timecalc.errors import ConfigurationError, NoBookingPolicyError
from timecalc.models import AbsenceRecord, DayPlanConfig, HolidayRecord, NoBookingBehavior

_ALLOWED_DURATIONS = {Decimal("1"), Decimal("0.5")}


class CreditSource(str, enum.Enum):
    NONE = "none"
    ABSENCE = "absence"
    HOLIDAY = "holiday"
    NO_BOOKING = "no_booking"


@dataclass(frozen=True, slots=True)
class NoWorkCredit:
    credited_minutes: int
    source: CreditSource = CreditSource.NONE
    no_booking_triggered: bool = False
    warnings: tuple[str, ...] = ()


def validate_absence(absence: AbsenceRecord) -> None:
    if absence.duration not in _ALLOWED_DURATIONS:
        raise ConfigurationError(
            f"Absence {absence.absence_type_id}: duration must be 1 or 0.5, got {absence.duration}",
            code="INVALID_ABSENCE",
        )
    is_half_day = absence.duration == Decimal("0.5")
    if is_half_day != (absence.half_day_period is not None):
        raise ConfigurationError(
            f"Absence {absence.absence_type_id}: half-day period is required for, and only for, half days",
            code="INVALID_ABSENCE",
        )


def validate_holiday(holiday: HolidayRecord) -> None:
    if holiday.category not in (1, 2, 3):
        raise ConfigurationError(
            f"Holiday category must be 1, 2 or 3, got {holiday.category}",
            code="INVALID_HOLIDAY",
        )


def absence_credit_minutes(target_minutes: int, absence: AbsenceRecord) -> int:
    """target x portion multiplier x duration, floored to whole minutes."""
    credit = Decimal(target_minutes) * absence.credit_multiplier * absence.duration
    return int(credit.to_integral_value(rounding=ROUND_FLOOR))


def vacation_days_used(plan: DayPlanConfig, absence: AbsenceRecord | None) -> Decimal:
    if absence is None or not absence.deducts_vacation:
        return Decimal("0")
    return plan.vacation_deduction * absence.duration


def _apply_no_booking_behavior(plan: DayPlanConfig, target_minutes: int) -> NoWorkCredit:
    match plan.no_booking_behavior:
        case NoBookingBehavior.ERROR:
            raise NoBookingPolicyError(f"{plan.plan_id}: no bookings, absence or holiday")
        case NoBookingBehavior.DEDUCT_TARGET:
            return NoWorkCredit(
                credited_minutes=0,
                source=CreditSource.NO_BOOKING,
                no_booking_triggered=True,
                warnings=("NO_BOOKINGS_DEDUCTED",),
            )
        case NoBookingBehavior.VOCATIONAL_SCHOOL:
            return NoWorkCredit(
                credited_minutes=target_minutes,
                source=CreditSource.NO_BOOKING,
                no_booking_triggered=True,
                warnings=("VOCATIONAL_SCHOOL",),
            )
        case NoBookingBehavior.ADOPT_TARGET:
            return NoWorkCredit(
                credited_minutes=target_minutes,
                source=CreditSource.NO_BOOKING,
                no_booking_triggered=True,
                warnings=("NO_BOOKINGS_CREDITED",),
            )
        case NoBookingBehavior.TARGET_WITH_ORDER:
            # Order booking itself is created downstream.
            return NoWorkCredit(
                credited_minutes=target_minutes,
                source=CreditSource.NO_BOOKING,
                no_booking_triggered=True,
                warnings=("NO_BOOKINGS_CREDITED", "ORDER_BOOKING_REQUIRED"),
            )
    raise ConfigurationError(
        f"{plan.plan_id}: unknown no-booking behavior {plan.no_booking_behavior!r}",
        code="INVALID_NO_BOOKING_BEHAVIOR",
    )


def resolve_no_work_credit(
    plan: DayPlanConfig,
    target_minutes: int,
    *,
    absence: AbsenceRecord | None = None,
    holiday: HolidayRecord | None = None,
    has_work_bookings: bool = False,
) -> NoWorkCredit:
    """Credit for a date without net work.

    Holiday beats absence unless the absence has a positive priority. The
    no-booking policy only kicks in when there is not a single work booking.
    """
    if absence is not None:
        validate_absence(absence)
    if holiday is not None:
        validate_holiday(holiday)

    if absence is not None and (holiday is None or absence.priority > 0):
        warnings = ("ABSENCE_ON_HOLIDAY",) if holiday is not None else ()
        return NoWorkCredit(
            credited_minutes=absence_credit_minutes(target_minutes, absence),
            source=CreditSource.ABSENCE,
            warnings=warnings,
        )
    if holiday is not None:
        return NoWorkCredit(
            credited_minutes=plan.holiday_credit(holiday.category),
            source=CreditSource.HOLIDAY,
            warnings=("HOLIDAY",),
        )
    if has_work_bookings:
        return NoWorkCredit(credited_minutes=0)
    return _apply_no_booking_behavior(plan, target_minutes)
