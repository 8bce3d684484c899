from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar


class PlanType(str, enum.Enum):
    FIXED = "fixed"
    FLEXTIME = "flextime"


class RoundingType(str, enum.Enum):
    NONE = "none"
    UP = "up"
    DOWN = "down"
    NEAREST = "nearest"
    ADD = "add"
    SUBTRACT = "subtract"


class BreakKind(str, enum.Enum):
    FIXED = "fixed"
    VARIABLE = "variable"
    MINIMUM = "minimum"


class BonusCalculationType(str, enum.Enum):
    FIXED = "fixed"
    PER_MINUTE = "per_minute"
    PERCENTAGE = "percentage"


class NoBookingBehavior(str, enum.Enum):
    ERROR = "error"
    DEDUCT_TARGET = "deduct_target"
    VOCATIONAL_SCHOOL = "vocational_school"
    ADOPT_TARGET = "adopt_target"
    TARGET_WITH_ORDER = "target_with_order"


class DayChangeBehavior(str, enum.Enum):
    NONE = "none"
    AT_ARRIVAL = "at_arrival"
    AT_DEPARTURE = "at_departure"
    AUTO_COMPLETE = "auto_complete"


class BookingDirection(str, enum.Enum):
    IN = "in"
    OUT = "out"


class BookingKind(str, enum.Enum):
    WORK = "work"
    BREAK = "break"


class AbsencePortion(str, enum.Enum):
    NONE = "none"
    HALF = "half"
    FULL = "full"


class HalfDayPeriod(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"


class ShiftMatchType(str, enum.Enum):
    NONE = "none"
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    BOTH = "both"


class CarryOverKind(str, enum.Enum):
    CONSUMED_DEPARTURE = "consumed_departure"
    PENDING_ARRIVAL = "pending_arrival"
    AUTO_COMPLETED = "auto_completed"


class CappingSource(str, enum.Enum):
    EARLY_ARRIVAL = "early_arrival"
    LATE_LEAVE = "late_leave"
    MAX_NET_TIME = "max_net_time"


class CalculationStage(str, enum.Enum):
    RESOLVE = "resolve"
    PAIR = "pair"
    TOLERANCE_ROUND = "tolerance_round"
    DEDUCT_BREAKS = "deduct_breaks"
    ADD_BONUSES = "add_bonuses"
    RESOLVE_ABSENCE = "resolve_absence"
    AGGREGATE = "aggregate"


_PORTION_MULTIPLIERS: dict[AbsencePortion, Decimal] = {
    AbsencePortion.NONE: Decimal("0"),
    AbsencePortion.HALF: Decimal("0.5"),
    AbsencePortion.FULL: Decimal("1"),
}


@dataclass(frozen=True, slots=True)
class RoundingRule:
    type: RoundingType = RoundingType.NONE
    interval: int | None = None
    add_value: int | None = None


@dataclass(frozen=True, slots=True)
class ToleranceConfig:
    come_plus: int = 0
    come_minus: int = 0
    go_plus: int = 0
    go_minus: int = 0


@dataclass(frozen=True, slots=True)
class FixedBreak:
    kind: ClassVar[BreakKind] = BreakKind.FIXED

    start: int
    end: int
    duration_minutes: int
    is_paid: bool = False


@dataclass(frozen=True, slots=True)
class VariableBreak:
    kind: ClassVar[BreakKind] = BreakKind.VARIABLE

    duration_minutes: int
    min_minutes: int | None = None
    max_minutes: int | None = None
    auto_deduct: bool = True
    is_paid: bool = False


@dataclass(frozen=True, slots=True)
class MinimumBreak:
    kind: ClassVar[BreakKind] = BreakKind.MINIMUM

    after_work_minutes: int
    duration_minutes: int
    proportional_near_threshold: bool = False
    is_paid: bool = False


BreakRule = FixedBreak | VariableBreak | MinimumBreak


@dataclass(frozen=True, slots=True)
class BonusRule:
    account: str
    time_from: int
    time_to: int
    calculation_type: BonusCalculationType = BonusCalculationType.PER_MINUTE
    value_minutes: int = 1
    min_work_minutes: int | None = None
    applies_on_workday: bool = True
    applies_on_holiday: bool = False
    holiday_categories: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class ShiftDetectionWindows:
    arrive_from: int | None = None
    arrive_to: int | None = None
    depart_from: int | None = None
    depart_to: int | None = None

    @property
    def has_arrival_window(self) -> bool:
        return self.arrive_from is not None and self.arrive_to is not None

    @property
    def has_departure_window(self) -> bool:
        return self.depart_from is not None and self.depart_to is not None

    @property
    def is_configured(self) -> bool:
        return any(
            value is not None
            for value in (self.arrive_from, self.arrive_to, self.depart_from, self.depart_to)
        )


@dataclass(frozen=True, slots=True)
class DayPlanConfig:
    """Immutable day-plan snapshot. All times are minutes from midnight."""

    plan_id: str
    plan_type: PlanType = PlanType.FIXED
    come_from: int | None = None
    come_to: int | None = None
    go_from: int | None = None
    go_to: int | None = None
    core_start: int | None = None
    core_end: int | None = None
    regular_hours: int | None = 480
    regular_hours_2: int | None = None
    from_employee_master: bool = False
    tolerance: ToleranceConfig = field(default_factory=ToleranceConfig)
    variable_work_time: bool = False
    rounding_come: RoundingRule = field(default_factory=RoundingRule)
    rounding_go: RoundingRule = field(default_factory=RoundingRule)
    round_all_bookings: bool = False
    breaks: tuple[BreakRule, ...] = ()
    bonuses: tuple[BonusRule, ...] = ()
    holiday_credit_cat1: int | None = None
    holiday_credit_cat2: int | None = None
    holiday_credit_cat3: int | None = None
    vacation_deduction: Decimal = Decimal("1.00")
    no_booking_behavior: NoBookingBehavior = NoBookingBehavior.ERROR
    day_change_behavior: DayChangeBehavior = DayChangeBehavior.NONE
    shift_detection: ShiftDetectionWindows = field(default_factory=ShiftDetectionWindows)
    alternate_plan_ids: tuple[str, ...] = ()
    min_work_minutes: int | None = None
    max_net_work_minutes: int | None = None

    def holiday_credit(self, category: int) -> int:
        credits = {
            1: self.holiday_credit_cat1,
            2: self.holiday_credit_cat2,
            3: self.holiday_credit_cat3,
        }
        return credits.get(category) or 0


@dataclass(frozen=True, slots=True)
class BookingEvent:
    """A raw clock event.

    Work events pair IN (arrival) -> OUT (departure). Break events pair the
    other way round: OUT starts the break, IN ends it.
    """

    timestamp: datetime
    direction: BookingDirection
    kind: BookingKind = BookingKind.WORK
    booking_id: str | None = None


@dataclass(frozen=True, slots=True)
class AbsenceRecord:
    absence_type_id: str
    duration: Decimal = Decimal("1")
    half_day_period: HalfDayPeriod | None = None
    portion: AbsencePortion = AbsencePortion.FULL
    priority: int = 0
    deducts_vacation: bool = False

    @property
    def credit_multiplier(self) -> Decimal:
        return _PORTION_MULTIPLIERS[self.portion]


@dataclass(frozen=True, slots=True)
class HolidayRecord:
    category: int
    name: str | None = None


@dataclass(frozen=True, slots=True)
class WorkInterval:
    start: int
    end: int | None
    start_synthetic: bool = False
    end_synthetic: bool = False

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> int:
        if self.end is None:
            return 0
        return max(0, self.end - self.start)


@dataclass(frozen=True, slots=True)
class BreakInterval:
    start: int
    end: int

    @property
    def duration(self) -> int:
        return max(0, self.end - self.start)


@dataclass(frozen=True, slots=True)
class TimeAdjustment:
    direction: BookingDirection
    original: int
    tolerated: int
    adjusted: int

    @property
    def tolerance_applied(self) -> bool:
        return self.tolerated != self.original

    @property
    def rounding_applied(self) -> bool:
        return self.adjusted != self.tolerated


@dataclass(frozen=True, slots=True)
class CarryOver:
    """Trailing state one date hands to the next when a shift crosses midnight.

    ``arrival_minutes`` is relative to ``source_date``.
    """

    source_date: date
    kind: CarryOverKind
    arrival_minutes: int
    event: BookingEvent | None = None


@dataclass(frozen=True, slots=True)
class CalculationFlags:
    shift_detected: bool = False
    day_changed: bool = False
    no_booking_triggered: bool = False
    rounding_applied: bool = False


@dataclass(frozen=True, slots=True)
class DailyCalculationResult:
    employee_id: int
    day_date: date
    plan_id: str | None
    target_minutes: int
    intervals: tuple[WorkInterval, ...] = ()
    adjustments: tuple[TimeAdjustment, ...] = ()
    gross_minutes: int = 0
    break_minutes: int = 0
    paid_break_minutes: int = 0
    capped_minutes: int = 0
    capping: Mapping[str, int] = field(default_factory=dict)
    net_work_minutes: int = 0
    bonus_minutes: int = 0
    bonus_accounts: Mapping[str, int] = field(default_factory=dict)
    absence_minutes: int = 0
    credited_minutes: int = 0
    balance_minutes: int = 0
    overtime_minutes: int = 0
    undertime_minutes: int = 0
    vacation_days: Decimal = Decimal("0")
    flags: CalculationFlags = field(default_factory=CalculationFlags)
    warnings: tuple[str, ...] = ()
    carry_over: CarryOver | None = None
