from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from timecalc.models import (
    AbsencePortion,
    AbsenceRecord,
    BonusCalculationType,
    BonusRule,
    BookingDirection,
    BookingEvent,
    BookingKind,
    DayChangeBehavior,
    DayPlanConfig,
    FixedBreak,
    HalfDayPeriod,
    HolidayRecord,
    MinimumBreak,
    NoBookingBehavior,
    PlanType,
    RoundingRule,
    RoundingType,
    ShiftDetectionWindows,
    ToleranceConfig,
    VariableBreak,
)
from timecalc.services.daily_calc import DayOutcome
from timecalc.services.day_plan_resolver import build_plan_lookup
from timecalc.services.recalc import EmployeeRangeJob, EmployeeRangeResult

MinuteOfDay = Annotated[int, Field(ge=0, le=1440)]


def _check_order(name: str, start: int | None, end: int | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValueError(f"{name}: start must not be after end")


class RoundingRuleIn(BaseModel):
    type: RoundingType = RoundingType.NONE
    interval: int | None = Field(default=None, ge=1)
    add_value: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _validate_parameters(self) -> "RoundingRuleIn":
        if self.type in (RoundingType.UP, RoundingType.DOWN, RoundingType.NEAREST) and self.interval is None:
            raise ValueError(f"Rounding '{self.type.value}' requires interval.")
        if self.type in (RoundingType.ADD, RoundingType.SUBTRACT) and self.add_value is None:
            raise ValueError(f"Rounding '{self.type.value}' requires add_value.")
        return self

    def to_model(self) -> RoundingRule:
        return RoundingRule(type=self.type, interval=self.interval, add_value=self.add_value)


class ToleranceIn(BaseModel):
    come_plus: int = Field(default=0, ge=0)
    come_minus: int = Field(default=0, ge=0)
    go_plus: int = Field(default=0, ge=0)
    go_minus: int = Field(default=0, ge=0)

    def to_model(self) -> ToleranceConfig:
        return ToleranceConfig(
            come_plus=self.come_plus,
            come_minus=self.come_minus,
            go_plus=self.go_plus,
            go_minus=self.go_minus,
        )


class FixedBreakIn(BaseModel):
    kind: Literal["fixed"] = "fixed"
    start: MinuteOfDay
    end: MinuteOfDay
    duration_minutes: int = Field(ge=0)
    is_paid: bool = False

    @model_validator(mode="after")
    def _validate_window(self) -> "FixedBreakIn":
        if self.start >= self.end:
            raise ValueError("Fixed break start must be before end.")
        return self

    def to_model(self) -> FixedBreak:
        return FixedBreak(
            start=self.start,
            end=self.end,
            duration_minutes=self.duration_minutes,
            is_paid=self.is_paid,
        )


class VariableBreakIn(BaseModel):
    kind: Literal["variable"] = "variable"
    duration_minutes: int = Field(ge=0)
    min_minutes: int | None = Field(default=None, ge=0)
    max_minutes: int | None = Field(default=None, ge=0)
    auto_deduct: bool = True
    is_paid: bool = False

    @model_validator(mode="after")
    def _validate_bounds(self) -> "VariableBreakIn":
        _check_order("variable break bounds", self.min_minutes, self.max_minutes)
        return self

    def to_model(self) -> VariableBreak:
        return VariableBreak(
            duration_minutes=self.duration_minutes,
            min_minutes=self.min_minutes,
            max_minutes=self.max_minutes,
            auto_deduct=self.auto_deduct,
            is_paid=self.is_paid,
        )


class MinimumBreakIn(BaseModel):
    kind: Literal["minimum"] = "minimum"
    after_work_minutes: int = Field(ge=0)
    duration_minutes: int = Field(ge=0)
    proportional_near_threshold: bool = False
    is_paid: bool = False

    def to_model(self) -> MinimumBreak:
        return MinimumBreak(
            after_work_minutes=self.after_work_minutes,
            duration_minutes=self.duration_minutes,
            proportional_near_threshold=self.proportional_near_threshold,
            is_paid=self.is_paid,
        )


BreakRuleIn = Annotated[FixedBreakIn | VariableBreakIn | MinimumBreakIn, Field(discriminator="kind")]


class BonusRuleIn(BaseModel):
    account: str = Field(min_length=1, max_length=64)
    time_from: MinuteOfDay
    time_to: MinuteOfDay
    calculation_type: BonusCalculationType = BonusCalculationType.PER_MINUTE
    value_minutes: int = Field(default=1, ge=0)
    min_work_minutes: int | None = Field(default=None, ge=0)
    applies_on_workday: bool = True
    applies_on_holiday: bool = False
    holiday_categories: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_window(self) -> "BonusRuleIn":
        if self.time_from == self.time_to:
            raise ValueError("Bonus window must not be empty.")
        if any(category not in (1, 2, 3) for category in self.holiday_categories):
            raise ValueError("Holiday categories must be 1, 2 or 3.")
        return self

    def to_model(self) -> BonusRule:
        return BonusRule(
            account=self.account,
            time_from=self.time_from,
            time_to=self.time_to,
            calculation_type=self.calculation_type,
            value_minutes=self.value_minutes,
            min_work_minutes=self.min_work_minutes,
            applies_on_workday=self.applies_on_workday,
            applies_on_holiday=self.applies_on_holiday,
            holiday_categories=tuple(self.holiday_categories),
        )


class ShiftDetectionIn(BaseModel):
    arrive_from: MinuteOfDay | None = None
    arrive_to: MinuteOfDay | None = None
    depart_from: MinuteOfDay | None = None
    depart_to: MinuteOfDay | None = None

    @model_validator(mode="after")
    def _validate_pairs(self) -> "ShiftDetectionIn":
        if (self.arrive_from is None) != (self.arrive_to is None):
            raise ValueError("Shift detection arrival window needs both bounds.")
        if (self.depart_from is None) != (self.depart_to is None):
            raise ValueError("Shift detection departure window needs both bounds.")
        _check_order("shift detection arrival window", self.arrive_from, self.arrive_to)
        _check_order("shift detection departure window", self.depart_from, self.depart_to)
        return self

    def to_model(self) -> ShiftDetectionWindows:
        return ShiftDetectionWindows(
            arrive_from=self.arrive_from,
            arrive_to=self.arrive_to,
            depart_from=self.depart_from,
            depart_to=self.depart_to,
        )


class DayPlanConfigIn(BaseModel):
    plan_id: str = Field(min_length=1, max_length=64)
    plan_type: PlanType = PlanType.FIXED
    come_from: MinuteOfDay | None = None
    come_to: MinuteOfDay | None = None
    go_from: MinuteOfDay | None = None
    go_to: MinuteOfDay | None = None
    core_start: MinuteOfDay | None = None
    core_end: MinuteOfDay | None = None
    regular_hours: int | None = Field(default=480, ge=0)
    regular_hours_2: int | None = Field(default=None, ge=0)
    from_employee_master: bool = False
    tolerance: ToleranceIn = Field(default_factory=ToleranceIn)
    variable_work_time: bool = False
    rounding_come: RoundingRuleIn = Field(default_factory=RoundingRuleIn)
    rounding_go: RoundingRuleIn = Field(default_factory=RoundingRuleIn)
    round_all_bookings: bool = False
    breaks: list[BreakRuleIn] = Field(default_factory=list)
    bonuses: list[BonusRuleIn] = Field(default_factory=list)
    holiday_credit_cat1: int | None = Field(default=None, ge=0)
    holiday_credit_cat2: int | None = Field(default=None, ge=0)
    holiday_credit_cat3: int | None = Field(default=None, ge=0)
    vacation_deduction: Decimal = Field(default=Decimal("1.00"), ge=0)
    no_booking_behavior: NoBookingBehavior = NoBookingBehavior.ERROR
    day_change_behavior: DayChangeBehavior = DayChangeBehavior.NONE
    shift_detection: ShiftDetectionIn = Field(default_factory=ShiftDetectionIn)
    alternate_plan_ids: list[str] = Field(default_factory=list, max_length=6)
    min_work_minutes: int | None = Field(default=None, ge=0)
    max_net_work_minutes: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _validate_windows(self) -> "DayPlanConfigIn":
        _check_order("arrival window", self.come_from, self.come_to)
        _check_order("departure window", self.go_from, self.go_to)
        _check_order("core time", self.core_start, self.core_end)
        if self.plan_type == PlanType.FLEXTIME and self.come_to is None:
            raise ValueError("Flextime plans require come_to.")
        if self.plan_id in self.alternate_plan_ids:
            raise ValueError("A plan cannot list itself as an alternate.")
        return self

    def to_config(self) -> DayPlanConfig:
        return DayPlanConfig(
            plan_id=self.plan_id,
            plan_type=self.plan_type,
            come_from=self.come_from,
            come_to=self.come_to,
            go_from=self.go_from,
            go_to=self.go_to,
            core_start=self.core_start,
            core_end=self.core_end,
            regular_hours=self.regular_hours,
            regular_hours_2=self.regular_hours_2,
            from_employee_master=self.from_employee_master,
            tolerance=self.tolerance.to_model(),
            variable_work_time=self.variable_work_time,
            rounding_come=self.rounding_come.to_model(),
            rounding_go=self.rounding_go.to_model(),
            round_all_bookings=self.round_all_bookings,
            breaks=tuple(item.to_model() for item in self.breaks),
            bonuses=tuple(item.to_model() for item in self.bonuses),
            holiday_credit_cat1=self.holiday_credit_cat1,
            holiday_credit_cat2=self.holiday_credit_cat2,
            holiday_credit_cat3=self.holiday_credit_cat3,
            vacation_deduction=self.vacation_deduction,
            no_booking_behavior=self.no_booking_behavior,
            day_change_behavior=self.day_change_behavior,
            shift_detection=self.shift_detection.to_model(),
            alternate_plan_ids=tuple(self.alternate_plan_ids),
            min_work_minutes=self.min_work_minutes,
            max_net_work_minutes=self.max_net_work_minutes,
        )


class BookingEventIn(BaseModel):
    timestamp: datetime
    direction: BookingDirection
    kind: BookingKind = BookingKind.WORK
    booking_id: str | None = None

    def to_model(self) -> BookingEvent:
        return BookingEvent(
            timestamp=self.timestamp,
            direction=self.direction,
            kind=self.kind,
            booking_id=self.booking_id,
        )


class AbsenceRecordIn(BaseModel):
    day_date: date
    absence_type_id: str = Field(min_length=1)
    duration: Decimal = Decimal("1")
    half_day_period: HalfDayPeriod | None = None
    portion: AbsencePortion = AbsencePortion.FULL
    priority: int = Field(default=0, ge=0)
    deducts_vacation: bool = False

    @model_validator(mode="after")
    def _validate_duration(self) -> "AbsenceRecordIn":
        if self.duration not in (Decimal("1"), Decimal("0.5")):
            raise ValueError("Absence duration must be 1 or 0.5.")
        if (self.duration == Decimal("0.5")) != (self.half_day_period is not None):
            raise ValueError("half_day_period is required for half days and only for half days.")
        return self

    def to_model(self) -> AbsenceRecord:
        return AbsenceRecord(
            absence_type_id=self.absence_type_id,
            duration=self.duration,
            half_day_period=self.half_day_period,
            portion=self.portion,
            priority=self.priority,
            deducts_vacation=self.deducts_vacation,
        )


class HolidayRecordIn(BaseModel):
    day_date: date
    category: int = Field(ge=1, le=3)
    name: str | None = None

    def to_model(self) -> HolidayRecord:
        return HolidayRecord(category=self.category, name=self.name)


class EmployeeRangeIn(BaseModel):
    employee_id: int = Field(ge=1)
    start_date: date
    end_date: date
    day_plan_ids: dict[date, str | None] = Field(default_factory=dict)
    bookings: list[BookingEventIn] = Field(default_factory=list)
    absences: list[AbsenceRecordIn] = Field(default_factory=list)
    employee_master_target: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _validate_range(self) -> "EmployeeRangeIn":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date.")
        absence_dates = [item.day_date for item in self.absences]
        if len(absence_dates) != len(set(absence_dates)):
            raise ValueError("At most one absence per date is allowed.")
        return self

    def to_job(self, holidays: dict[date, HolidayRecord]) -> EmployeeRangeJob:
        return EmployeeRangeJob(
            employee_id=self.employee_id,
            start_date=self.start_date,
            end_date=self.end_date,
            day_plan_ids=dict(self.day_plan_ids),
            bookings=tuple(item.to_model() for item in self.bookings),
            absences={item.day_date: item.to_model() for item in self.absences},
            holidays=holidays,
            employee_master_target=self.employee_master_target,
        )


class CalculationSnapshotIn(BaseModel):
    day_plans: list[DayPlanConfigIn] = Field(default_factory=list)
    holidays: list[HolidayRecordIn] = Field(default_factory=list)
    employees: list[EmployeeRangeIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_unique_keys(self) -> "CalculationSnapshotIn":
        plan_ids = [item.plan_id for item in self.day_plans]
        if len(plan_ids) != len(set(plan_ids)):
            raise ValueError("Day plan ids must be unique.")
        holiday_dates = [item.day_date for item in self.holidays]
        if len(holiday_dates) != len(set(holiday_dates)):
            raise ValueError("At most one holiday per date is allowed.")
        employee_ids = [item.employee_id for item in self.employees]
        if len(employee_ids) != len(set(employee_ids)):
            raise ValueError("Each employee may appear only once.")
        return self

    def to_plan_lookup(self) -> dict[str, DayPlanConfig]:
        return build_plan_lookup(item.to_config() for item in self.day_plans)

    def to_jobs(self) -> list[EmployeeRangeJob]:
        holidays = {item.day_date: item.to_model() for item in self.holidays}
        return [item.to_job(holidays) for item in self.employees]


class WorkIntervalRead(BaseModel):
    start: int
    end: int | None = None
    start_synthetic: bool = False
    end_synthetic: bool = False

    model_config = ConfigDict(from_attributes=True)


class TimeAdjustmentRead(BaseModel):
    direction: BookingDirection
    original: int
    tolerated: int
    adjusted: int

    model_config = ConfigDict(from_attributes=True)


class CalculationFlagsRead(BaseModel):
    shift_detected: bool
    day_changed: bool
    no_booking_triggered: bool
    rounding_applied: bool

    model_config = ConfigDict(from_attributes=True)


class DailyCalculationRead(BaseModel):
    employee_id: int
    day_date: date
    plan_id: str | None = None
    target_minutes: int
    intervals: list[WorkIntervalRead] = Field(default_factory=list)
    adjustments: list[TimeAdjustmentRead] = Field(default_factory=list)
    gross_minutes: int
    break_minutes: int
    paid_break_minutes: int
    capped_minutes: int
    capping: dict[str, int] = Field(default_factory=dict)
    net_work_minutes: int
    bonus_minutes: int
    bonus_accounts: dict[str, int] = Field(default_factory=dict)
    absence_minutes: int
    credited_minutes: int
    balance_minutes: int
    overtime_minutes: int
    undertime_minutes: int
    vacation_days: Decimal
    flags: CalculationFlagsRead
    warnings: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CalculationErrorRead(BaseModel):
    code: str
    message: str
    day_date: date | None = None
    stage: str | None = None
    plan_ids: list[str] | None = None
    blocked_by: date | None = None


class DayOutcomeRead(BaseModel):
    day_date: date
    ok: bool
    result: DailyCalculationRead | None = None
    error: CalculationErrorRead | None = None

    @classmethod
    def from_outcome(cls, outcome: DayOutcome) -> "DayOutcomeRead":
        return cls(
            day_date=outcome.day_date,
            ok=outcome.ok,
            result=DailyCalculationRead.model_validate(outcome.result) if outcome.result is not None else None,
            error=CalculationErrorRead.model_validate(outcome.error.to_dict()) if outcome.error is not None else None,
        )


class EmployeeRangeRead(BaseModel):
    employee_id: int
    succeeded: int
    failed: int
    cancelled: bool
    outcomes: list[DayOutcomeRead] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: EmployeeRangeResult) -> "EmployeeRangeRead":
        return cls(
            employee_id=result.employee_id,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled,
            outcomes=[DayOutcomeRead.from_outcome(item) for item in result.outcomes],
        )


def summarize_batch(results: dict[int, EmployeeRangeResult]) -> dict[str, Any]:
    employees = [EmployeeRangeRead.from_result(results[key]) for key in sorted(results)]
    return {
        "ok": all(item.failed == 0 for item in employees),
        "employees": [item.model_dump(mode="json") for item in employees],
    }
