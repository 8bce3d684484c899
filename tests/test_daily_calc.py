from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta

from timecalc.errors import CarryOverUnresolvedError, ConfigurationError, NoBookingPolicyError
from timecalc.models import (
    AbsenceRecord,
    BookingDirection,
    BookingEvent,
    DayChangeBehavior,
    DayPlanConfig,
    FixedBreak,
    HolidayRecord,
    NoBookingBehavior,
    RoundingRule,
    RoundingType,
    ShiftDetectionWindows,
    ToleranceConfig,
    WorkInterval,
)
from timecalc.services.daily_calc import calculate, calculate_range

DAY = date(2026, 3, 2)

STANDARD = DayPlanConfig(
    plan_id="STANDARD",
    come_from=480,
    go_from=960,
    go_to=1020,
    regular_hours=480,
    breaks=(FixedBreak(start=720, end=750, duration_minutes=30),),
    holiday_credit_cat1=480,
    no_booking_behavior=NoBookingBehavior.DEDUCT_TARGET,
)


def _event(day: date, hour: int, minute: int, direction: BookingDirection) -> BookingEvent:
    return BookingEvent(timestamp=datetime(day.year, day.month, day.day, hour, minute), direction=direction)


def _in(hour: int, minute: int = 0, day: date = DAY) -> BookingEvent:
    return _event(day, hour, minute, BookingDirection.IN)


def _out(hour: int, minute: int = 0, day: date = DAY) -> BookingEvent:
    return _event(day, hour, minute, BookingDirection.OUT)


class DailyCalculationTests(unittest.TestCase):
    def test_regular_day(self) -> None:
        result = calculate(7, DAY, STANDARD, [_in(8), _out(17)])

        self.assertEqual(result.plan_id, "STANDARD")
        self.assertEqual(result.gross_minutes, 540)
        self.assertEqual(result.break_minutes, 30)
        self.assertEqual(result.net_work_minutes, 510)
        self.assertEqual(result.credited_minutes, 510)
        self.assertEqual(result.balance_minutes, 30)
        self.assertEqual(result.overtime_minutes, 30)
        self.assertEqual(result.undertime_minutes, 0)
        self.assertEqual(result.warnings, ())

    def test_arrival_within_tolerance_is_snapped_then_rounded(self) -> None:
        plan = DayPlanConfig(
            plan_id="A",
            come_from=480,
            tolerance=ToleranceConfig(come_plus=10),
            rounding_come=RoundingRule(type=RoundingType.NEAREST, interval=15),
        )
        result = calculate(7, DAY, plan, [_in(8, 7), _out(16)])

        self.assertEqual(result.intervals, (WorkInterval(start=480, end=960),))
        self.assertFalse(result.flags.rounding_applied)

    def test_departure_rounded_up(self) -> None:
        plan = DayPlanConfig(
            plan_id="B",
            go_to=1020,
            rounding_go=RoundingRule(type=RoundingType.UP, interval=15),
        )
        result = calculate(7, DAY, plan, [_in(9), _out(16, 52)])

        self.assertEqual(result.intervals[-1].end, 1020)
        self.assertTrue(result.flags.rounding_applied)

    def test_no_bookings_deduct_target(self) -> None:
        result = calculate(7, DAY, STANDARD, [])

        self.assertEqual(result.credited_minutes, 0)
        self.assertEqual(result.balance_minutes, -480)
        self.assertEqual(result.undertime_minutes, 480)
        self.assertTrue(result.flags.no_booking_triggered)

    def test_no_bookings_error_policy_is_tagged_with_date_and_stage(self) -> None:
        plan = DayPlanConfig(plan_id="STRICT")
        with self.assertRaises(NoBookingPolicyError) as ctx:
            calculate(7, DAY, plan, [])

        self.assertEqual(ctx.exception.day_date, DAY)
        self.assertEqual(ctx.exception.stage, "resolve_absence")
        self.assertEqual(ctx.exception.to_dict()["day_date"], "2026-03-02")

    def test_configuration_error_fails_in_resolve_stage(self) -> None:
        plan = DayPlanConfig(plan_id="BROKEN", rounding_come=RoundingRule(type=RoundingType.UP))
        with self.assertRaises(ConfigurationError) as ctx:
            calculate(7, DAY, plan, [_in(8), _out(16)])

        self.assertEqual(ctx.exception.code, "INVALID_ROUNDING")
        self.assertEqual(ctx.exception.stage, "resolve")

    def test_off_day(self) -> None:
        result = calculate(7, DAY, None, [_in(8), _out(12)])

        self.assertIsNone(result.plan_id)
        self.assertEqual(result.target_minutes, 0)
        self.assertEqual(result.warnings, ("OFF_DAY", "BOOKINGS_ON_OFF_DAY"))

    def test_absence_day_uses_absence_target(self) -> None:
        plan = DayPlanConfig(plan_id="DAY", regular_hours=480, regular_hours_2=420)
        result = calculate(7, DAY, plan, [], absence=AbsenceRecord(absence_type_id="SICK"))

        self.assertEqual(result.target_minutes, 420)
        self.assertEqual(result.absence_minutes, 420)
        self.assertEqual(result.balance_minutes, 0)

    def test_holiday_without_work(self) -> None:
        result = calculate(7, DAY, STANDARD, [], holiday=HolidayRecord(category=1))

        self.assertEqual(result.credited_minutes, 480)
        self.assertFalse(result.flags.no_booking_triggered)

    def test_work_on_holiday_is_flagged(self) -> None:
        result = calculate(7, DAY, STANDARD, [_in(8), _out(12)], holiday=HolidayRecord(category=1))

        self.assertEqual(result.credited_minutes, 240)
        self.assertIn("WORKED_ON_HOLIDAY", result.warnings)

    def test_window_violations_are_warnings(self) -> None:
        plan = DayPlanConfig(plan_id="CORE", come_from=420, come_to=540, go_from=960, core_start=600, core_end=900)
        result = calculate(7, DAY, plan, [_in(10, 30), _out(14)])

        self.assertIn("LATE_COME", result.warnings)
        self.assertIn("EARLY_GO", result.warnings)
        self.assertIn("MISSED_CORE_START", result.warnings)
        self.assertIn("MISSED_CORE_END", result.warnings)

    def test_net_time_cap(self) -> None:
        plan = DayPlanConfig(plan_id="CAP", max_net_work_minutes=600)
        result = calculate(7, DAY, plan, [_in(6), _out(18)])

        self.assertEqual(result.net_work_minutes, 600)
        self.assertEqual(result.capped_minutes, 120)
        self.assertEqual(result.capping, {"max_net_time": 120})
        self.assertIn("MAX_NET_TIME_REACHED", result.warnings)

    def test_work_outside_evaluation_window_is_not_credited(self) -> None:
        plan = DayPlanConfig(plan_id="WINDOW", come_from=480, go_to=1020, regular_hours=480)
        result = calculate(7, DAY, plan, [_in(6), _out(19)])

        self.assertEqual(result.intervals, (WorkInterval(start=480, end=1020),))
        self.assertEqual(result.gross_minutes, 540)
        self.assertEqual(result.net_work_minutes, 540)
        self.assertEqual(result.capped_minutes, 240)
        self.assertEqual(result.capping, {"early_arrival": 120, "late_leave": 120})
        self.assertIn("EARLY_COME", result.warnings)
        self.assertIn("LATE_GO", result.warnings)

    def test_shift_detection_switches_plan(self) -> None:
        early = DayPlanConfig(
            plan_id="EARLY",
            regular_hours=480,
            shift_detection=ShiftDetectionWindows(arrive_from=300, arrive_to=420),
            alternate_plan_ids=("LATE",),
        )
        late = DayPlanConfig(
            plan_id="LATE",
            regular_hours=420,
            shift_detection=ShiftDetectionWindows(arrive_from=780, arrive_to=900),
        )
        result = calculate(7, DAY, early, [_in(14), _out(21)], plans={"LATE": late})

        self.assertEqual(result.plan_id, "LATE")
        self.assertEqual(result.target_minutes, 420)
        self.assertTrue(result.flags.shift_detected)
        self.assertEqual(result.balance_minutes, 0)

    def test_open_interval_counts_nothing(self) -> None:
        result = calculate(7, DAY, STANDARD, [_in(8)])

        self.assertEqual(result.net_work_minutes, 0)
        self.assertIn("MISSING_GO", result.warnings)
        self.assertFalse(result.flags.no_booking_triggered)


class RangeCalculationTests(unittest.TestCase):
    def test_failed_date_does_not_block_others(self) -> None:
        strict = DayPlanConfig(plan_id="STRICT", regular_hours=480)
        bookings = [_in(8), _out(16), _in(8, day=DAY + timedelta(days=2)), _out(16, day=DAY + timedelta(days=2))]
        outcomes = calculate_range(
            7,
            DAY,
            DAY + timedelta(days=2),
            day_plan_ids={DAY + timedelta(days=offset): "STRICT" for offset in range(3)},
            plans={"STRICT": strict},
            bookings=bookings,
        )

        self.assertEqual([item.day_date for item in outcomes], [DAY + timedelta(days=n) for n in range(3)])
        self.assertTrue(outcomes[0].ok)
        self.assertIsInstance(outcomes[1].error, NoBookingPolicyError)
        self.assertTrue(outcomes[2].ok)

    def test_auto_complete_carries_across_midnight(self) -> None:
        night = DayPlanConfig(
            plan_id="NIGHT",
            regular_hours=480,
            day_change_behavior=DayChangeBehavior.AUTO_COMPLETE,
        )
        next_day = DAY + timedelta(days=1)
        outcomes = calculate_range(
            7,
            DAY,
            next_day,
            day_plan_ids={DAY: "NIGHT", next_day: "NIGHT"},
            plans={"NIGHT": night},
            bookings=[_in(22), _out(6, day=next_day)],
        )

        first, second = (item.result for item in outcomes)
        self.assertEqual(first.intervals, (WorkInterval(start=1320, end=1440, end_synthetic=True),))
        self.assertEqual(first.net_work_minutes, 120)
        self.assertTrue(first.flags.day_changed)
        self.assertEqual(second.intervals, (WorkInterval(start=0, end=360, start_synthetic=True),))
        self.assertEqual(second.net_work_minutes, 360)

    def test_at_arrival_credits_whole_shift_to_first_date(self) -> None:
        night = DayPlanConfig(
            plan_id="NIGHT",
            regular_hours=480,
            day_change_behavior=DayChangeBehavior.AT_ARRIVAL,
            no_booking_behavior=NoBookingBehavior.DEDUCT_TARGET,
        )
        next_day = DAY + timedelta(days=1)
        outcomes = calculate_range(
            7,
            DAY,
            next_day,
            day_plan_ids={DAY: "NIGHT", next_day: "NIGHT"},
            plans={"NIGHT": night},
            bookings=[_in(22), _out(6, day=next_day)],
        )

        first, second = (item.result for item in outcomes)
        self.assertEqual(first.net_work_minutes, 480)
        self.assertEqual(second.net_work_minutes, 0)
        self.assertNotIn("MISSING_COME", second.warnings)

    def test_at_departure_credits_whole_shift_to_second_date(self) -> None:
        night = DayPlanConfig(
            plan_id="NIGHT",
            regular_hours=480,
            day_change_behavior=DayChangeBehavior.AT_DEPARTURE,
        )
        next_day = DAY + timedelta(days=1)
        outcomes = calculate_range(
            7,
            DAY,
            next_day,
            day_plan_ids={DAY: "NIGHT", next_day: "NIGHT"},
            plans={"NIGHT": night},
            bookings=[_in(22), _out(6, day=next_day)],
        )

        first, second = (item.result for item in outcomes)
        self.assertEqual(first.intervals, ())
        self.assertEqual(first.net_work_minutes, 0)
        self.assertTrue(first.flags.day_changed)
        self.assertFalse(first.flags.no_booking_triggered)
        self.assertEqual(second.intervals, (WorkInterval(start=-120, end=360),))
        self.assertEqual(second.net_work_minutes, 480)
        self.assertTrue(second.flags.day_changed)

    def test_failed_night_shift_marks_next_date_unresolved(self) -> None:
        broken = DayPlanConfig(
            plan_id="BROKEN",
            day_change_behavior=DayChangeBehavior.AT_ARRIVAL,
            rounding_come=RoundingRule(type=RoundingType.UP),
        )
        night = DayPlanConfig(plan_id="NIGHT", day_change_behavior=DayChangeBehavior.AT_ARRIVAL)
        day2 = DAY + timedelta(days=1)
        day3 = DAY + timedelta(days=2)
        outcomes = calculate_range(
            7,
            DAY,
            day3,
            day_plan_ids={DAY: "BROKEN", day2: "NIGHT", day3: "NIGHT"},
            plans={"BROKEN": broken, "NIGHT": night},
            bookings=[_in(22), _out(6, day=day2), _in(8, day=day3), _out(16, day=day3)],
        )

        self.assertIsInstance(outcomes[0].error, ConfigurationError)
        self.assertIsInstance(outcomes[1].error, CarryOverUnresolvedError)
        self.assertEqual(outcomes[1].error.blocked_by, DAY)
        self.assertEqual(outcomes[1].error.to_dict()["blocked_by"], "2026-03-02")
        self.assertTrue(outcomes[2].ok)

    def test_unknown_plan_id_is_a_per_date_error(self) -> None:
        outcomes = calculate_range(
            7,
            DAY,
            DAY,
            day_plan_ids={DAY: "GHOST"},
            plans={},
            bookings=[_in(8), _out(16)],
        )

        self.assertEqual(outcomes[0].error.code, "UNKNOWN_DAY_PLAN")

    def test_stop_request_cancels_remaining_dates(self) -> None:
        calls = []

        def should_stop() -> bool:
            calls.append(1)
            return len(calls) > 1

        outcomes = calculate_range(
            7,
            DAY,
            DAY + timedelta(days=2),
            day_plan_ids={},
            plans={},
            bookings=[],
            should_stop=should_stop,
        )

        self.assertEqual(len(outcomes), 3)
        self.assertTrue(outcomes[0].ok)
        self.assertEqual([item.error.code for item in outcomes[1:]], ["CANCELLED", "CANCELLED"])

    def test_end_before_start_rejected(self) -> None:
        with self.assertRaises(ValueError):
            calculate_range(7, DAY, DAY - timedelta(days=1), day_plan_ids={}, plans={}, bookings=[])


if __name__ == "__main__":
    unittest.main()
