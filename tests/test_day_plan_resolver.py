from __future__ import annotations

import unittest

from timecalc.errors import AmbiguousShiftDetectionError, ConfigurationError
from timecalc.models import (
    AbsenceRecord,
    DayPlanConfig,
    FixedBreak,
    PlanType,
    RoundingRule,
    RoundingType,
    ShiftDetectionWindows,
    ShiftMatchType,
)
from timecalc.services.day_plan_resolver import (
    build_plan_lookup,
    detect_shift,
    resolve_day_plan,
    resolve_target_minutes,
    validate_day_plan,
)


def _early_plan(*alternates: str) -> DayPlanConfig:
    return DayPlanConfig(
        plan_id="EARLY",
        come_from=360,
        go_to=840,
        shift_detection=ShiftDetectionWindows(arrive_from=300, arrive_to=420),
        alternate_plan_ids=alternates,
    )


LATE = DayPlanConfig(
    plan_id="LATE",
    come_from=840,
    go_to=1320,
    regular_hours=450,
    shift_detection=ShiftDetectionWindows(arrive_from=780, arrive_to=900),
)
LATE_OVERLAP = DayPlanConfig(
    plan_id="LATE_B",
    come_from=870,
    shift_detection=ShiftDetectionWindows(arrive_from=830, arrive_to=960),
)
NIGHT = DayPlanConfig(
    plan_id="NIGHT",
    come_from=1320,
    shift_detection=ShiftDetectionWindows(
        arrive_from=780,
        arrive_to=900,
        depart_from=1380,
        depart_to=1440,
    ),
)


class ShiftDetectionTests(unittest.TestCase):
    def test_plan_without_windows_is_kept(self) -> None:
        plan = DayPlanConfig(plan_id="DAY")
        result = detect_shift(plan, {}, first_arrival=840, last_departure=1320)

        self.assertIs(result.plan, plan)
        self.assertTrue(result.is_original_plan)
        self.assertEqual(result.warnings, ())

    def test_base_plan_matching_its_own_window_is_kept(self) -> None:
        plan = _early_plan("LATE")
        result = detect_shift(plan, build_plan_lookup([LATE]), first_arrival=365, last_departure=840)

        self.assertIs(result.plan, plan)
        self.assertEqual(result.matched_by, ShiftMatchType.ARRIVAL)

    def test_alternate_selected_by_arrival(self) -> None:
        plan = _early_plan("LATE")
        result = detect_shift(plan, build_plan_lookup([LATE]), first_arrival=845, last_departure=1320)

        self.assertEqual(result.plan.plan_id, "LATE")
        self.assertFalse(result.is_original_plan)
        self.assertEqual(result.matched_by, ShiftMatchType.ARRIVAL)

    def test_window_bounds_are_inclusive(self) -> None:
        plan = _early_plan("LATE")
        lookup = build_plan_lookup([LATE])

        self.assertEqual(detect_shift(plan, lookup, first_arrival=780, last_departure=None).plan.plan_id, "LATE")
        self.assertEqual(detect_shift(plan, lookup, first_arrival=900, last_departure=None).plan.plan_id, "LATE")

    def test_no_match_keeps_base_plan_with_warning(self) -> None:
        plan = _early_plan("LATE")
        result = detect_shift(plan, build_plan_lookup([LATE]), first_arrival=600, last_departure=1000)

        self.assertIs(result.plan, plan)
        self.assertEqual(result.warnings, ("NO_MATCHING_SHIFT",))

    def test_plan_with_both_windows_needs_both_to_match(self) -> None:
        plan = _early_plan("NIGHT")
        lookup = build_plan_lookup([NIGHT])

        partial = detect_shift(plan, lookup, first_arrival=840, last_departure=1000)
        full = detect_shift(plan, lookup, first_arrival=840, last_departure=1400)

        self.assertEqual(partial.plan.plan_id, "EARLY")
        self.assertEqual(full.plan.plan_id, "NIGHT")
        self.assertEqual(full.matched_by, ShiftMatchType.BOTH)

    def test_two_matching_alternates_fail_closed(self) -> None:
        plan = _early_plan("LATE", "LATE_B")
        with self.assertRaises(AmbiguousShiftDetectionError) as ctx:
            detect_shift(plan, build_plan_lookup([LATE, LATE_OVERLAP]), first_arrival=850, last_departure=None)

        self.assertEqual(ctx.exception.plan_ids, ["LATE", "LATE_B"])
        self.assertEqual(ctx.exception.code, "AMBIGUOUS_SHIFT_DETECTION")

    def test_same_alternate_listed_twice_is_not_ambiguous(self) -> None:
        plan = _early_plan("LATE", "LATE")
        result = detect_shift(plan, build_plan_lookup([LATE]), first_arrival=850, last_departure=None)

        self.assertEqual(result.plan.plan_id, "LATE")

    def test_unknown_alternate_is_configuration_error(self) -> None:
        plan = _early_plan("MISSING")
        with self.assertRaises(ConfigurationError) as ctx:
            detect_shift(plan, {}, first_arrival=850, last_departure=None)

        self.assertEqual(ctx.exception.code, "UNKNOWN_DAY_PLAN")

    def test_no_bookings_skip_detection(self) -> None:
        plan = _early_plan("MISSING")
        result = detect_shift(plan, {}, first_arrival=None, last_departure=None)

        self.assertIs(result.plan, plan)


class TargetResolutionTests(unittest.TestCase):
    def test_employee_master_wins_when_enabled(self) -> None:
        plan = DayPlanConfig(plan_id="DAY", regular_hours=480, regular_hours_2=240, from_employee_master=True)

        self.assertEqual(resolve_target_minutes(plan, has_absence=True, employee_master_target=420), 420)

    def test_absence_day_uses_second_target(self) -> None:
        plan = DayPlanConfig(plan_id="DAY", regular_hours=480, regular_hours_2=240, from_employee_master=True)

        self.assertEqual(resolve_target_minutes(plan, has_absence=True, employee_master_target=None), 240)

    def test_regular_target_is_default(self) -> None:
        plan = DayPlanConfig(plan_id="DAY", regular_hours=480, regular_hours_2=240)

        self.assertEqual(resolve_target_minutes(plan, has_absence=False, employee_master_target=420), 480)

    def test_missing_target_is_configuration_error(self) -> None:
        plan = DayPlanConfig(plan_id="DAY", regular_hours=None, from_employee_master=True)

        with self.assertRaises(ConfigurationError) as ctx:
            resolve_target_minutes(plan, has_absence=False, employee_master_target=None)
        self.assertEqual(ctx.exception.code, "MISSING_TARGET")

    def test_resolve_day_plan_uses_alternate_target(self) -> None:
        resolved = resolve_day_plan(
            _early_plan("LATE"),
            build_plan_lookup([LATE]),
            first_arrival=850,
            last_departure=1320,
            absence=AbsenceRecord(absence_type_id="SICK"),
        )

        self.assertTrue(resolved.shift_detected)
        self.assertEqual(resolved.base_plan_id, "EARLY")
        self.assertEqual(resolved.target_minutes, 450)


class PlanValidationTests(unittest.TestCase):
    def _assert_code(self, plan: DayPlanConfig, code: str) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            validate_day_plan(plan)
        self.assertEqual(ctx.exception.code, code)

    def test_valid_plan_passes(self) -> None:
        validate_day_plan(
            DayPlanConfig(
                plan_id="DAY",
                come_from=420,
                come_to=540,
                go_from=960,
                go_to=1080,
                rounding_come=RoundingRule(type=RoundingType.UP, interval=15),
                breaks=(FixedBreak(start=720, end=750, duration_minutes=30),),
            )
        )

    def test_rounding_without_interval(self) -> None:
        self._assert_code(
            DayPlanConfig(plan_id="DAY", rounding_go=RoundingRule(type=RoundingType.NEAREST)),
            "INVALID_ROUNDING",
        )

    def test_offset_rounding_without_value(self) -> None:
        self._assert_code(
            DayPlanConfig(plan_id="DAY", rounding_come=RoundingRule(type=RoundingType.ADD)),
            "INVALID_ROUNDING",
        )

    def test_inverted_arrival_window(self) -> None:
        self._assert_code(DayPlanConfig(plan_id="DAY", come_from=540, come_to=420), "INVALID_TIME_WINDOW")

    def test_flextime_requires_come_to(self) -> None:
        self._assert_code(
            DayPlanConfig(plan_id="FLEX", plan_type=PlanType.FLEXTIME, come_from=420),
            "INVALID_TIME_WINDOW",
        )

    def test_half_open_shift_window(self) -> None:
        self._assert_code(
            DayPlanConfig(plan_id="DAY", shift_detection=ShiftDetectionWindows(arrive_from=300)),
            "INVALID_SHIFT_DETECTION",
        )

    def test_too_many_alternates(self) -> None:
        self._assert_code(
            DayPlanConfig(plan_id="DAY", alternate_plan_ids=tuple(f"P{i}" for i in range(7))),
            "INVALID_SHIFT_DETECTION",
        )

    def test_duplicate_plan_ids_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_plan_lookup([LATE, LATE])


if __name__ == "__main__":
    unittest.main()
