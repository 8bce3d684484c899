from __future__ import annotations

from timecalc.models import DayPlanConfig


def _check_window(
    value: int,
    window_from: int | None,
    window_to: int | None,
    early_code: str,
    late_code: str,
) -> list[str]:
    codes: list[str] = []
    if window_from is not None and value < window_from:
        codes.append(early_code)
    late_bound = window_to if window_to is not None else window_from
    if late_bound is not None and value > late_bound:
        codes.append(late_code)
    return codes


def validate_booking_windows(
    plan: DayPlanConfig,
    *,
    first_arrival: int | None,
    last_departure: int | None,
) -> tuple[str, ...]:
    """Check the adjusted first arrival / last departure against the plan windows."""
    codes: list[str] = []
    if first_arrival is not None:
        codes.extend(_check_window(first_arrival, plan.come_from, plan.come_to, "EARLY_COME", "LATE_COME"))
    if last_departure is not None:
        codes.extend(_check_window(last_departure, plan.go_from, plan.go_to, "EARLY_GO", "LATE_GO"))

    if plan.core_start is not None and (first_arrival is None or first_arrival > plan.core_start):
        codes.append("MISSED_CORE_START")
    if plan.core_end is not None and (last_departure is None or last_departure < plan.core_end):
        codes.append("MISSED_CORE_END")
    return tuple(codes)
