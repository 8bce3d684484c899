from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from timecalc.models import BreakInterval, BreakRule, FixedBreak, MinimumBreak, VariableBreak, WorkInterval
from timecalc.services.time_utils import MINUTES_PER_DAY, calculate_overlap

Span = tuple[int, int]


@dataclass(frozen=True, slots=True)
class BreakDeduction:
    """Minutes one rule wants deducted.

    ``spans`` are the clock ranges the deduction covers; rules without a
    clock range (auto-deducted or threshold breaks) leave it empty and are
    purely additive.
    """

    minutes: int
    spans: tuple[Span, ...] = ()
    is_paid: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class BreakDeductionResult:
    deducted_minutes: int
    paid_minutes: int = 0
    items: tuple[BreakDeduction, ...] = ()
    warnings: tuple[str, ...] = ()


def _closed(intervals: Sequence[WorkInterval]) -> list[WorkInterval]:
    return [item for item in intervals if not item.is_open]


def deduct_fixed_break(rule: FixedBreak, intervals: Sequence[WorkInterval]) -> BreakDeduction:
    """Deduct the fixed break once, clipped to the minutes actually worked inside its window."""
    overlap = 0
    spans: list[Span] = []
    # The window recurs every day, so shifts reaching into the previous or next day see it too.
    for shift in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY):
        window_start, window_end = rule.start + shift, rule.end + shift
        for interval in _closed(intervals):
            minutes = calculate_overlap(interval.start, interval.end, window_start, window_end)
            if minutes > 0:
                overlap += minutes
                spans.append((max(interval.start, window_start), min(interval.end, window_end)))
    return BreakDeduction(
        minutes=min(rule.duration_minutes, overlap),
        spans=tuple(spans),
        is_paid=rule.is_paid,
    )


def _bounded(minutes: int, rule: VariableBreak) -> int:
    if rule.min_minutes is not None:
        minutes = max(minutes, rule.min_minutes)
    if rule.max_minutes is not None:
        minutes = min(minutes, rule.max_minutes)
    return minutes


def deduct_variable_break(rule: VariableBreak, recorded: Sequence[BreakInterval]) -> BreakDeduction:
    recorded_minutes = sum(item.duration for item in recorded)
    if recorded_minutes > 0:
        return BreakDeduction(
            minutes=_bounded(recorded_minutes, rule),
            spans=tuple((item.start, item.end) for item in recorded if item.duration > 0),
            is_paid=rule.is_paid,
        )
    if not rule.auto_deduct:
        return BreakDeduction(minutes=0, is_paid=rule.is_paid)
    return BreakDeduction(
        minutes=_bounded(rule.duration_minutes, rule),
        is_paid=rule.is_paid,
        warnings=("NO_BREAK_RECORDED", "AUTO_BREAK_APPLIED"),
    )


def calculate_minimum_break(work_minutes: int, rule: MinimumBreak) -> int:
    if work_minutes <= rule.after_work_minutes:
        return 0
    if rule.proportional_near_threshold:
        return min(work_minutes - rule.after_work_minutes, rule.duration_minutes)
    return rule.duration_minutes


def _overlaps(left: Sequence[Span], right: Sequence[Span]) -> bool:
    return any(a_start < b_end and b_start < a_end for a_start, a_end in left for b_start, b_end in right)


def _span_minutes(spans: Sequence[Span]) -> int:
    return sum(end - start for start, end in spans)


def _union_minutes(spans: Sequence[Span]) -> int:
    total = 0
    current_start: int | None = None
    current_end = 0
    for start, end in sorted(spans):
        if current_start is None or start > current_end:
            if current_start is not None:
                total += current_end - current_start
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_start is not None:
        total += current_end - current_start
    return total


@dataclass(slots=True)
class _SpanCluster:
    spans: list[Span]
    minutes: int
    largest: int

    @property
    def deduction(self) -> int:
        # Minutes covered by more than one rule count once; never below the largest single rule.
        shared = _span_minutes(self.spans) - _union_minutes(self.spans)
        return max(self.largest, self.minutes - shared)


def _sum_without_double_counting(items: Sequence[BreakDeduction]) -> int:
    """Additive across rules; clock minutes claimed by several rules are deducted once."""
    total = sum(item.minutes for item in items if not item.spans)
    clusters: list[_SpanCluster] = []
    for item in (item for item in items if item.spans):
        merged = _SpanCluster(spans=list(item.spans), minutes=item.minutes, largest=item.minutes)
        remaining: list[_SpanCluster] = []
        for cluster in clusters:
            if _overlaps(cluster.spans, merged.spans):
                merged.spans.extend(cluster.spans)
                merged.minutes += cluster.minutes
                merged.largest = max(merged.largest, cluster.largest)
            else:
                remaining.append(cluster)
        remaining.append(merged)
        clusters = remaining
    return total + sum(cluster.deduction for cluster in clusters)


def calculate_break_deduction(
    rules: Sequence[BreakRule],
    intervals: Sequence[WorkInterval],
    recorded_breaks: Sequence[BreakInterval] = (),
) -> BreakDeductionResult:
    gross_minutes = sum(item.duration for item in intervals)
    items: list[BreakDeduction] = []
    warnings: list[str] = []

    has_variable_rule = any(isinstance(rule, VariableBreak) for rule in rules)
    if not has_variable_rule and any(item.duration > 0 for item in recorded_breaks):
        # Recorded breaks always count, even without a variable rule to bound them.
        items.append(
            BreakDeduction(
                minutes=sum(item.duration for item in recorded_breaks),
                spans=tuple((item.start, item.end) for item in recorded_breaks if item.duration > 0),
            )
        )
        warnings.append("MANUAL_BREAK")

    for rule in rules:
        match rule:
            case FixedBreak():
                item = deduct_fixed_break(rule, intervals)
            case VariableBreak():
                item = deduct_variable_break(rule, recorded_breaks)
            case MinimumBreak():
                item = BreakDeduction(
                    minutes=calculate_minimum_break(gross_minutes, rule),
                    is_paid=rule.is_paid,
                )
        items.append(item)
        warnings.extend(code for code in item.warnings if code not in warnings)

    unpaid = [item for item in items if not item.is_paid]
    paid = [item for item in items if item.is_paid]
    deducted = min(gross_minutes, _sum_without_double_counting(unpaid))
    return BreakDeductionResult(
        deducted_minutes=deducted,
        paid_minutes=_sum_without_double_counting(paid),
        items=tuple(items),
        warnings=tuple(warnings),
    )
