from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from timecalc.models import (
    BookingDirection,
    BookingEvent,
    BookingKind,
    BreakInterval,
    CarryOver,
    CarryOverKind,
    DayChangeBehavior,
    WorkInterval,
)
from timecalc.services.time_utils import MINUTES_PER_DAY, minutes_since_day_start


@dataclass(frozen=True, slots=True)
class _PairingItem:
    minutes: int
    direction: BookingDirection
    synthetic: bool = False
    event: BookingEvent | None = None


@dataclass(frozen=True, slots=True)
class PairingResult:
    work_intervals: tuple[WorkInterval, ...]
    break_intervals: tuple[BreakInterval, ...] = ()
    carry_out: CarryOver | None = None
    day_changed: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def has_open_interval(self) -> bool:
        return any(item.is_open for item in self.work_intervals)


def _sorted_items(day_date: date, events: Iterable[BookingEvent], kind: BookingKind) -> list[_PairingItem]:
    items = [
        _PairingItem(
            minutes=minutes_since_day_start(day_date, event.timestamp),
            direction=event.direction,
            event=event,
        )
        for event in events
        if event.kind == kind
    ]
    # Stable on equal minutes so an IN/OUT entered in order stays in order.
    items.sort(key=lambda item: item.minutes)
    return items


def has_trailing_arrival(day_date: date, events: Iterable[BookingEvent]) -> bool:
    items = _sorted_items(day_date, events, BookingKind.WORK)
    return bool(items) and items[-1].direction == BookingDirection.IN


def _apply_carry_in(day_date: date, items: list[_PairingItem], carry_in: CarryOver) -> list[_PairingItem]:
    day_offset = (day_date - carry_in.source_date).days * MINUTES_PER_DAY
    match carry_in.kind:
        case CarryOverKind.CONSUMED_DEPARTURE:
            for index, item in enumerate(items):
                if item.direction != BookingDirection.OUT:
                    break
                if carry_in.event is None or item.event == carry_in.event:
                    return items[:index] + items[index + 1 :]
            return items
        case CarryOverKind.PENDING_ARRIVAL:
            arrival = _PairingItem(
                minutes=carry_in.arrival_minutes - day_offset,
                direction=BookingDirection.IN,
                event=carry_in.event,
            )
            return [arrival, *items]
        case CarryOverKind.AUTO_COMPLETED:
            arrival = _PairingItem(minutes=0, direction=BookingDirection.IN, synthetic=True)
            return [arrival, *items]
    return items


def _first_work_item(day_date: date, events: Iterable[BookingEvent]) -> _PairingItem | None:
    items = _sorted_items(day_date, events, BookingKind.WORK)
    return items[0] if items else None


def _pair_breaks(items: Sequence[_PairingItem]) -> tuple[list[BreakInterval], list[str]]:
    intervals: list[BreakInterval] = []
    warnings: list[str] = []
    break_start: int | None = None
    for item in items:
        if item.direction == BookingDirection.OUT:
            if break_start is not None:
                warnings.append("MISSING_BREAK_END")
            break_start = item.minutes
            continue
        if break_start is None:
            warnings.append("MISSING_BREAK_START")
            continue
        intervals.append(BreakInterval(start=break_start, end=item.minutes))
        break_start = None
    if break_start is not None:
        warnings.append("MISSING_BREAK_END")
    return intervals, warnings


def pair_bookings(
    day_date: date,
    events: Iterable[BookingEvent],
    *,
    day_change: DayChangeBehavior = DayChangeBehavior.NONE,
    next_day_events: Iterable[BookingEvent] = (),
    carry_in: CarryOver | None = None,
) -> PairingResult:
    """Pair one date's work events into arrival -> departure intervals.

    ``carry_in`` is the token the previous date handed over; the returned
    ``carry_out`` is what the caller passes to the next date.
    """
    events = list(events)
    work_items = _sorted_items(day_date, events, BookingKind.WORK)
    if carry_in is not None:
        work_items = _apply_carry_in(day_date, work_items, carry_in)

    intervals: list[WorkInterval] = []
    warnings: list[str] = []
    open_item: _PairingItem | None = None
    for item in work_items:
        if item.direction == BookingDirection.IN:
            if open_item is not None:
                intervals.append(WorkInterval(start=open_item.minutes, end=None, start_synthetic=open_item.synthetic))
                warnings.append("MISSING_GO")
            open_item = item
            continue
        if open_item is None:
            warnings.append("MISSING_COME")
            continue
        intervals.append(
            WorkInterval(start=open_item.minutes, end=item.minutes, start_synthetic=open_item.synthetic)
        )
        open_item = None

    carry_out: CarryOver | None = None
    day_changed = False
    if open_item is not None:
        next_first = None
        if day_change in (DayChangeBehavior.AT_ARRIVAL, DayChangeBehavior.AT_DEPARTURE):
            next_first = _first_work_item(day_date, next_day_events)
        crosses_midnight = next_first is not None and next_first.direction == BookingDirection.OUT

        if open_item.synthetic:
            # A carried-in 00:00 arrival is never carried a second time.
            intervals.append(WorkInterval(start=open_item.minutes, end=None, start_synthetic=True))
            warnings.append("MISSING_GO")
        elif day_change == DayChangeBehavior.AT_ARRIVAL and crosses_midnight:
            intervals.append(WorkInterval(start=open_item.minutes, end=next_first.minutes))
            carry_out = CarryOver(
                source_date=day_date,
                kind=CarryOverKind.CONSUMED_DEPARTURE,
                arrival_minutes=open_item.minutes,
                event=next_first.event,
            )
            day_changed = True
        elif day_change == DayChangeBehavior.AT_DEPARTURE and crosses_midnight:
            carry_out = CarryOver(
                source_date=day_date,
                kind=CarryOverKind.PENDING_ARRIVAL,
                arrival_minutes=open_item.minutes,
                event=open_item.event,
            )
            day_changed = True
        elif day_change == DayChangeBehavior.AUTO_COMPLETE:
            intervals.append(WorkInterval(start=open_item.minutes, end=MINUTES_PER_DAY, end_synthetic=True))
            carry_out = CarryOver(
                source_date=day_date,
                kind=CarryOverKind.AUTO_COMPLETED,
                arrival_minutes=open_item.minutes,
                event=open_item.event,
            )
            day_changed = True
        else:
            intervals.append(WorkInterval(start=open_item.minutes, end=None))
            warnings.append("MISSING_GO")

    if carry_in is not None and carry_in.kind != CarryOverKind.CONSUMED_DEPARTURE:
        day_changed = True

    break_intervals, break_warnings = _pair_breaks(_sorted_items(day_date, events, BookingKind.BREAK))
    return PairingResult(
        work_intervals=tuple(intervals),
        break_intervals=tuple(break_intervals),
        carry_out=carry_out,
        day_changed=day_changed,
        warnings=tuple(warnings + break_warnings),
    )
