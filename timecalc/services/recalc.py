from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date

from timecalc.models import AbsenceRecord, BookingEvent, HolidayRecord
from timecalc.services.daily_calc import DayOutcome, calculate_range
from timecalc.services.day_plan_resolver import DayPlanLookup
from timecalc.settings import get_recalc_max_workers

logger = logging.getLogger("timecalc.recalc")


@dataclass(frozen=True, slots=True)
class EmployeeRangeJob:
    """Everything one employee's range needs, fetched before computation starts."""

    employee_id: int
    start_date: date
    end_date: date
    day_plan_ids: Mapping[date, str | None] = field(default_factory=dict)
    bookings: tuple[BookingEvent, ...] = ()
    absences: Mapping[date, AbsenceRecord] = field(default_factory=dict)
    holidays: Mapping[date, HolidayRecord] = field(default_factory=dict)
    employee_master_target: int | None = None


@dataclass(frozen=True, slots=True)
class EmployeeRangeResult:
    employee_id: int
    outcomes: tuple[DayOutcome, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.outcomes if item.ok)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def cancelled(self) -> bool:
        return any(item.error is not None and item.error.code == "CANCELLED" for item in self.outcomes)


class RecalculationBatch:
    """Bounded pool: one task per employee, each employee's dates strictly in order."""

    def __init__(
        self,
        jobs: Iterable[EmployeeRangeJob],
        plans: DayPlanLookup,
        *,
        max_workers: int | None = None,
    ):
        self._jobs = list(jobs)
        employee_ids = [job.employee_id for job in self._jobs]
        if len(employee_ids) != len(set(employee_ids)):
            raise ValueError("Each employee may appear in a batch only once")
        self._plans = plans
        self._max_workers = max(1, max_workers) if max_workers is not None else get_recalc_max_workers()
        self._cancel_events = {employee_id: threading.Event() for employee_id in employee_ids}

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def cancel(self, employee_id: int) -> bool:
        event = self._cancel_events.get(employee_id)
        if event is None:
            return False
        event.set()
        return True

    def _run_job(self, job: EmployeeRangeJob) -> EmployeeRangeResult:
        started = time.monotonic()
        outcomes = calculate_range(
            job.employee_id,
            job.start_date,
            job.end_date,
            day_plan_ids=job.day_plan_ids,
            plans=self._plans,
            bookings=job.bookings,
            absences=job.absences,
            holidays=job.holidays,
            employee_master_target=job.employee_master_target,
            should_stop=self._cancel_events[job.employee_id].is_set,
        )
        result = EmployeeRangeResult(employee_id=job.employee_id, outcomes=tuple(outcomes))
        logger.info(
            "recalc_employee_complete",
            extra={
                "employee_id": job.employee_id,
                "start_date": job.start_date.isoformat(),
                "end_date": job.end_date.isoformat(),
                "succeeded": result.succeeded,
                "failed": result.failed,
                "cancelled": result.cancelled,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def _run_limited(self, semaphore: asyncio.Semaphore, job: EmployeeRangeJob) -> EmployeeRangeResult:
        async with semaphore:
            return await asyncio.to_thread(self._run_job, job)

    async def run(self) -> dict[int, EmployeeRangeResult]:
        started = time.monotonic()
        semaphore = asyncio.Semaphore(self._max_workers)
        results = await asyncio.gather(*(self._run_limited(semaphore, job) for job in self._jobs))
        by_employee = {item.employee_id: item for item in results}
        logger.info(
            "recalc_batch_complete",
            extra={
                "employees": len(by_employee),
                "failed_dates": sum(item.failed for item in results),
                "max_workers": self._max_workers,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return by_employee
