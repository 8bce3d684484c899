from __future__ import annotations

from datetime import date
from typing import Any


class CalculationError(Exception):
    code = "CALCULATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        day_date: date | None = None,
        stage: str | None = None,
    ):
        super().__init__(message)
        self.code = code or self.code
        self.message = message
        self.day_date = day_date
        self.stage = stage

    def attach(self, *, day_date: date, stage: str | None = None) -> CalculationError:
        if self.day_date is None:
            self.day_date = day_date
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "day_date": self.day_date.isoformat() if self.day_date else None,
            "stage": self.stage,
        }


class ConfigurationError(CalculationError):
    """Bad day-plan or reference data. Never retried."""

    code = "CONFIGURATION_ERROR"


class NoBookingPolicyError(CalculationError):
    code = "NO_BOOKINGS"


class AmbiguousShiftDetectionError(CalculationError):
    code = "AMBIGUOUS_SHIFT_DETECTION"

    def __init__(self, message: str, *, plan_ids: list[str], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.plan_ids = list(plan_ids)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["plan_ids"] = list(self.plan_ids)
        return payload


class CarryOverUnresolvedError(CalculationError):
    code = "CARRY_OVER_UNRESOLVED"

    def __init__(self, message: str, *, blocked_by: date, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.blocked_by = blocked_by

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["blocked_by"] = self.blocked_by.isoformat()
        return payload


class RecalculationCancelledError(CalculationError):
    code = "CANCELLED"
