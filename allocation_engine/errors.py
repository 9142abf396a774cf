from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from .conflicts import ConflictReport


class AllocationError(Exception):
    """Base class for every structured rejection raised by the engine."""

    code = "allocation_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class InvalidWindow(AllocationError, ValueError):
    code = "invalid_window"


class NonPositiveDuration(InvalidWindow):
    code = "non_positive_duration"


class UnknownRateTier(AllocationError, ValueError):
    code = "unknown_rate_tier"


class InvalidPayment(AllocationError, ValueError):
    code = "invalid_payment"


class NotFound(AllocationError, LookupError):
    code = "not_found"


class Conflict(AllocationError):
    code = "conflict"

    def __init__(
        self,
        reports: Iterable["ConflictReport"],
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.reports = [report for report in reports if not report.is_empty]
        if message is None:
            message = "; ".join(report.describe() for report in self.reports) or "Requested window conflicts."
        super().__init__(message, {**(details or {}), "conflicts": [report.to_dict() for report in self.reports]})


class AlreadyHeld(AllocationError):
    code = "already_held"

    def __init__(self, expiries: dict[str, datetime]) -> None:
        self.expiries = dict(expiries)
        held = ", ".join(f"{resource_id} until {expires_at.isoformat(timespec='seconds')}" for resource_id, expires_at in self.expiries.items())
        super().__init__(
            f"Resource is currently on hold: {held}",
            {
                "holds": [
                    {"resource_id": resource_id, "expires_at": expires_at.isoformat(timespec="seconds")}
                    for resource_id, expires_at in self.expiries.items()
                ]
            },
        )


class PartialBatchFailure(AllocationError, RuntimeError):
    code = "partial_batch_failure"


class Unavailable(AllocationError, RuntimeError):
    code = "unavailable"
