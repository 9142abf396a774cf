from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from .errors import InvalidWindow

CIVIL_TIMEZONE = ZoneInfo("Asia/Karachi")


class Slot(str, Enum):
    MORNING = "MORNING"
    EVENING = "EVENING"
    NIGHT = "NIGHT"


class Granularity(str, Enum):
    NIGHT = "night"
    SLOT = "slot"
    EVENT = "event"


SLOT_LABELS = {
    Slot.MORNING: "Morning (8:00 AM - 2:00 PM)",
    Slot.EVENING: "Evening (2:00 PM - 8:00 PM)",
    Slot.NIGHT: "Night (8:00 PM - 12:00 AM)",
}


def to_civil(value: datetime) -> datetime:
    """Interpret naive datetimes as civil time and convert aware ones into it."""
    if value.tzinfo is None:
        return value.replace(tzinfo=CIVIL_TIMEZONE)
    return value.astimezone(CIVIL_TIMEZONE)


def civil_now() -> datetime:
    return datetime.now(CIVIL_TIMEZONE)


def civil_today(now: datetime | None = None) -> date:
    return to_civil(now or civil_now()).date()


def civil_midnight(day: date) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=CIVIL_TIMEZONE)


def parse_slot(value: Any) -> Slot | None:
    if value is None or value == "":
        return None
    if isinstance(value, Slot):
        return value
    try:
        return Slot(str(value).strip().upper())
    except ValueError:
        raise InvalidWindow("Invalid time slot. Must be MORNING, EVENING, or NIGHT.") from None


@dataclass(frozen=True)
class TimeWindow:
    """A half-open interval ``[start, end)`` in civil time, optionally tagged with a slot.

    Construction never rejects ``end <= start``; callers that accept a window from
    the outside run :func:`validate_window` first.
    """

    start: datetime
    end: datetime
    slot: Slot | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", to_civil(self.start))
        object.__setattr__(self, "end", to_civil(self.end))
        object.__setattr__(self, "slot", parse_slot(self.slot))

    @classmethod
    def for_nights(cls, check_in: date, check_out: date) -> "TimeWindow":
        return cls(civil_midnight(check_in), civil_midnight(check_out))

    @classmethod
    def for_slot(cls, day: date, slot: Slot | str, until: date | None = None) -> "TimeWindow":
        """Cover ``slot`` on every day from ``day`` up to, but excluding, ``until``."""
        last = until or day + timedelta(days=1)
        return cls(civil_midnight(day), civil_midnight(last), parse_slot(slot))

    def same_as(self, other: "TimeWindow") -> bool:
        return self.start == other.start and self.end == other.end and self.slot == other.slot

    def describe(self) -> str:
        text = f"{self.start.isoformat(timespec='minutes')} - {self.end.isoformat(timespec='minutes')}"
        if self.slot is not None:
            text += f" ({SLOT_LABELS[self.slot]})"
        return text

    def to_dict(self) -> dict[str, str]:
        payload = {
            "start": self.start.isoformat(timespec="minutes"),
            "end": self.end.isoformat(timespec="minutes"),
        }
        if self.slot is not None:
            payload["slot"] = self.slot.value
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TimeWindow":
        return TimeWindow(
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
            slot=data.get("slot"),
        )


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    """Return True when two windows share any instant.

    Windows are half-open ranges, so touching boundaries (checkout day equal to
    the next check-in day) do not overlap.
    """
    return a.start < b.end and a.end > b.start


def slot_overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    if not overlaps(a, b):
        return False
    if a.slot is None or b.slot is None:
        return True
    return a.slot == b.slot


def duration_units(window: TimeWindow, granularity: Granularity | str) -> int:
    if window.end <= window.start:
        raise InvalidWindow("Window end must be after its start.")

    if Granularity(granularity) is Granularity.NIGHT:
        return (window.end.date() - window.start.date()).days
    return 1


def validate_window(window: TimeWindow, now: datetime | None = None, allow_past: bool = False) -> TimeWindow:
    if window.end <= window.start:
        raise InvalidWindow("End date must be after start date.", {"window": window.to_dict()})
    if not allow_past and window.start.date() < civil_today(now):
        raise InvalidWindow("Start date cannot be in the past.", {"window": window.to_dict()})
    return window


def parse_window(payload: dict[str, Any]) -> TimeWindow:
    """Build a window from its wire form.

    Accepted shapes: ``{check_in, check_out}`` for night-based resources,
    ``{date, slot[, until]}`` for slot-based ones and ``{start, end[, slot]}``.
    """
    try:
        if "check_in" in payload or "check_out" in payload:
            return TimeWindow.for_nights(
                date.fromisoformat(str(payload["check_in"])),
                date.fromisoformat(str(payload["check_out"])),
            )
        if "date" in payload:
            until = payload.get("until")
            return TimeWindow.for_slot(
                date.fromisoformat(str(payload["date"])),
                payload.get("slot"),
                date.fromisoformat(str(until)) if until else None,
            )
        return TimeWindow(
            start=datetime.fromisoformat(str(payload["start"])),
            end=datetime.fromisoformat(str(payload["end"])),
            slot=payload.get("slot"),
        )
    except KeyError as error:
        raise InvalidWindow(f"Missing window field: {error.args[0]}") from None
    except (TypeError, ValueError) as error:
        if isinstance(error, InvalidWindow):
            raise
        raise InvalidWindow(f"Malformed window: {error}") from None
