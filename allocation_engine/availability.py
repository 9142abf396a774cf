from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any

import holidays as pyholidays

from .conflicts import check_conflicts
from .errors import InvalidWindow
from .holds import is_held
from .intervals import TimeWindow, civil_now, overlaps, to_civil
from .maintenance import current_out_of_service
from .records import ResourceInstance
from .yaml_store import StoreTransaction

HOLIDAY_COUNTRY = "PK"
CALENDAR_MAX_DAYS = 92
_HOLIDAY_CACHE: dict[int, dict[date, str]] = {}


def find_available(
    tx: StoreTransaction,
    resource_type: str,
    window: TimeWindow,
    now: datetime | None = None,
) -> list[ResourceInstance]:
    """Active, unheld instances of ``resource_type`` with nothing allocated in ``window``."""
    effective_now = to_civil(now or civil_now())
    if window.end <= window.start:
        raise InvalidWindow("End date must be after start date.", {"window": window.to_dict()})
    tx.get_resource_type(resource_type)

    available: list[ResourceInstance] = []
    for instance in tx.list_resources(resource_type):
        if not instance.active or is_held(tx, instance.resource_id, effective_now):
            continue
        if not check_conflicts(tx, instance.resource_id, window, now=effective_now).is_empty:
            continue
        available.append(
            replace(instance, out_of_service=current_out_of_service(tx, instance.resource_id, effective_now))
        )
    return sorted(available, key=lambda item: item.label)


def build_calendar(
    tx: StoreTransaction,
    resource_type: str,
    first_day: date,
    last_day: date,
    now: datetime | None = None,
) -> dict[str, Any]:
    if last_day < first_day:
        raise InvalidWindow("Calendar end date must not be before its start date.")
    if (last_day - first_day).days >= CALENDAR_MAX_DAYS:
        raise InvalidWindow(f"Calendar range must be shorter than {CALENDAR_MAX_DAYS} days.")

    effective_now = to_civil(now or civil_now())
    tx.get_resource_type(resource_type)
    span = TimeWindow.for_nights(first_day, last_day + timedelta(days=1))

    rows: list[dict[str, Any]] = []
    for instance in sorted(tx.list_resources(resource_type), key=lambda item: item.label):
        allocations = sorted(
            (
                record
                for record in tx.list_allocations(instance.resource_id)
                if record.is_live(effective_now) and overlaps(span, record.window)
            ),
            key=lambda record: record.window.start,
        )
        hold = tx.get_hold(instance.resource_id)
        rows.append(
            {
                **instance.to_dict(),
                "out_of_service": current_out_of_service(tx, instance.resource_id, effective_now),
                "on_hold": hold is not None and hold.is_active(effective_now),
                "hold_expires_at": hold.expires_at.isoformat(timespec="seconds") if hold and hold.is_active(effective_now) else None,
                "allocations": [record.to_dict() for record in allocations],
            }
        )

    return {
        "resource_type": resource_type,
        "first_day": first_day.isoformat(),
        "last_day": last_day.isoformat(),
        "holidays": public_holidays(first_day, last_day),
        "resources": rows,
    }


def public_holidays(first_day: date, last_day: date) -> list[dict[str, str]]:
    found: list[dict[str, str]] = []
    cursor = first_day
    while cursor <= last_day:
        name = _holidays_for_year(cursor.year).get(cursor)
        if name:
            found.append({"date": cursor.isoformat(), "name": name})
        cursor += timedelta(days=1)
    return found


def _holidays_for_year(year: int) -> dict[date, str]:
    if year not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(HOLIDAY_COUNTRY, years=[year])
        _HOLIDAY_CACHE[year] = dict(holiday_map.items())
    return _HOLIDAY_CACHE[year]
