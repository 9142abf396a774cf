from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import uuid4

from .conflicts import check_conflicts
from .errors import Conflict, InvalidWindow
from .intervals import TimeWindow, civil_now, overlaps, parse_window, to_civil, validate_window
from .records import AllocationKind, AllocationRecord
from .reservations import has_future_reservation
from .yaml_store import StoreTransaction

MAINTENANCE_RETENTION_DAYS = 30

BLOCKING_KINDS = (AllocationKind.BOOKING, AllocationKind.RESERVATION)


@dataclass(frozen=True)
class MaintenancePeriod:
    window: TimeWindow
    reason: str

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "MaintenancePeriod":
        reason = str(data.get("reason") or "").strip()
        if not reason:
            raise InvalidWindow("Maintenance reason is required.")
        return MaintenancePeriod(window=parse_window(data), reason=reason)


@dataclass(frozen=True)
class MaintenanceResult:
    resource_id: str
    allocation_ids: tuple[str, ...]
    replaced: int
    out_of_service: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "allocation_ids": list(self.allocation_ids),
            "replaced": self.replaced,
            "out_of_service": self.out_of_service,
        }


def is_out_of_service(periods: Iterable[AllocationRecord], now: datetime) -> bool:
    """A resource is out of service while ``now`` lies inside any maintenance window."""
    moment = to_civil(now)
    return any(period.window.start <= moment <= period.window.end for period in periods)


def current_out_of_service(tx: StoreTransaction, resource_id: str, now: datetime | None = None) -> bool:
    return is_out_of_service(tx.list_allocations(resource_id, [AllocationKind.MAINTENANCE]), now or civil_now())


def set_maintenance(
    tx: StoreTransaction,
    resource_id: str,
    periods: Iterable[MaintenancePeriod],
    now: datetime | None = None,
) -> MaintenanceResult:
    """Replace the maintenance periods of ``resource_id`` with ``periods``.

    Each period must be clear of bookings and reservations; existing maintenance
    on the resource is replaced as a set. An empty ``periods`` clears maintenance.
    """
    effective_now = to_civil(now or civil_now())
    requested = list(periods)
    for period in requested:
        validate_window(period.window, effective_now, allow_past=True)
    for index, period in enumerate(requested):
        for other in requested[index + 1:]:
            if overlaps(period.window, other.window):
                raise InvalidWindow(
                    "Maintenance periods overlap each other.",
                    {"periods": [period.window.to_dict(), other.window.to_dict()]},
                )

    tx.get_resource(resource_id)
    reports = [
        check_conflicts(tx, resource_id, period.window, kinds=BLOCKING_KINDS, now=effective_now)
        for period in requested
    ]
    if any(not report.is_empty for report in reports):
        raise Conflict(reports)

    existing = tx.list_allocations(resource_id, [AllocationKind.MAINTENANCE])
    for record in existing:
        tx.delete_allocation(record.allocation_id)

    created = [
        tx.insert_allocation(
            AllocationRecord(
                allocation_id=str(uuid4()),
                resource_id=resource_id,
                kind=AllocationKind.MAINTENANCE,
                window=period.window,
                created_at=effective_now,
                reason=period.reason,
            )
        )
        for period in requested
    ]

    flag = refresh_service_flag(tx, resource_id, effective_now) if created else _clear_service_flag(tx, resource_id)
    tx.log_event(
        "MAINTENANCE_SET",
        {
            "resource_id": resource_id,
            "periods": [{**record.window.to_dict(), "reason": record.reason} for record in created],
            "replaced": len(existing),
            "out_of_service": flag,
        },
        effective_now,
    )
    return MaintenanceResult(
        resource_id=resource_id,
        allocation_ids=tuple(record.allocation_id for record in created),
        replaced=len(existing),
        out_of_service=flag,
    )


def refresh_service_flag(tx: StoreTransaction, resource_id: str, now: datetime) -> bool:
    instance = tx.get_resource(resource_id)
    flag = current_out_of_service(tx, resource_id, now)
    tx.update_resource(replace(instance, out_of_service=flag))
    return flag


def refresh_service_flags(tx: StoreTransaction, now: datetime | None = None) -> dict[str, int]:
    """Recompute derived flags for every resource and purge long-finished maintenance."""
    effective_now = to_civil(now or civil_now())
    cutoff = effective_now - timedelta(days=MAINTENANCE_RETENTION_DAYS)

    purged = 0
    for record in tx.list_allocations(kinds=[AllocationKind.MAINTENANCE]):
        if record.window.end < cutoff:
            tx.delete_allocation(record.allocation_id)
            purged += 1

    out_of_service = 0
    reserved = 0
    for instance in tx.list_resources():
        updated = replace(
            instance,
            out_of_service=current_out_of_service(tx, instance.resource_id, effective_now),
            has_reservation=has_future_reservation(tx, instance.resource_id, effective_now),
        )
        tx.update_resource(updated)
        out_of_service += int(updated.out_of_service)
        reserved += int(updated.has_reservation)

    summary = {"purged": purged, "out_of_service": out_of_service, "reserved": reserved}
    if purged:
        tx.log_event("MAINTENANCE_PURGED", {"count": purged}, effective_now)
    tx.log_event("SERVICE_FLAGS_REFRESHED", summary, effective_now)
    return summary


def _clear_service_flag(tx: StoreTransaction, resource_id: str) -> bool:
    instance = tx.get_resource(resource_id)
    tx.update_resource(replace(instance, out_of_service=False))
    return False
