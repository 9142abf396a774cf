from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable
from uuid import uuid4

from .conflicts import check_conflicts
from .errors import AlreadyHeld, Conflict
from .holds import live_holds, unique_ids
from .intervals import TimeWindow, civil_now, to_civil, validate_window
from .records import AllocationKind, AllocationRecord
from .yaml_store import StoreTransaction


@dataclass(frozen=True)
class ReservationResult:
    count: int
    resource_ids: tuple[str, ...]
    allocation_ids: tuple[str, ...] = ()
    superseded: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "resource_ids": list(self.resource_ids),
            "allocation_ids": list(self.allocation_ids),
            "superseded": self.superseded,
        }


def reserve(
    tx: StoreTransaction,
    resource_ids: Iterable[str],
    window: TimeWindow,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> ReservationResult:
    """Reserve every resource in the batch for ``window``, or none of them.

    A reservation for the exact same window and slot is superseded instead of
    reported as a conflict.
    """
    effective_now = to_civil(now or civil_now())
    validate_window(window, effective_now)
    ids = unique_ids(resource_ids)

    for resource_id in ids:
        tx.get_resource(resource_id)

    held = live_holds(tx, ids, effective_now)
    if held:
        raise AlreadyHeld(held)

    superseded = 0
    reports = []
    for resource_id in ids:
        for record in _exact_reservations(tx, resource_id, window):
            tx.delete_allocation(record.allocation_id)
            superseded += 1
        reports.append(check_conflicts(tx, resource_id, window, now=effective_now))

    if any(not report.is_empty for report in reports):
        raise Conflict(reports)

    created: list[AllocationRecord] = []
    for resource_id in ids:
        created.append(
            tx.insert_allocation(
                AllocationRecord(
                    allocation_id=str(uuid4()),
                    resource_id=resource_id,
                    kind=AllocationKind.RESERVATION,
                    window=window,
                    created_at=effective_now,
                    created_by=actor_id,
                )
            )
        )
        refresh_reservation_flag(tx, resource_id, effective_now)

    if superseded:
        tx.log_event(
            "RESERVATION_SUPERSEDED",
            {"resource_ids": ids, "count": superseded, **window.to_dict()},
            effective_now,
        )
    tx.log_event(
        "RESERVATION_CREATED",
        {
            "resource_ids": ids,
            "allocation_ids": [record.allocation_id for record in created],
            "actor_id": actor_id,
            **window.to_dict(),
        },
        effective_now,
    )
    return ReservationResult(
        count=len(created),
        resource_ids=tuple(ids),
        allocation_ids=tuple(record.allocation_id for record in created),
        superseded=superseded,
    )


def unreserve(
    tx: StoreTransaction,
    resource_ids: Iterable[str],
    window: TimeWindow,
    now: datetime | None = None,
) -> ReservationResult:
    """Remove reservations matching ``window`` exactly. Bookings and maintenance are never touched."""
    effective_now = to_civil(now or civil_now())
    validate_window(window, effective_now, allow_past=True)
    ids = unique_ids(resource_ids)

    removed: list[str] = []
    for resource_id in ids:
        tx.get_resource(resource_id)
        for record in _exact_reservations(tx, resource_id, window):
            tx.delete_allocation(record.allocation_id)
            removed.append(record.allocation_id)
        refresh_reservation_flag(tx, resource_id, effective_now)

    if removed:
        tx.log_event(
            "RESERVATION_REMOVED",
            {"resource_ids": ids, "allocation_ids": removed, **window.to_dict()},
            effective_now,
        )
    return ReservationResult(count=len(removed), resource_ids=tuple(ids), allocation_ids=tuple(removed))


def has_future_reservation(tx: StoreTransaction, resource_id: str, now: datetime) -> bool:
    return any(
        not record.is_placeholder and record.window.end > now
        for record in tx.list_allocations(resource_id, [AllocationKind.RESERVATION])
    )


def refresh_reservation_flag(tx: StoreTransaction, resource_id: str, now: datetime) -> bool:
    instance = tx.get_resource(resource_id)
    flag = has_future_reservation(tx, resource_id, now)
    tx.update_resource(replace(instance, has_reservation=flag))
    return flag


def _exact_reservations(tx: StoreTransaction, resource_id: str, window: TimeWindow) -> list[AllocationRecord]:
    return [
        record
        for record in tx.list_allocations(resource_id, [AllocationKind.RESERVATION])
        if not record.is_placeholder and record.window.same_as(window)
    ]
