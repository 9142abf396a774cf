from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable
from uuid import uuid4

from .conflicts import check_conflicts
from .errors import AlreadyHeld, Conflict, NotFound, PartialBatchFailure
from .intervals import TimeWindow, civil_now, to_civil
from .pricing import PaymentStatus, settle_payment
from .records import AllocationKind, AllocationRecord, HoldRecord, HoldSet
from .yaml_store import StoreTransaction

HOLD_TTL = timedelta(minutes=3)


def unique_ids(resource_ids: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for resource_id in resource_ids:
        normalized = str(resource_id).strip()
        if not normalized:
            raise ValueError("resource id must not be empty")
        if normalized not in seen:
            seen.append(normalized)
    if not seen:
        raise ValueError("resource_ids must not be empty")
    return seen


def is_held(tx: StoreTransaction, resource_id: str, now: datetime | None = None) -> bool:
    hold = tx.get_hold(resource_id)
    return hold is not None and hold.is_active(now or civil_now())


def live_holds(tx: StoreTransaction, resource_ids: Iterable[str], now: datetime) -> dict[str, datetime]:
    held: dict[str, datetime] = {}
    for resource_id in resource_ids:
        hold = tx.get_hold(resource_id)
        if hold is not None and hold.is_active(now):
            held[resource_id] = hold.expires_at
    return held


def place_hold(
    tx: StoreTransaction,
    resource_ids: Iterable[str],
    window: TimeWindow,
    now: datetime | None = None,
    ttl: timedelta = HOLD_TTL,
    amounts: dict[str, Decimal] | None = None,
    held_by: str | None = None,
) -> HoldSet:
    """Hold every resource in the batch for payment, or none of them.

    Each held resource also receives a placeholder reservation for ``window`` so
    that it drops out of availability while payment is pending.
    """
    effective_now = to_civil(now or civil_now())
    ids = unique_ids(resource_ids)
    amounts = amounts or {}

    for resource_id in ids:
        instance = tx.get_resource(resource_id)
        if not instance.active:
            raise NotFound(f"Resource is not active: {resource_id}", {"resource_id": resource_id})

    held = live_holds(tx, ids, effective_now)
    if held:
        raise AlreadyHeld(held)

    reports = [check_conflicts(tx, resource_id, window, now=effective_now) for resource_id in ids]
    if any(not report.is_empty for report in reports):
        raise Conflict(reports)

    hold_set_id = str(uuid4())
    expires_at = effective_now + ttl
    placeholder_ids: list[str] = []
    try:
        for resource_id in ids:
            tx.put_hold(
                HoldRecord(
                    resource_id=resource_id,
                    hold_set_id=hold_set_id,
                    expires_at=expires_at,
                    window=window,
                    held_by=held_by,
                )
            )
            placeholder = tx.insert_allocation(
                AllocationRecord(
                    allocation_id=str(uuid4()),
                    resource_id=resource_id,
                    kind=AllocationKind.RESERVATION,
                    window=window,
                    created_at=effective_now,
                    created_by=held_by,
                    reason="payment pending",
                    hold_set_id=hold_set_id,
                    hold_expires_at=expires_at,
                    total_price=amounts.get(resource_id),
                )
            )
            placeholder_ids.append(placeholder.allocation_id)
    except Exception:
        _discard_hold_set(tx, hold_set_id)
        raise

    if len(tx.list_holds(hold_set_id)) != len(ids) or len(_placeholders(tx, hold_set_id)) != len(ids):
        _discard_hold_set(tx, hold_set_id)
        raise PartialBatchFailure(
            "Hold batch was not written completely.",
            {"hold_set_id": hold_set_id, "resource_ids": ids},
        )

    hold_set = HoldSet(
        hold_set_id=hold_set_id,
        resource_ids=tuple(ids),
        window=window,
        expires_at=expires_at,
        placeholder_ids=tuple(placeholder_ids),
        amounts={resource_id: amount for resource_id, amount in amounts.items() if resource_id in ids},
    )
    tx.log_event("HOLD_PLACED", hold_set.to_dict(), effective_now)
    return hold_set


def release_hold(tx: StoreTransaction, hold_set_id: str, now: datetime | None = None) -> int:
    """Drop the holds and placeholders of a hold set. Safe to call repeatedly."""
    released = _discard_hold_set(tx, hold_set_id)
    if released:
        tx.log_event("HOLD_RELEASED", {"hold_set_id": hold_set_id, "released": released}, now)
    return released


def renew_hold(
    tx: StoreTransaction,
    hold_set_id: str,
    now: datetime | None = None,
    ttl: timedelta = HOLD_TTL,
) -> datetime:
    """Push the expiry of a live hold set to ``ttl`` past ``now``.

    Only a set whose every hold is still unexpired and still owned by it can be
    renewed; a lapsed set has to be placed again.
    """
    effective_now = to_civil(now or civil_now())
    placeholders = _placeholders(tx, hold_set_id)
    held = tx.list_holds(hold_set_id)
    if not placeholders or len(held) != len(placeholders) or not all(hold.is_active(effective_now) for hold in held):
        raise NotFound(f"No live hold set: {hold_set_id}", {"hold_set_id": hold_set_id})

    expires_at = effective_now + ttl
    for hold in held:
        tx.put_hold(replace(hold, expires_at=expires_at))
    for record in placeholders:
        tx.replace_allocation(replace(record, hold_expires_at=expires_at))
    tx.log_event(
        "HOLD_RENEWED",
        {"hold_set_id": hold_set_id, "expires_at": expires_at.isoformat(timespec="seconds")},
        effective_now,
    )
    return expires_at


def confirm_hold(
    tx: StoreTransaction,
    hold_set_id: str,
    payment_status: PaymentStatus | str = PaymentStatus.PAID,
    paid_amount: Any = None,
    now: datetime | None = None,
) -> list[AllocationRecord]:
    effective_now = to_civil(now or civil_now())
    placeholders = _placeholders(tx, hold_set_id)
    if not placeholders:
        raise NotFound(f"Hold set not found: {hold_set_id}", {"hold_set_id": hold_set_id})

    if any(not record.is_live(effective_now) for record in placeholders):
        _revalidate_expired(tx, placeholders, effective_now)

    total = sum((record.total_price or Decimal("0") for record in placeholders), Decimal("0"))
    summary = settle_payment(total, payment_status, paid_amount)

    bookings: list[AllocationRecord] = []
    remaining_paid = summary.paid
    for index, record in enumerate(placeholders):
        record_total = record.total_price or Decimal("0")
        if index == len(placeholders) - 1:
            record_paid = remaining_paid
        elif total > 0:
            record_paid = (summary.paid * record_total / total).quantize(Decimal("0.01"))
        else:
            record_paid = Decimal("0")
        remaining_paid -= record_paid
        bookings.append(tx.replace_allocation(record.as_booking(record.total_price, record_paid, summary.status.value)))

    for hold in tx.list_holds(hold_set_id):
        tx.delete_hold(hold.resource_id)

    tx.log_event(
        "HOLD_CONFIRMED",
        {
            "hold_set_id": hold_set_id,
            "booking_ids": [record.allocation_id for record in bookings],
            **summary.to_dict(),
        },
        effective_now,
    )
    return bookings


def sweep_expired_holds(tx: StoreTransaction, now: datetime | None = None) -> int:
    """Delete expired holds and their orphaned placeholders.

    Advisory only: expired holds are already invisible to every reader.
    """
    effective_now = now or civil_now()
    removed = 0
    for hold in tx.list_holds():
        if not hold.is_active(effective_now):
            tx.delete_hold(hold.resource_id)
            removed += 1
    for record in tx.list_allocations(kinds=[AllocationKind.RESERVATION]):
        if record.is_placeholder and not record.is_live(effective_now):
            tx.delete_allocation(record.allocation_id)
            removed += 1
    if removed:
        tx.log_event("HOLDS_SWEPT", {"removed": removed}, effective_now)
    return removed


def _placeholders(tx: StoreTransaction, hold_set_id: str) -> list[AllocationRecord]:
    return [
        record
        for record in tx.list_allocations(kinds=[AllocationKind.RESERVATION])
        if record.hold_set_id == hold_set_id
    ]


def _discard_hold_set(tx: StoreTransaction, hold_set_id: str) -> int:
    released = 0
    for record in _placeholders(tx, hold_set_id):
        if tx.delete_allocation(record.allocation_id):
            released += 1
    for hold in tx.list_holds(hold_set_id):
        tx.delete_hold(hold.resource_id)
    return released


def _revalidate_expired(tx: StoreTransaction, placeholders: list[AllocationRecord], now: datetime) -> None:
    held: dict[str, datetime] = {}
    reports = []
    for record in placeholders:
        hold = tx.get_hold(record.resource_id)
        if hold is not None and hold.hold_set_id != record.hold_set_id and hold.is_active(now):
            held[record.resource_id] = hold.expires_at
        reports.append(check_conflicts(tx, record.resource_id, record.window, exclude_allocation_id=record.allocation_id, now=now))
    if held:
        raise AlreadyHeld(held)
    if any(not report.is_empty for report in reports):
        raise Conflict(reports)
