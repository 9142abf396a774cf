from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator

from . import availability, holds, maintenance, reservations
from .conflicts import ConflictReport, check_conflicts
from .errors import AllocationError, Conflict, NotFound, PartialBatchFailure
from .intervals import TimeWindow, civil_now, to_civil, validate_window
from .maintenance import MaintenancePeriod, MaintenanceResult
from .pricing import (
    PaymentStatus,
    PricingTier,
    compute_price,
    parse_tier,
    require_positive_duration,
    settle_payment,
)
from .records import AllocationKind, AllocationRecord, HoldSet, ResourceInstance
from .reservations import ReservationResult
from .yaml_store import AllocationYamlRepository, StoreTransaction


class AllocationEngine:
    """Entry point for booking UIs, admin tools and the payment collaborator.

    Every call runs in exactly one store transaction. Rejections are raised as
    :class:`AllocationError` subclasses and recorded in the event log.
    """

    def __init__(
        self,
        repository: AllocationYamlRepository,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self._clock: Callable[[], datetime] = now_provider or civil_now

    def now(self) -> datetime:
        return to_civil(self._clock())

    @contextmanager
    def _transaction(self, operation: str, now: datetime) -> Iterator[StoreTransaction]:
        try:
            with self.repository.transaction(now) as tx:
                yield tx
        except PartialBatchFailure as error:
            self.repository.log_event("PARTIAL_BATCH_FAILURE", {"operation": operation, **error.to_dict()}, now)
            raise
        except AllocationError as error:
            self.repository.log_event("REQUEST_REJECTED", {"operation": operation, **error.to_dict()}, now)
            raise

    def find_available(self, resource_type: str, window: TimeWindow) -> list[ResourceInstance]:
        now = self.now()
        with self.repository.transaction(now) as tx:
            return availability.find_available(tx, resource_type, window, now)

    def compute_price(self, resource_type: str, tier: PricingTier | str, window: TimeWindow) -> Decimal:
        pricing_tier = parse_tier(tier)
        require_positive_duration(window)
        with self.repository.transaction(self.now()) as tx:
            return compute_price(tx.get_resource_type(resource_type), pricing_tier, window)

    def check_conflicts(self, resource_id: str, window: TimeWindow) -> ConflictReport:
        now = self.now()
        with self.repository.transaction(now) as tx:
            return check_conflicts(tx, resource_id, window, now=now)

    def is_held(self, resource_id: str) -> bool:
        now = self.now()
        with self.repository.transaction(now) as tx:
            tx.get_resource(resource_id)
            return holds.is_held(tx, resource_id, now)

    def place_hold(
        self,
        resource_ids: Iterable[str],
        window: TimeWindow,
        tier: PricingTier | str = PricingTier.MEMBER,
        held_by: str | None = None,
    ) -> HoldSet:
        now = self.now()
        validate_window(window, now)
        pricing_tier = parse_tier(tier)
        ids = holds.unique_ids(resource_ids)
        with self._transaction("place_hold", now) as tx:
            amounts = self._amounts(tx, ids, pricing_tier, window)
            return holds.place_hold(tx, ids, window, now=now, amounts=amounts, held_by=held_by)

    def place_hold_by_type(
        self,
        resource_type: str,
        count: int,
        window: TimeWindow,
        tier: PricingTier | str = PricingTier.MEMBER,
        held_by: str | None = None,
    ) -> HoldSet:
        """Hold the first ``count`` available instances of ``resource_type``.

        Candidates are picked in label order inside the same transaction that
        places the hold. When fewer than ``count`` are free the whole request is
        rejected with a :class:`Conflict` naming the shortfall.
        """
        now = self.now()
        validate_window(window, now)
        pricing_tier = parse_tier(tier)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValueError("count must be a positive integer")
        with self._transaction("place_hold_by_type", now) as tx:
            candidates = availability.find_available(tx, resource_type, window, now)
            if len(candidates) < count:
                free = {instance.resource_id for instance in candidates}
                blocked = [
                    check_conflicts(tx, instance.resource_id, window, now=now)
                    for instance in tx.list_resources(resource_type)
                    if instance.active and instance.resource_id not in free
                ]
                raise Conflict(
                    blocked,
                    f"Only {len(candidates)} {resource_type}(s) available for the requested window.",
                    {"resource_type": resource_type, "requested": count, "available": len(candidates)},
                )
            ids = [instance.resource_id for instance in candidates[:count]]
            amounts = self._amounts(tx, ids, pricing_tier, window)
            return holds.place_hold(tx, ids, window, now=now, amounts=amounts, held_by=held_by)

    def on_payment_confirmed(
        self,
        hold_set_id: str,
        payment_status: PaymentStatus | str = PaymentStatus.PAID,
        paid_amount: Any = None,
    ) -> list[AllocationRecord]:
        now = self.now()
        with self._transaction("on_payment_confirmed", now) as tx:
            return holds.confirm_hold(tx, hold_set_id, payment_status, paid_amount, now)

    def on_payment_failed(self, hold_set_id: str) -> int:
        now = self.now()
        with self._transaction("on_payment_failed", now) as tx:
            return holds.release_hold(tx, hold_set_id, now)

    release_hold = on_payment_failed

    def renew_hold(self, hold_set_id: str) -> datetime:
        now = self.now()
        with self._transaction("renew_hold", now) as tx:
            return holds.renew_hold(tx, hold_set_id, now)

    def reserve(self, resource_ids: Iterable[str], window: TimeWindow, actor_id: str | None = None) -> ReservationResult:
        now = self.now()
        validate_window(window, now)
        with self._transaction("reserve", now) as tx:
            return reservations.reserve(tx, resource_ids, window, actor_id, now)

    def unreserve(self, resource_ids: Iterable[str], window: TimeWindow) -> ReservationResult:
        now = self.now()
        validate_window(window, now, allow_past=True)
        with self._transaction("unreserve", now) as tx:
            return reservations.unreserve(tx, resource_ids, window, now)

    def set_maintenance(self, resource_id: str, periods: Iterable[MaintenancePeriod]) -> MaintenanceResult:
        now = self.now()
        requested = list(periods)
        for period in requested:
            validate_window(period.window, now, allow_past=True)
        with self._transaction("set_maintenance", now) as tx:
            return maintenance.set_maintenance(tx, resource_id, requested, now)

    def clear_maintenance(self, resource_id: str) -> MaintenanceResult:
        return self.set_maintenance(resource_id, [])

    def cancel_booking(self, allocation_id: str) -> AllocationRecord:
        now = self.now()
        with self._transaction("cancel_booking", now) as tx:
            booking = self._get_booking(tx, allocation_id)
            tx.delete_allocation(booking.allocation_id)
            tx.log_event("BOOKING_CANCELLED", booking.to_dict(), now)
            return booking

    def update_payment(
        self,
        allocation_id: str,
        payment_status: PaymentStatus | str,
        paid_amount: Any = None,
    ) -> AllocationRecord:
        now = self.now()
        with self._transaction("update_payment", now) as tx:
            booking = self._get_booking(tx, allocation_id)
            summary = settle_payment(booking.total_price or Decimal("0"), payment_status, paid_amount)
            updated = tx.replace_allocation(
                replace(booking, paid_amount=summary.paid, payment_status=summary.status.value)
            )
            tx.log_event("PAYMENT_UPDATED", {"allocation_id": allocation_id, **summary.to_dict()}, now)
            return updated

    def resource_status(self, resource_id: str) -> dict[str, Any]:
        now = self.now()
        with self.repository.transaction(now) as tx:
            instance = tx.get_resource(resource_id)
            hold = tx.get_hold(resource_id)
            live_hold = hold is not None and hold.is_active(now)
            return {
                **instance.to_dict(),
                "out_of_service": maintenance.current_out_of_service(tx, resource_id, now),
                "has_reservation": reservations.has_future_reservation(tx, resource_id, now),
                "on_hold": live_hold,
                "hold_expires_at": hold.expires_at.isoformat(timespec="seconds") if live_hold else None,
                "maintenance": [
                    record.to_dict() for record in tx.list_allocations(resource_id, [AllocationKind.MAINTENANCE])
                ],
            }

    def calendar(self, resource_type: str, first_day: date, last_day: date) -> dict[str, Any]:
        now = self.now()
        with self.repository.transaction(now) as tx:
            return availability.build_calendar(tx, resource_type, first_day, last_day, now)

    def sweep(self) -> dict[str, int]:
        """Advisory cleanup; safe to run alongside live requests."""
        now = self.now()
        with self.repository.transaction(now) as tx:
            swept = holds.sweep_expired_holds(tx, now)
            summary = maintenance.refresh_service_flags(tx, now)
        return {"holds_swept": swept, **summary}

    def _amounts(
        self,
        tx: StoreTransaction,
        resource_ids: list[str],
        tier: PricingTier,
        window: TimeWindow,
    ) -> dict[str, Decimal]:
        return {
            resource_id: compute_price(tx.get_resource_type(tx.get_resource(resource_id).resource_type), tier, window)
            for resource_id in resource_ids
        }

    def _get_booking(self, tx: StoreTransaction, allocation_id: str) -> AllocationRecord:
        record = tx.get_allocation(allocation_id)
        if record.kind is not AllocationKind.BOOKING:
            raise NotFound(f"Booking not found: {allocation_id}", {"allocation_id": allocation_id})
        return record
