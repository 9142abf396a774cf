from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .intervals import Granularity, TimeWindow, to_civil


class AllocationKind(str, Enum):
    BOOKING = "booking"
    RESERVATION = "reservation"
    MAINTENANCE = "maintenance"


ALL_KINDS = frozenset(AllocationKind)


@dataclass(frozen=True)
class RateCard:
    member: Decimal
    guest: Decimal

    def to_dict(self) -> dict[str, str]:
        return {"member": str(self.member), "guest": str(self.guest)}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RateCard":
        return RateCard(member=Decimal(str(data["member"])), guest=Decimal(str(data["guest"])))


@dataclass(frozen=True)
class ResourceType:
    name: str
    granularity: Granularity
    rate_card: RateCard

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "granularity": self.granularity.value,
            "rate_card": self.rate_card.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ResourceType":
        return ResourceType(
            name=str(data["name"]),
            granularity=Granularity(str(data["granularity"])),
            rate_card=RateCard.from_dict(data["rate_card"]),
        )


@dataclass(frozen=True)
class ResourceInstance:
    resource_id: str
    resource_type: str
    label: str
    active: bool = True
    out_of_service: bool = False
    has_reservation: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "label": self.label,
            "active": self.active,
            "out_of_service": self.out_of_service,
            "has_reservation": self.has_reservation,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ResourceInstance":
        return ResourceInstance(
            resource_id=str(data["resource_id"]),
            resource_type=str(data["resource_type"]),
            label=str(data.get("label") or data["resource_id"]),
            active=bool(data.get("active", True)),
            out_of_service=bool(data.get("out_of_service", False)),
            has_reservation=bool(data.get("has_reservation", False)),
        )


@dataclass(frozen=True)
class AllocationRecord:
    """One booking, reservation or maintenance period occupying a resource.

    Reservations written by a hold carry ``hold_set_id`` and ``hold_expires_at``;
    they stop occupying the resource once the hold expires.
    """

    allocation_id: str
    resource_id: str
    kind: AllocationKind
    window: TimeWindow
    created_at: datetime
    created_by: str | None = None
    reason: str | None = None
    hold_set_id: str | None = None
    hold_expires_at: datetime | None = None
    total_price: Decimal | None = None
    paid_amount: Decimal | None = None
    payment_status: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.kind is AllocationKind.RESERVATION and self.hold_set_id is not None

    def is_live(self, now: datetime) -> bool:
        if not self.is_placeholder or self.hold_expires_at is None:
            return True
        return to_civil(now) <= self.hold_expires_at

    @property
    def owed_amount(self) -> Decimal | None:
        if self.total_price is None:
            return None
        return self.total_price - (self.paid_amount or Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "allocation_id": self.allocation_id,
            "resource_id": self.resource_id,
            "kind": self.kind.value,
            **self.window.to_dict(),
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }
        optional = {
            "created_by": self.created_by,
            "reason": self.reason,
            "hold_set_id": self.hold_set_id,
            "hold_expires_at": self.hold_expires_at.isoformat(timespec="seconds") if self.hold_expires_at else None,
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "paid_amount": str(self.paid_amount) if self.paid_amount is not None else None,
            "payment_status": self.payment_status,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AllocationRecord":
        hold_expires_at = data.get("hold_expires_at")
        total_price = data.get("total_price")
        paid_amount = data.get("paid_amount")
        return AllocationRecord(
            allocation_id=str(data["allocation_id"]),
            resource_id=str(data["resource_id"]),
            kind=AllocationKind(str(data["kind"])),
            window=TimeWindow.from_dict(data),
            created_at=to_civil(datetime.fromisoformat(str(data["created_at"]))),
            created_by=(str(data["created_by"]) if data.get("created_by") is not None else None),
            reason=(str(data["reason"]) if data.get("reason") is not None else None),
            hold_set_id=(str(data["hold_set_id"]) if data.get("hold_set_id") is not None else None),
            hold_expires_at=to_civil(datetime.fromisoformat(str(hold_expires_at))) if hold_expires_at else None,
            total_price=Decimal(str(total_price)) if total_price is not None else None,
            paid_amount=Decimal(str(paid_amount)) if paid_amount is not None else None,
            payment_status=(str(data["payment_status"]) if data.get("payment_status") is not None else None),
        )

    def as_booking(self, total_price: Decimal | None, paid_amount: Decimal, payment_status: str) -> "AllocationRecord":
        return replace(
            self,
            kind=AllocationKind.BOOKING,
            hold_set_id=None,
            hold_expires_at=None,
            total_price=total_price,
            paid_amount=paid_amount,
            payment_status=payment_status,
        )


@dataclass(frozen=True)
class HoldRecord:
    resource_id: str
    hold_set_id: str
    expires_at: datetime
    window: TimeWindow
    held_by: str | None = None

    def is_active(self, now: datetime) -> bool:
        return to_civil(now) <= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "resource_id": self.resource_id,
            "hold_set_id": self.hold_set_id,
            "expires_at": self.expires_at.isoformat(timespec="seconds"),
            **self.window.to_dict(),
        }
        if self.held_by is not None:
            payload["held_by"] = self.held_by
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "HoldRecord":
        return HoldRecord(
            resource_id=str(data["resource_id"]),
            hold_set_id=str(data["hold_set_id"]),
            expires_at=to_civil(datetime.fromisoformat(str(data["expires_at"]))),
            window=TimeWindow.from_dict(data),
            held_by=(str(data["held_by"]) if data.get("held_by") is not None else None),
        )


@dataclass(frozen=True)
class HoldSet:
    hold_set_id: str
    resource_ids: tuple[str, ...]
    window: TimeWindow
    expires_at: datetime
    placeholder_ids: tuple[str, ...] = ()
    amounts: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_amount(self) -> Decimal:
        return sum(self.amounts.values(), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "hold_set_id": self.hold_set_id,
            "resource_ids": list(self.resource_ids),
            "window": self.window.to_dict(),
            "expires_at": self.expires_at.isoformat(timespec="seconds"),
            "placeholder_ids": list(self.placeholder_ids),
            "amounts": {resource_id: str(amount) for resource_id, amount in self.amounts.items()},
            "total_amount": str(self.total_amount),
        }
