from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from allocation_engine import (
    AllocationKind,
    AllocationRecord,
    AllocationYamlRepository,
    Granularity,
    RateCard,
    ResourceInstance,
    ResourceType,
    TimeWindow,
)
from allocation_engine.intervals import CIVIL_TIMEZONE

NOW = datetime(2025, 6, 1, 10, 0, tzinfo=CIVIL_TIMEZONE)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def build_repository(temp_dir: str) -> AllocationYamlRepository:
    repo = AllocationYamlRepository(Path(temp_dir) / "data")
    repo.add_resource_type(ResourceType("room", Granularity.NIGHT, RateCard(Decimal("3000"), Decimal("4500"))))
    repo.add_resource_type(ResourceType("hall", Granularity.SLOT, RateCard(Decimal("50000"), Decimal("80000"))))
    repo.add_resource_type(ResourceType("photoshoot", Granularity.EVENT, RateCard(Decimal("5000"), Decimal("8000"))))
    for number in (101, 102, 103):
        repo.add_resource(ResourceInstance(f"R{number}", "room", f"Room {number}"))
    repo.add_resource(ResourceInstance("H1", "hall", "Banquet Hall"))
    repo.add_resource(ResourceInstance("H2", "hall", "Conference Hall"))
    repo.add_resource(ResourceInstance("P1", "photoshoot", "Studio"))
    return repo


def insert_booking(
    repo: AllocationYamlRepository,
    resource_id: str,
    window: TimeWindow,
    now: datetime = NOW,
) -> AllocationRecord:
    with repo.transaction(now) as tx:
        return tx.insert_allocation(
            AllocationRecord(
                allocation_id=str(uuid4()),
                resource_id=resource_id,
                kind=AllocationKind.BOOKING,
                window=window,
                created_at=now,
                total_price=Decimal("6000"),
                paid_amount=Decimal("6000"),
                payment_status="PAID",
            )
        )
