from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .intervals import TimeWindow, civil_now, slot_overlaps
from .records import ALL_KINDS, AllocationKind, AllocationRecord
from .yaml_store import StoreTransaction


@dataclass(frozen=True)
class ConflictEntry:
    allocation_id: str
    kind: AllocationKind
    window: TimeWindow
    reason: str | None = None
    created_by: str | None = None
    hold_set_id: str | None = None

    @staticmethod
    def from_record(record: AllocationRecord) -> "ConflictEntry":
        return ConflictEntry(
            allocation_id=record.allocation_id,
            kind=record.kind,
            window=record.window,
            reason=record.reason,
            created_by=record.created_by,
            hold_set_id=record.hold_set_id,
        )

    def describe(self) -> str:
        text = f"{self.kind.value} {self.window.describe()}"
        if self.reason:
            text += f": {self.reason}"
        return text

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "allocation_id": self.allocation_id,
            "kind": self.kind.value,
            "window": self.window.to_dict(),
        }
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.created_by is not None:
            payload["created_by"] = self.created_by
        if self.hold_set_id is not None:
            payload["hold_set_id"] = self.hold_set_id
        return payload


@dataclass(frozen=True)
class ConflictReport:
    resource_id: str
    window: TimeWindow
    entries: tuple[ConflictEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def kinds(self) -> set[AllocationKind]:
        return {entry.kind for entry in self.entries}

    def of_kind(self, kind: AllocationKind) -> list[ConflictEntry]:
        return [entry for entry in self.entries if entry.kind is kind]

    def only_exact_reservations(self, window: TimeWindow) -> bool:
        """True when every conflict is a reservation for exactly ``window``."""
        return bool(self.entries) and all(
            entry.kind is AllocationKind.RESERVATION and entry.window.same_as(window) for entry in self.entries
        )

    def describe(self) -> str:
        blockers = ", ".join(entry.describe() for entry in self.entries)
        return f"{self.resource_id} conflicts with {blockers}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "window": self.window.to_dict(),
            "entries": [entry.to_dict() for entry in self.entries],
        }


def check_conflicts(
    tx: StoreTransaction,
    resource_id: str,
    window: TimeWindow,
    exclude_allocation_id: str | None = None,
    kinds: Iterable[AllocationKind] = ALL_KINDS,
    now: datetime | None = None,
) -> ConflictReport:
    """Collect every live allocation on ``resource_id`` that overlaps ``window``.

    Performs no writes. Placeholder reservations whose hold has expired are
    ignored. Callers must run this inside the transaction that performs the
    subsequent write.
    """
    effective_now = now or civil_now()
    tx.get_resource(resource_id)

    entries = [
        ConflictEntry.from_record(record)
        for record in tx.list_allocations(resource_id, kinds)
        if record.allocation_id != exclude_allocation_id
        and record.is_live(effective_now)
        and slot_overlaps(window, record.window)
    ]
    entries.sort(key=lambda entry: (entry.window.start, entry.kind.value))
    return ConflictReport(resource_id=resource_id, window=window, entries=tuple(entries))
