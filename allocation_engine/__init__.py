from .intervals import Granularity, Slot, TimeWindow, duration_units, overlaps, slot_overlaps
from .errors import (
	AllocationError,
	AlreadyHeld,
	Conflict,
	InvalidPayment,
	InvalidWindow,
	NonPositiveDuration,
	NotFound,
	PartialBatchFailure,
	Unavailable,
	UnknownRateTier,
)
from .records import AllocationKind, AllocationRecord, HoldRecord, HoldSet, RateCard, ResourceInstance, ResourceType
from .pricing import PaymentStatus, PricingTier, compute_price, settle_payment
from .yaml_store import AllocationYamlRepository, StoreTransaction
from .conflicts import ConflictEntry, ConflictReport, check_conflicts
from .maintenance import MaintenancePeriod
from .engine import AllocationEngine

__all__ = [
	"Granularity",
	"Slot",
	"TimeWindow",
	"duration_units",
	"overlaps",
	"slot_overlaps",
	"AllocationError",
	"AlreadyHeld",
	"Conflict",
	"InvalidPayment",
	"InvalidWindow",
	"NonPositiveDuration",
	"NotFound",
	"PartialBatchFailure",
	"Unavailable",
	"UnknownRateTier",
	"AllocationKind",
	"AllocationRecord",
	"HoldRecord",
	"HoldSet",
	"RateCard",
	"ResourceInstance",
	"ResourceType",
	"PaymentStatus",
	"PricingTier",
	"compute_price",
	"settle_payment",
	"AllocationYamlRepository",
	"StoreTransaction",
	"ConflictEntry",
	"ConflictReport",
	"check_conflicts",
	"MaintenancePeriod",
	"AllocationEngine",
]
