from __future__ import annotations

from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from allocation_engine import AllocationEngine, AllocationError, AllocationYamlRepository, MaintenancePeriod
from allocation_engine.intervals import parse_window

mcp = FastMCP(
    "Allocation MCP Server",
    instructions="Check availability, quote prices and manage holds, reservations and maintenance for club resources.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
ENGINE = AllocationEngine(AllocationYamlRepository(DATA_DIR))


def _rejected(error: AllocationError) -> dict[str, Any]:
    return {"ok": False, **error.to_dict()}


@mcp.resource("allocation://resource-types")
async def list_resource_types() -> list[dict[str, Any]]:
    """List resource types with their granularity and rate card."""
    with ENGINE.repository.transaction() as tx:
        return [resource_type.to_dict() for resource_type in tx.list_resource_types()]


@mcp.resource("allocation://resources")
async def list_resources() -> list[dict[str, Any]]:
    """List every bookable resource instance."""
    with ENGINE.repository.transaction() as tx:
        return [instance.to_dict() for instance in tx.list_resources()]


@mcp.tool()
def find_available(resource_type: str, window: dict[str, str]) -> dict[str, Any]:
    """Return instances of a resource type that are free for the window.

    The window is {check_in, check_out} for rooms, {date, slot} for halls and lawns,
    or {start, end} with ISO timestamps.
    """
    try:
        available = ENGINE.find_available(resource_type, parse_window(window))
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, "resources": [instance.to_dict() for instance in available]}


@mcp.tool()
def quote_price(resource_type: str, window: dict[str, str], tier: str = "member") -> dict[str, Any]:
    """Compute the charge for one instance of a resource type."""
    try:
        amount = ENGINE.compute_price(resource_type, tier, parse_window(window))
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, "amount": str(amount)}


@mcp.tool()
def place_hold(
    window: dict[str, str],
    resource_ids: list[str] | None = None,
    resource_type: str | None = None,
    count: int = 1,
    tier: str = "member",
) -> dict[str, Any]:
    """Hold resources for three minutes while payment is collected.

    Pass explicit ``resource_ids``, or a ``resource_type`` and ``count`` to hold
    the first available instances of that type.
    """
    try:
        if resource_ids:
            hold_set = ENGINE.place_hold(resource_ids, parse_window(window), tier=tier, held_by="mcp")
        elif resource_type:
            hold_set = ENGINE.place_hold_by_type(resource_type, count, parse_window(window), tier=tier, held_by="mcp")
        else:
            return {"ok": False, "error": "bad_request", "message": "resource_ids or resource_type is required", "details": {}}
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, "hold": hold_set.to_dict()}


@mcp.tool()
def release_hold(hold_set_id: str) -> dict[str, Any]:
    """Release a hold after a failed payment."""
    try:
        released = ENGINE.on_payment_failed(hold_set_id)
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, "released": released}


@mcp.tool()
def renew_hold(hold_set_id: str) -> dict[str, Any]:
    """Extend a live hold by another three minutes while the payment is still in progress."""
    try:
        expires_at = ENGINE.renew_hold(hold_set_id)
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, "hold_set_id": hold_set_id, "expires_at": expires_at.isoformat(timespec="seconds")}


@mcp.tool()
def reserve(resource_ids: list[str], window: dict[str, str], actor_id: str = "mcp") -> dict[str, Any]:
    """Reserve resources for a window on behalf of an administrator."""
    try:
        result = ENGINE.reserve(resource_ids, parse_window(window), actor_id)
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, **result.to_dict()}


@mcp.tool()
def unreserve(resource_ids: list[str], window: dict[str, str]) -> dict[str, Any]:
    """Remove reservations that match the window exactly."""
    try:
        result = ENGINE.unreserve(resource_ids, parse_window(window))
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, **result.to_dict()}


@mcp.tool()
def set_maintenance(resource_id: str, periods: list[dict[str, str]]) -> dict[str, Any]:
    """Replace the maintenance periods of a resource. Each period needs a window and a reason."""
    try:
        result = ENGINE.set_maintenance(resource_id, [MaintenancePeriod.from_dict(item) for item in periods])
    except AllocationError as error:
        return _rejected(error)
    return {"ok": True, **result.to_dict()}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
