from __future__ import annotations

from datetime import date, datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .engine import AllocationEngine
from .errors import (
    AllocationError,
    AlreadyHeld,
    Conflict,
    InvalidPayment,
    InvalidWindow,
    NotFound,
    PartialBatchFailure,
    Unavailable,
    UnknownRateTier,
)
from .intervals import parse_window
from .maintenance import MaintenancePeriod
from .yaml_store import AllocationYamlRepository

ERROR_STATUS: list[tuple[type[AllocationError], int]] = [
    (InvalidWindow, 400),
    (UnknownRateTier, 400),
    (InvalidPayment, 400),
    (NotFound, 404),
    (Conflict, 409),
    (AlreadyHeld, 409),
    (PartialBatchFailure, 500),
    (Unavailable, 503),
]


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    engine = AllocationEngine(AllocationYamlRepository(data_dir), now_provider)
    app.config["ENGINE"] = engine

    def structured_errors(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return view(*args, **kwargs)
            except AllocationError as error:
                return jsonify({"ok": False, **error.to_dict()}), _status_for(error)
            except ValueError as error:
                return jsonify({"ok": False, "error": "bad_request", "message": str(error), "details": {}}), 400

        return wrapper

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/availability")
    @structured_errors
    def get_availability() -> Any:
        resource_type = _required(request.args, "resource_type")
        window = parse_window(request.args.to_dict())
        available = engine.find_available(resource_type, window)
        return jsonify(
            {
                "ok": True,
                "resource_type": resource_type,
                "window": window.to_dict(),
                "resources": [instance.to_dict() for instance in available],
            }
        )

    @app.post("/api/price")
    @structured_errors
    def quote_price() -> Any:
        payload = _json_payload()
        resource_type = _required(payload, "resource_type")
        window = parse_window(payload)
        tier = payload.get("tier", "member")
        amount = engine.compute_price(resource_type, tier, window)
        return jsonify({"ok": True, "resource_type": resource_type, "tier": tier, "amount": str(amount)})

    @app.post("/api/holds")
    @structured_errors
    def place_hold() -> Any:
        payload = _json_payload()
        window = parse_window(payload.get("window") or {})
        tier = payload.get("tier", "member")
        if "resource_ids" not in payload and payload.get("resource_type"):
            hold_set = engine.place_hold_by_type(
                _required(payload, "resource_type"),
                _count(payload),
                window,
                tier=tier,
                held_by=payload.get("held_by"),
            )
        else:
            hold_set = engine.place_hold(_resource_ids(payload), window, tier=tier, held_by=payload.get("held_by"))
        return jsonify({"ok": True, "hold": hold_set.to_dict()}), 201

    @app.post("/api/holds/<hold_set_id>/confirm")
    @structured_errors
    def confirm_hold(hold_set_id: str) -> Any:
        payload = _json_payload()
        bookings = engine.on_payment_confirmed(
            hold_set_id,
            payload.get("payment_status", "PAID"),
            payload.get("paid_amount"),
        )
        return jsonify({"ok": True, "bookings": [record.to_dict() for record in bookings]})

    @app.post("/api/holds/<hold_set_id>/fail")
    @structured_errors
    def fail_hold(hold_set_id: str) -> Any:
        released = engine.on_payment_failed(hold_set_id)
        return jsonify({"ok": True, "released": released})

    @app.post("/api/holds/<hold_set_id>/renew")
    @structured_errors
    def renew_hold(hold_set_id: str) -> Any:
        expires_at = engine.renew_hold(hold_set_id)
        return jsonify({"ok": True, "hold_set_id": hold_set_id, "expires_at": expires_at.isoformat(timespec="seconds")})

    @app.get("/api/resources/<resource_id>")
    @structured_errors
    def get_resource(resource_id: str) -> Any:
        return jsonify({"ok": True, "resource": engine.resource_status(resource_id)})

    @app.post("/api/reservations")
    @structured_errors
    def reserve() -> Any:
        payload = _json_payload()
        result = engine.reserve(_resource_ids(payload), parse_window(payload.get("window") or {}), payload.get("actor_id"))
        return jsonify({"ok": True, **result.to_dict()})

    @app.post("/api/reservations/delete")
    @structured_errors
    def unreserve() -> Any:
        payload = _json_payload()
        result = engine.unreserve(_resource_ids(payload), parse_window(payload.get("window") or {}))
        return jsonify({"ok": True, **result.to_dict()})

    @app.post("/api/maintenance")
    @structured_errors
    def set_maintenance() -> Any:
        payload = _json_payload()
        resource_id = _required(payload, "resource_id")
        periods = [MaintenancePeriod.from_dict(item) for item in payload.get("periods", [])]
        result = engine.set_maintenance(resource_id, periods)
        return jsonify({"ok": True, **result.to_dict()})

    @app.post("/api/bookings/<allocation_id>/cancel")
    @structured_errors
    def cancel_booking(allocation_id: str) -> Any:
        booking = engine.cancel_booking(allocation_id)
        return jsonify({"ok": True, "booking": booking.to_dict()})

    @app.post("/api/bookings/<allocation_id>/payment")
    @structured_errors
    def update_payment(allocation_id: str) -> Any:
        payload = _json_payload()
        booking = engine.update_payment(allocation_id, _required(payload, "payment_status"), payload.get("paid_amount"))
        return jsonify({"ok": True, "booking": booking.to_dict()})

    @app.get("/api/calendar")
    @structured_errors
    def get_calendar() -> Any:
        resource_type = _required(request.args, "resource_type")
        first_day = date.fromisoformat(_required(request.args, "from"))
        last_day = date.fromisoformat(_required(request.args, "to"))
        return jsonify({"ok": True, **engine.calendar(resource_type, first_day, last_day)})

    @app.post("/api/sweep")
    @structured_errors
    def sweep() -> Any:
        return jsonify({"ok": True, **engine.sweep()})

    return app


def _status_for(error: AllocationError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def _json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object.")
    return payload


def _required(source: Any, key: str) -> str:
    value = str(source.get(key, "") or "").strip()
    if not value:
        raise ValueError(f"{key} is required")
    return value


def _resource_ids(payload: dict[str, Any]) -> list[str]:
    resource_ids = payload.get("resource_ids")
    if not isinstance(resource_ids, list) or not resource_ids:
        raise ValueError("resource_ids must be a non-empty list")
    return [str(value) for value in resource_ids]


def _count(payload: dict[str, Any]) -> int:
    try:
        count = int(payload.get("count", 1))
    except (TypeError, ValueError):
        raise ValueError("count must be a positive integer") from None
    if count < 1:
        raise ValueError("count must be a positive integer")
    return count


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
