from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator
import shutil
import threading

from filelock import FileLock, Timeout
import yaml

from .errors import NotFound, Unavailable
from .intervals import civil_now
from .records import (
    ALL_KINDS,
    AllocationKind,
    AllocationRecord,
    HoldRecord,
    ResourceInstance,
    ResourceType,
)

RESOURCE_TYPES_FILE = "resource_types.yaml"
RESOURCES_FILE = "resources.yaml"
ALLOCATIONS_FILE = "allocations.yaml"
HOLDS_FILE = "holds.yaml"
EVENTS_FILE = "allocation_events.yaml"
LOCK_FILE = ".allocation_store.lock"
LOCK_TIMEOUT_SECONDS = 10.0

# Holds and flags are derivable or expire on their own; allocations go last.
COMMIT_ORDER = (RESOURCE_TYPES_FILE, RESOURCES_FILE, HOLDS_FILE, ALLOCATIONS_FILE)


@dataclass
class _StoreState:
    resource_types: dict[str, ResourceType]
    resources: dict[str, ResourceInstance]
    allocations: list[AllocationRecord]
    holds: dict[str, HoldRecord]
    dirty: set[str] = field(default_factory=set)
    events: list[dict[str, Any]] = field(default_factory=list)


class StoreTransaction:
    """Read and write surface handed to engine operations.

    Nothing reaches disk until the enclosing ``transaction()`` block exits
    without an exception.
    """

    def __init__(self, state: _StoreState, now: datetime) -> None:
        self._state = state
        self.started_at = now

    def get_resource_type(self, name: str) -> ResourceType:
        resource_type = self._state.resource_types.get(name)
        if resource_type is None:
            raise NotFound(f"Resource type not found: {name}", {"resource_type": name})
        return resource_type

    def list_resource_types(self) -> list[ResourceType]:
        return list(self._state.resource_types.values())

    def put_resource_type(self, resource_type: ResourceType) -> None:
        self._state.resource_types[resource_type.name] = resource_type
        self._state.dirty.add(RESOURCE_TYPES_FILE)

    def get_resource(self, resource_id: str) -> ResourceInstance:
        instance = self._state.resources.get(resource_id)
        if instance is None:
            raise NotFound(f"Resource not found: {resource_id}", {"resource_id": resource_id})
        return instance

    def list_resources(self, resource_type: str | None = None) -> list[ResourceInstance]:
        return [
            instance
            for instance in self._state.resources.values()
            if resource_type is None or instance.resource_type == resource_type
        ]

    def update_resource(self, instance: ResourceInstance) -> None:
        if self._state.resources.get(instance.resource_id) == instance:
            return
        self._state.resources[instance.resource_id] = instance
        self._state.dirty.add(RESOURCES_FILE)

    def list_allocations(
        self,
        resource_id: str | None = None,
        kinds: Iterable[AllocationKind] = ALL_KINDS,
    ) -> list[AllocationRecord]:
        wanted = set(kinds)
        return [
            record
            for record in self._state.allocations
            if record.kind in wanted and (resource_id is None or record.resource_id == resource_id)
        ]

    def get_allocation(self, allocation_id: str) -> AllocationRecord:
        for record in self._state.allocations:
            if record.allocation_id == allocation_id:
                return record
        raise NotFound(f"Allocation not found: {allocation_id}", {"allocation_id": allocation_id})

    def insert_allocation(self, record: AllocationRecord) -> AllocationRecord:
        self._state.allocations.append(record)
        self._state.dirty.add(ALLOCATIONS_FILE)
        return record

    def replace_allocation(self, record: AllocationRecord) -> AllocationRecord:
        for index, existing in enumerate(self._state.allocations):
            if existing.allocation_id == record.allocation_id:
                self._state.allocations[index] = record
                self._state.dirty.add(ALLOCATIONS_FILE)
                return record
        raise NotFound(f"Allocation not found: {record.allocation_id}", {"allocation_id": record.allocation_id})

    def delete_allocation(self, allocation_id: str) -> bool:
        before = len(self._state.allocations)
        self._state.allocations = [row for row in self._state.allocations if row.allocation_id != allocation_id]
        if len(self._state.allocations) == before:
            return False
        self._state.dirty.add(ALLOCATIONS_FILE)
        return True

    def get_hold(self, resource_id: str) -> HoldRecord | None:
        return self._state.holds.get(resource_id)

    def list_holds(self, hold_set_id: str | None = None) -> list[HoldRecord]:
        return [hold for hold in self._state.holds.values() if hold_set_id is None or hold.hold_set_id == hold_set_id]

    def put_hold(self, hold: HoldRecord) -> None:
        self._state.holds[hold.resource_id] = hold
        self._state.dirty.add(HOLDS_FILE)

    def delete_hold(self, resource_id: str) -> bool:
        if self._state.holds.pop(resource_id, None) is None:
            return False
        self._state.dirty.add(HOLDS_FILE)
        return True

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or self.started_at).isoformat(timespec="seconds")
        self._state.events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})


class AllocationYamlRepository:
    def __init__(self, base_dir: str | Path = "data", lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self.base_dir = Path(base_dir)
        self.resource_types_file = self.base_dir / RESOURCE_TYPES_FILE
        self.resources_file = self.base_dir / RESOURCES_FILE
        self.allocations_file = self.base_dir / ALLOCATIONS_FILE
        self.holds_file = self.base_dir / HOLDS_FILE
        self.log_file = self.base_dir / EVENTS_FILE
        self._lock = threading.RLock()
        self._ensure_files()
        # Shared with every repository and process that opens the same directory.
        self._file_lock = FileLock(str(self.base_dir.resolve() / LOCK_FILE), timeout=lock_timeout)

    def _ensure_files(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            for path in self._data_files() + [self.log_file]:
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")
        except OSError as error:
            raise Unavailable(f"Failed to prepare data directory: {self.base_dir}") from error

    def _data_files(self) -> list[Path]:
        return [self.resource_types_file, self.resources_file, self.allocations_file, self.holds_file]

    @contextmanager
    def transaction(self, now: datetime | None = None) -> Iterator[StoreTransaction]:
        """Run a read-then-write sequence in isolation from every other transaction.

        The store lock is taken on the data directory, so repositories in other
        threads or processes wait for this block. The whole store is loaded once
        under that lock and written back only when the block completes; an
        exception discards every change.
        """
        with self._exclusive():
            state = self._load_state()
            yield StoreTransaction(state, now or civil_now())
            self._commit(state)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._lock:
            try:
                self._file_lock.acquire()
            except Timeout as error:
                raise Unavailable(
                    f"Allocation store is busy: {self.base_dir}",
                    {"lock_file": LOCK_FILE, "timeout": self._file_lock.timeout},
                ) from error
            try:
                yield
            finally:
                self._file_lock.release()

    def _load_state(self) -> _StoreState:
        resource_types = self._parse_rows(self.resource_types_file, ResourceType.from_dict)
        resources = self._parse_rows(self.resources_file, ResourceInstance.from_dict)
        allocations = self._parse_rows(self.allocations_file, AllocationRecord.from_dict)
        holds = self._parse_rows(self.holds_file, HoldRecord.from_dict)
        return _StoreState(
            resource_types={item.name: item for item in resource_types},
            resources={item.resource_id: item for item in resources},
            allocations=allocations,
            holds={item.resource_id: item for item in holds},
        )

    def _commit(self, state: _StoreState) -> None:
        payloads = {
            RESOURCE_TYPES_FILE: [item.to_dict() for item in state.resource_types.values()],
            RESOURCES_FILE: [item.to_dict() for item in state.resources.values()],
            ALLOCATIONS_FILE: [item.to_dict() for item in state.allocations],
            HOLDS_FILE: [item.to_dict() for item in state.holds.values()],
        }
        staged: list[tuple[Path, Path]] = []
        replaced: list[tuple[Path, str]] = []
        try:
            for name in COMMIT_ORDER:
                if name in state.dirty:
                    path = self.base_dir / name
                    staged.append((self._stage_yaml_list(path, payloads[name]), path))
            for temp_path, path in staged:
                previous = path.read_text(encoding="utf-8")
                temp_path.replace(path)
                replaced.append((path, previous))
        except OSError as error:
            unrestored = self._restore_files(replaced)
            raise Unavailable(
                "Failed to commit allocation store changes.",
                {"restored": [path.name for path, _ in replaced if path.name not in unrestored], "unrestored": unrestored},
            ) from error
        finally:
            for temp_path, _ in staged:
                temp_path.unlink(missing_ok=True)

        if state.events:
            events = self._read_yaml_list(self.log_file)
            events.extend(state.events)
            self._write_yaml_list(self.log_file, events)

    def _restore_files(self, replaced: list[tuple[Path, str]]) -> list[str]:
        unrestored: list[str] = []
        for path, previous in reversed(replaced):
            try:
                path.write_text(previous, encoding="utf-8")
            except OSError:
                unrestored.append(path.name)
        return unrestored

    def _parse_rows(self, path: Path, parse: Callable[[dict[str, Any]], Any]) -> list[Any]:
        rows = self._read_yaml_list(path)
        try:
            return [parse(row) for row in rows]
        except (KeyError, TypeError, ValueError, ArithmeticError) as error:
            raise Unavailable(
                f"Malformed record in {path.name}: {error}",
                {"file": path.name},
            ) from error

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _stage_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> Path:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
        return temp_path

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise Unavailable(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        """Append an event immediately, outside any transaction."""
        timestamp = (event_time or civil_now()).isoformat(timespec="seconds")
        with self._exclusive():
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def read_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    def add_resource_type(self, resource_type: ResourceType) -> ResourceType:
        with self.transaction() as tx:
            tx.put_resource_type(resource_type)
            tx.log_event("RESOURCE_TYPE_REGISTERED", resource_type.to_dict())
        return resource_type

    def add_resource(self, instance: ResourceInstance) -> ResourceInstance:
        with self.transaction() as tx:
            tx.get_resource_type(instance.resource_type)
            tx.update_resource(instance)
            tx.log_event("RESOURCE_REGISTERED", instance.to_dict())
        return instance

    def load_catalog(self, catalog_path: str | Path) -> tuple[list[ResourceType], list[ResourceInstance]]:
        """Register resource types and instances from a catalog YAML file.

        The file holds two lists, ``resource_types`` and ``resources``.
        """
        path = Path(catalog_path)
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as error:
            raise Unavailable(f"Failed to read catalog file: {path}") from error

        resource_types = [ResourceType.from_dict(row) for row in payload.get("resource_types", [])]
        resources = [ResourceInstance.from_dict(row) for row in payload.get("resources", [])]
        for resource_type in resource_types:
            self.add_resource_type(resource_type)
        for instance in resources:
            self.add_resource(instance)
        return resource_types, resources
