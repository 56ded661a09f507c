"""SDB database - main public API.

Orchestrates path resolution, locking, the record logs, validation, the
query pipeline and garbage collection for one database folder.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..components.codec import encode_record
from ..components.gc import GcSweeper
from ..components.ids import new_id
from ..components.lock import LockManager
from ..components.query import QueryOptions, QueryPipeline, merge_deleted_sets, split_legacy_deleted
from ..components.record_store import RecordStore
from ..components.timeutil import now_iso, now_ms, parse_duration_ms
from ..components.validation import (
    apply_schema_defaults,
    check_user_fields,
    compile_schema_validator,
    validate_folder_path,
    validate_id,
    validate_schema_document,
)
from ..interfaces import DatabaseLock, IdFactory, RecordLog, SchemaValidatorFactory

from .config import SDBConfig
from .errors import (
    AlreadyExistsError,
    InvalidInputError,
    MissingOptionError,
    NotFoundError,
    Outcome,
    SafetyCheckError,
    SchemaValidationError,
)
from .paths import DatabasePaths
from .types import CREATED_FIELD, DELETED_FIELD, ID_FIELD, UPDATED_FIELD, Record, user_fields

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Structured outcome of one database operation."""

    action: str
    data: Any = None
    resource: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    operations: list[dict[str, Any]] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {"success": True, "action": self.action}
        if self.resource is not None:
            response["resource"] = self.resource
        if self.data is not None:
            response["data"] = self.data
        if self.metadata:
            response["metadata"] = self.metadata
        if self.dry_run:
            response["dryRun"] = True
        if self.operations:
            response["operations"] = self.operations
        return response


class Database:
    """File-resident record store rooted at one folder.

    Args:
        folder: Database folder
        config: Lock timing and debug settings; defaults to SDB_* environment
        lock: Lock implementation; defaults to LockManager
        validator_factory: compile(schema) -> validate(data)
        id_factory: Produces new record ids
        clock: Epoch-seconds clock for timestamps and time windows

    Public API:
        - init(schema, force, dry_run)
        - add(fields), update(id, fields), delete(ids, hard, force)
        - get(ids), list(...), count(...), schema(), validate()
        - gc(age | prune_all, force, dry_run)

    Invariants:
        - Mutations hold the lock from first read to last write
        - Reads never lock
        - A record id lives in exactly one log at rest
        - Reserved fields never reach the schema validator
    """

    def __init__(
        self,
        folder: str | Path,
        config: SDBConfig | None = None,
        *,
        lock: DatabaseLock | None = None,
        store: RecordLog | None = None,
        validator_factory: SchemaValidatorFactory = compile_schema_validator,
        id_factory: IdFactory = new_id,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config or SDBConfig.from_env()
        self.paths = DatabasePaths.resolve(folder)
        self._folder_arg = str(folder)
        self._clock = clock or time.time
        self._store: RecordLog = store or RecordStore(self.paths)
        self._lock: DatabaseLock = lock or LockManager(self.config, clock=self._clock)
        self._validator_factory = validator_factory
        self._id_factory = id_factory
        self._query = QueryPipeline(clock=self._clock)
        self._gc = GcSweeper()

    def run(self, operation: str, *args: Any, **kwargs: Any) -> Outcome[OperationResult]:
        """Call an operation by name and capture its result as an Outcome.

        Stack traces are included in error responses when config.debug is set.
        """
        return Outcome.capture(getattr(self, operation), *args, debug=self.config.debug, **kwargs)

    def _now(self) -> str:
        return now_iso(self._clock)

    def _record_resource(self, record_id: str | None = None) -> dict[str, Any]:
        resource: dict[str, Any] = {"type": "record", "path": str(self.paths.data_file)}
        if record_id is not None:
            resource["id"] = record_id
        return resource

    # ----- init / schema -----

    def init(self, schema: dict[str, Any] | str | Path, force: bool = False, dry_run: bool = False) -> OperationResult:
        """Initialize the folder with a schema (object or path to a JSON file)."""
        validate_folder_path(self._folder_arg)
        if self._store.is_initialized() and not force:
            raise AlreadyExistsError(
                f"Database '{self._folder_arg}' already exists",
                context={"type": "Database", "id": self._folder_arg, "path": str(self.paths.schema_file)},
            )

        source = None
        if not isinstance(schema, dict):
            source = Path(schema).expanduser().resolve()
            schema = _read_schema_file(source, str(schema))
        validate_schema_document(schema)

        if dry_run:
            return OperationResult(
                action="would-initialize",
                resource={"type": "database", "path": str(self.paths.folder)},
                data=schema,
                dry_run=True,
                operations=[
                    {"type": "mkdir", "path": str(self.paths.folder)},
                    {"type": "write", "path": str(self.paths.schema_file), "sizeBytes": len(json.dumps(schema, indent=2))},
                    {"type": "write", "path": str(self.paths.data_file), "sizeBytes": 0},
                    {"type": "write", "path": str(self.paths.deleted_file), "sizeBytes": 0},
                ],
            )

        self._store.initialize(schema, force=force)
        return OperationResult(
            action="initialized",
            resource={"type": "database", "path": str(self.paths.folder)},
            metadata={
                "schemaFile": str(self.paths.schema_file),
                "dataFile": str(self.paths.data_file),
                "fromSchema": str(source) if source else None,
            },
        )

    def schema(self) -> OperationResult:
        self._store.ensure_exists()
        return OperationResult(
            action="retrieved",
            resource={"type": "schema", "path": str(self.paths.schema_file)},
            data=self._store.load_schema(),
        )

    # ----- writes -----

    def add(self, fields: Record, dry_run: bool = False) -> OperationResult:
        """Create a record with generated id and timestamps."""
        self._store.ensure_exists()
        check_user_fields(fields)

        schema = self._store.load_schema()
        data = apply_schema_defaults(fields, schema)
        result = self._validator_factory(schema)(data)
        if not result.valid:
            raise SchemaValidationError(result.errors, {"data": data})

        now = self._now()
        record_id = self._id_factory()
        record: Record = {ID_FIELD: record_id, CREATED_FIELD: now, UPDATED_FIELD: now, **data}

        if dry_run:
            return OperationResult(
                action="would-create",
                resource=self._record_resource(record_id),
                data=record,
                dry_run=True,
                operations=[{"type": "append", "path": str(self.paths.data_file), "sizeBytes": _size(record)}],
            )

        with self._lock.locked(self.paths, "add"):
            records = self._store.load_active()
            records.append(record)
            self._store.write_full(records)
        logger.info(f"Added record {record_id}")
        return OperationResult(action="created", resource=self._record_resource(record_id), data=record)

    def update(self, record_id: str, fields: Record, dry_run: bool = False) -> OperationResult:
        """Merge fields into an active record and bump its update time."""
        self._store.ensure_exists()
        validate_id(record_id)
        check_user_fields(fields)
        if not fields:
            raise InvalidInputError("No fields to update provided", context={"id": record_id})

        schema = self._store.load_schema()
        validator = self._validator_factory(schema)

        def plan() -> tuple[list[Record], int, Record, Record]:
            records = self._store.load_active()
            index = next((i for i, r in enumerate(records) if r.get(ID_FIELD) == record_id), -1)
            if index == -1:
                if any(r.get(ID_FIELD) == record_id for r in self._store.load_deleted()):
                    raise InvalidInputError("Cannot update deleted record", context={"id": record_id})
                raise NotFoundError.resource("Record", record_id, str(self.paths.data_file))
            existing = records[index]
            if existing.get(DELETED_FIELD):
                raise InvalidInputError(
                    "Cannot update deleted record",
                    context={"id": record_id, "deletedAt": existing.get(DELETED_FIELD)},
                )
            updated = {
                **existing,
                **fields,
                ID_FIELD: existing[ID_FIELD],
                CREATED_FIELD: existing.get(CREATED_FIELD),
                UPDATED_FIELD: self._now(),
            }
            data = user_fields(updated)
            result = validator(data)
            if not result.valid:
                raise SchemaValidationError(result.errors, {"data": data, "record": record_id})
            return records, index, existing, updated

        if dry_run:
            _records, _index, existing, updated = plan()
            return OperationResult(
                action="would-update",
                resource=self._record_resource(record_id),
                data=updated,
                dry_run=True,
                metadata={"changes": fields, "previousValues": {k: existing.get(k) for k in fields}},
            )

        with self._lock.locked(self.paths, "update"):
            records, index, _existing, updated = plan()
            records[index] = updated
            self._store.write_full(records)
        logger.info(f"Updated record {record_id}")
        return OperationResult(
            action="updated", resource=self._record_resource(record_id), data=updated, metadata={"changes": fields}
        )

    def delete(
        self,
        ids: str | Sequence[str],
        hard: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> OperationResult:
        """Soft delete (move to the deleted log) or hard delete records."""
        self._store.ensure_exists()
        id_list = [ids] if isinstance(ids, str) else list(ids)
        if not id_list:
            raise InvalidInputError("At least one ID is required")
        for record_id in id_list:
            validate_id(record_id)
        if not force:
            raise SafetyCheckError("hard delete" if hard else "delete", f"record(s) {', '.join(id_list)}")

        if dry_run:
            active = self._store.load_active()
            deleted = self._store.load_deleted()
            targets = self._check_delete_targets(active, deleted, id_list, hard)
            return self._delete_dry_run(targets, id_list, hard)

        with self._lock.locked(self.paths, "delete"):
            active = self._store.load_active()
            deleted = self._store.load_deleted()
            targets = self._check_delete_targets(active, deleted, id_list, hard)
            wanted = set(id_list)
            remaining_active = [r for r in active if r.get(ID_FIELD) not in wanted]

            if hard:
                remaining_deleted = [r for r in deleted if r.get(ID_FIELD) not in wanted]
                if len(remaining_active) != len(active):
                    self._store.write_full(remaining_active)
                if len(remaining_deleted) != len(deleted):
                    self._store.write_deleted(remaining_deleted)
            else:
                now = self._now()
                # append before rewriting so a crash duplicates rather than loses
                for record in targets:
                    self._store.append_deleted(
                        {**record, DELETED_FIELD: record.get(DELETED_FIELD) or now, UPDATED_FIELD: now}
                    )
                self._store.write_full(remaining_active)

        logger.info(f"{'Hard' if hard else 'Soft'} deleted {len(id_list)} record(s)")
        return OperationResult(
            action="hard-deleted" if hard else "soft-deleted",
            resource=self._record_resource(),
            metadata={"permanent": hard, "ids": id_list},
        )

    def _check_delete_targets(
        self, active: list[Record], deleted: list[Record], id_list: list[str], hard: bool
    ) -> list[Record]:
        """Return the active records to move or drop; raise for bad ids."""
        active_by_id = {r.get(ID_FIELD): r for r in active}
        deleted_ids = {r.get(ID_FIELD) for r in deleted}
        missing: list[str] = []
        already_deleted: list[str] = []
        targets: list[Record] = []
        for record_id in dict.fromkeys(id_list):
            record = active_by_id.get(record_id)
            if record is not None:
                targets.append(record)
            elif record_id in deleted_ids:
                if not hard:
                    already_deleted.append(record_id)
            else:
                missing.append(record_id)
        if already_deleted:
            raise InvalidInputError("Record(s) already deleted", context={"ids": already_deleted})
        if missing:
            raise NotFoundError.records(missing, str(self.paths.data_file))
        return targets

    def _delete_dry_run(self, targets: list[Record], id_list: list[str], hard: bool) -> OperationResult:
        if hard:
            operations = [
                {"type": "remove", "path": str(self.paths.data_file)},
                {"type": "remove", "path": str(self.paths.deleted_file)},
            ]
        else:
            now = self._now()
            size = sum(_size({**r, DELETED_FIELD: now, UPDATED_FIELD: now}) for r in targets)
            operations = [
                {"type": "append", "path": str(self.paths.deleted_file), "sizeBytes": size},
                {"type": "rewrite", "path": str(self.paths.data_file)},
            ]
        return OperationResult(
            action="would-hard-delete" if hard else "would-soft-delete",
            resource=self._record_resource(),
            data=targets[0] if len(id_list) == 1 and targets else targets,
            dry_run=True,
            operations=operations,
        )

    # ----- reads -----

    def get(self, ids: str | Sequence[str]) -> OperationResult:
        """Fetch records by id from the active log, falling back to deleted ones."""
        self._store.ensure_exists()
        id_list = [ids] if isinstance(ids, str) else list(ids)
        if not id_list:
            raise InvalidInputError("At least one ID is required")
        for record_id in id_list:
            validate_id(record_id)

        live, legacy = split_legacy_deleted(self._store.load_active())
        deleted = merge_deleted_sets(self._store.load_deleted(), legacy)
        active_by_id = {r.get(ID_FIELD): r for r in live}
        deleted_by_id = {r.get(ID_FIELD): r for r in deleted}

        results: list[Record] = []
        deleted_ids: list[str] = []
        missing: list[str] = []
        for record_id in id_list:
            if record_id in active_by_id:
                results.append(active_by_id[record_id])
            elif record_id in deleted_by_id:
                results.append(deleted_by_id[record_id])
                deleted_ids.append(record_id)
            else:
                missing.append(record_id)
        if missing:
            raise NotFoundError.records(missing, str(self.paths.data_file))

        if len(id_list) == 1:
            record = results[0]
            metadata = {"deleted": True, "deletedAt": record.get(DELETED_FIELD)} if deleted_ids else {}
            return OperationResult(action="retrieved", data=record, metadata=metadata)
        return OperationResult(
            action="retrieved", data=results, metadata={"count": len(results), "deletedIds": deleted_ids}
        )

    def list(
        self,
        filter: str | None = None,
        include_deleted: bool = False,
        sort: str | None = None,
        order: str | None = None,
        limit: int | str | None = None,
        created_within: str | None = None,
        updated_within: str | None = None,
        deleted_within: str | None = None,
    ) -> OperationResult:
        """List records through the query pipeline."""
        options = QueryOptions.parse(
            filter=filter,
            include_deleted=include_deleted,
            sort=sort,
            order=order,
            limit=limit,
            created_within=created_within,
            updated_within=updated_within,
            deleted_within=deleted_within,
        )
        records = self._run_query(options)
        return OperationResult(
            action="listed", data=records, metadata={"count": len(records), "filter": filter or None}
        )

    def count(self, filter: str | None = None, include_deleted: bool = False) -> OperationResult:
        options = QueryOptions.parse(filter=filter, include_deleted=include_deleted)
        records = self._run_query(options)
        return OperationResult(
            action="counted",
            data={"count": len(records)},
            metadata={"filter": filter or None, "includeDeleted": include_deleted},
        )

    def _run_query(self, options: QueryOptions) -> list[Record]:
        self._store.ensure_exists()
        active = self._store.load_active()
        deleted = self._store.load_deleted() if options.include_deleted else None
        return self._query.run(active, deleted, options)

    def validate(self) -> OperationResult:
        """Validate every active record against the schema."""
        self._store.ensure_exists()
        validator = self._validator_factory(self._store.load_schema())
        live, _legacy = split_legacy_deleted(self._store.load_active())

        issues: list[dict[str, Any]] = []
        for record in live:
            result = validator(user_fields(record))
            if not result.valid:
                issues.append({"id": record.get(ID_FIELD), "errors": result.errors or ["Unknown validation error"]})

        context = {
            "total": len(live),
            "valid": len(live) - len(issues),
            "invalid": len(issues),
            "databasePath": str(self.paths.folder),
            "schemaPath": str(self.paths.schema_file),
        }
        if issues:
            raise SchemaValidationError(issues, context)
        return OperationResult(
            action="validated",
            data={"total": len(live), "valid": len(live), "invalid": 0},
            metadata={"databasePath": context["databasePath"], "schemaPath": context["schemaPath"]},
        )

    # ----- maintenance -----

    def gc(
        self,
        age: str | None = None,
        prune_all: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> OperationResult:
        """Permanently remove old records from the deleted log."""
        self._store.ensure_exists()
        if not force:
            raise SafetyCheckError("garbage collection", f"database {self._folder_arg}")
        if prune_all and age:
            raise InvalidInputError("Use either prune_all or age, not both", context={"age": age})
        if not prune_all and not age:
            raise MissingOptionError("Either age or prune_all is required", ["age", "prune_all"])

        cutoff_ms = None if prune_all else now_ms(self._clock) - parse_duration_ms(age)  # type: ignore[arg-type]

        with self._lock.locked(self.paths, "gc"):
            deleted = self._store.load_deleted()
            result = self._gc.sweep(deleted, cutoff_ms=cutoff_ms, prune_all=prune_all)
            if not dry_run:
                self._store.write_deleted(result.remaining)

        stats = result.stats
        return OperationResult(
            action="would-gc" if dry_run else "gc",
            resource={"type": "database", "path": str(self.paths.folder)},
            data={
                "totalDeleted": stats.total,
                "removed": stats.removed,
                "remaining": stats.remaining,
                "skippedInvalid": stats.skipped_invalid,
                "cutoff": stats.cutoff,
                "age": age,
                "all": prune_all,
            },
            dry_run=dry_run,
            operations=[{"type": "rewrite", "path": str(self.paths.deleted_file)}] if dry_run else [],
        )


def _read_schema_file(path: Path, display: str) -> dict[str, Any]:
    if not path.exists():
        raise NotFoundError.resource("Schema file", display, str(path))
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise InvalidInputError(f"Failed to parse schema file: {e}", context={"path": str(path)}) from e


def _size(record: Record) -> int:
    return len(encode_record(record).encode("utf-8"))
