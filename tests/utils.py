"""Utils for tests."""

import asyncio
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from occtx.exceptions import ConstraintViolationError, TransactionAbortedError, TransportError
from occtx.statements.base import Statement

type Key = tuple[str, Any]


@dataclass
class MemoryTransaction:
    """Server-side transaction of the memory transport."""

    id: int
    start_clock: int
    reads: dict[Key, int] = field(default_factory=dict)
    table_reads: dict[str, int] = field(default_factory=dict)
    writes: dict[Key, dict[str, Any]] = field(default_factory=dict)
    closed: bool = False


def get(table: str, key: Any) -> Statement:
    """Read one row by key."""
    return Statement.read("get", table=table, key=key)


def scan(table: str, field_name: str, prefix: str) -> Statement:
    """Read the rows whose field starts with the prefix, ordered by that field."""
    return Statement.read("scan", table=table, field=field_name, prefix=prefix)


def insert(table: str, key: Any, row: dict[str, Any], references: Key | None = None) -> Statement:
    """Insert a row, optionally referencing a row that must exist."""
    return Statement.write("insert", table=table, key=key, row=row, references=references)


def update(table: str, key: Any, changes: dict[str, Any]) -> Statement:
    """Update a row."""
    return Statement.write("update", table=table, key=key, changes=changes)


class MemoryTransport:
    """In-memory store with optimistic concurrency control.

    Reads record the version of what they saw, and a commit is aborted if anything it read or
    wrote was committed by another transaction in the meantime. Every call yields to the event
    loop, so concurrent transactions interleave.

    The `abort_*` counters make the next calls of that kind abort, for deterministic tests.
    """

    def __init__(self) -> None:
        self.rows: dict[Key, dict[str, Any]] = {}
        self.versions: dict[Key, int] = {}
        self.table_versions: dict[str, int] = defaultdict(int)
        self.clock = 0

        self.begun = 0
        self.committed = 0
        self.aborted = 0
        self.rolled_back = 0
        self.executed: list[tuple[int, Statement]] = []

        self.abort_commits = 0
        self.abort_executes = 0
        self.abort_batches = 0

    async def begin_transaction(self) -> MemoryTransaction:
        await asyncio.sleep(0)
        self.begun += 1
        return MemoryTransaction(id=self.begun, start_clock=self.clock)

    async def execute(self, ref: MemoryTransaction, statement: Statement) -> Any:
        await asyncio.sleep(0)
        self._check_open(ref)
        if self.abort_executes > 0:
            self.abort_executes -= 1
            self.aborted += 1
            raise TransactionAbortedError("Injected abort.")

        self.executed.append((ref.id, statement))
        return self._run(ref, statement, ref.writes)

    async def execute_batch(self, ref: MemoryTransaction, statements: Sequence[Statement]) -> list[Any]:
        await asyncio.sleep(0)
        self._check_open(ref)
        if self.abort_batches > 0:
            self.abort_batches -= 1
            self.aborted += 1
            raise TransactionAbortedError("Injected abort.")

        staged = dict(ref.writes)
        results = []
        for statement in statements:
            self.executed.append((ref.id, statement))
            results.append(self._run(ref, statement, staged))
        ref.writes = staged
        return results

    async def commit(self, ref: MemoryTransaction) -> None:
        await asyncio.sleep(0)
        self._check_open(ref)
        if self.abort_commits > 0:
            self.abort_commits -= 1
            self.aborted += 1
            raise TransactionAbortedError("Injected abort.")

        stale_reads = any(self.versions.get(key, 0) != version for key, version in ref.reads.items())
        stale_scans = any(self.table_versions[table] != version for table, version in ref.table_reads.items())
        conflicting_writes = any(self.versions.get(key, 0) > ref.start_clock for key in ref.writes)
        if stale_reads or stale_scans or conflicting_writes:
            self.aborted += 1
            raise TransactionAbortedError("Transaction was aborted by a concurrent commit.")

        self.clock += 1
        for key, row in ref.writes.items():
            self.rows[key] = row
            self.versions[key] = self.clock
            self.table_versions[key[0]] = self.clock
        ref.closed = True
        self.committed += 1

    async def rollback(self, ref: MemoryTransaction) -> None:
        await asyncio.sleep(0)
        if not ref.closed:
            self.rolled_back += 1
        ref.closed = True

    def statements_of(self, transaction: int) -> list[Statement]:
        """Get the statements executed by one server-side transaction."""
        return [statement for ref_id, statement in self.executed if ref_id == transaction]

    def _check_open(self, ref: MemoryTransaction) -> None:
        if ref.closed:
            raise TransportError("Transaction is closed.")

    def _lookup(self, writes: dict[Key, dict[str, Any]], key: Key) -> dict[str, Any] | None:
        return writes.get(key, self.rows.get(key))

    def _run(self, ref: MemoryTransaction, statement: Statement, writes: dict[Key, dict[str, Any]]) -> Any:
        params = statement.parameters
        table = params["table"]

        match statement.text:
            case "get":
                key = (table, params["key"])
                ref.reads.setdefault(key, self.versions.get(key, 0))
                row = self._lookup(writes, key)
                return None if row is None else dict(row)
            case "scan":
                ref.table_reads.setdefault(table, self.table_versions[table])
                rows = {key: row for key, row in self.rows.items() if key[0] == table}
                rows |= {key: row for key, row in writes.items() if key[0] == table}
                matching = [dict(row) for row in rows.values() if str(row[params["field"]]).startswith(params["prefix"])]
                return sorted(matching, key=lambda row: row[params["field"]])
            case "insert":
                key = (table, params["key"])
                if self._lookup(writes, key) is not None:
                    raise ConstraintViolationError(f"Duplicate key {key}.")
                references = params["references"]
                if references is not None and self._lookup(writes, references) is None:
                    raise ConstraintViolationError(f"Row {key} references missing row {references}.")
                writes[key] = dict(params["row"])
                return 1
            case "update":
                key = (table, params["key"])
                existing = self._lookup(writes, key)
                if existing is None:
                    return 0
                writes[key] = existing | params["changes"]
                return 1
            case _:
                raise ConstraintViolationError(f"Unknown statement {statement.text!r}.")
