"""InMemoryKeyValueStore — dict-backed fake of the DynamoDB primitives."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from typing import Any

from ..exceptions import ConditionalCheckFailedError
from ..ports import (
    AttributeEquals,
    Condition,
    ConditionCheck,
    IKeyValueStore,
    Item,
    ItemAbsent,
    ItemPresent,
    Put,
    WriteOperation,
)
from ..tables import TableSpec


def _key_tuple(table: TableSpec, key: Item) -> tuple[Any, ...]:
    if table.sort_key is None:
        return (key[table.partition_key],)
    return (key[table.partition_key], key[table.sort_key])


def _condition_holds(existing: Item | None, condition: Condition | None) -> bool:
    if condition is None:
        return True
    if isinstance(condition, ItemAbsent):
        return existing is None
    if isinstance(condition, ItemPresent):
        return existing is not None
    if isinstance(condition, AttributeEquals):
        return existing is not None and existing.get(condition.attribute) == (
            condition.value
        )
    raise TypeError(f"Unsupported condition: {condition!r}")


class InMemoryKeyValueStore(IKeyValueStore):
    """In-memory implementation of ``IKeyValueStore`` for unit tests.

    Every primitive completes without yielding to the event loop between
    its condition check and its write, which makes each call atomic with
    respect to other coroutines. Items are deep-copied on the way in and
    out so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[tuple[Any, ...], Item]] = {}

    def _table(self, table: TableSpec) -> dict[tuple[Any, ...], Item]:
        return self._tables.setdefault(table.name, {})

    async def get_item(self, table: TableSpec, key: Item) -> Item | None:
        item = self._table(table).get(_key_tuple(table, key))
        return copy.deepcopy(item) if item is not None else None

    async def batch_get(self, table: TableSpec, keys: list[Item]) -> list[Item]:
        rows = self._table(table)
        found = []
        for key in keys:
            item = rows.get(_key_tuple(table, key))
            if item is not None:
                found.append(copy.deepcopy(item))
        return found

    async def query(
        self,
        table: TableSpec,
        partition_value: str,
        *,
        after_sort_key: int | None = None,
    ) -> AsyncIterator[Item]:
        rows = [
            item
            for item in self._table(table).values()
            if item[table.partition_key] == partition_value
        ]
        if table.sort_key is not None:
            sort_key = table.sort_key
            rows.sort(key=lambda item: item[sort_key])
            if after_sort_key is not None:
                rows = [item for item in rows if item[sort_key] > after_sort_key]
        for item in rows:
            yield copy.deepcopy(item)

    async def scan(
        self,
        table: TableSpec,
        *,
        filters: dict[str, str | int] | None = None,
    ) -> AsyncIterator[Item]:
        for item in list(self._table(table).values()):
            if filters and any(item.get(k) != v for k, v in filters.items()):
                continue
            yield copy.deepcopy(item)

    async def put(self, operation: Put) -> None:
        self._check(operation)
        self._apply(operation)

    async def delete(
        self,
        table: TableSpec,
        key: Item,
        condition: Condition | None = None,
    ) -> None:
        rows = self._table(table)
        existing = rows.get(_key_tuple(table, key))
        if not _condition_holds(existing, condition):
            raise ConditionalCheckFailedError(
                f"Conditional delete failed on {table.name}"
            )
        rows.pop(_key_tuple(table, key), None)

    async def transact_write(self, operations: list[WriteOperation]) -> None:
        for operation in operations:
            self._check(operation)
        for operation in operations:
            if isinstance(operation, Put):
                self._apply(operation)

    def _check(self, operation: WriteOperation) -> None:
        if isinstance(operation, Put):
            key = operation.table.key_of(operation.item)
        else:
            key = operation.key
        existing = self._table(operation.table).get(_key_tuple(operation.table, key))
        if not _condition_holds(existing, operation.condition):
            raise ConditionalCheckFailedError(
                f"Conditional check failed on {operation.table.name} for key {key!r}"
            )

    def _apply(self, operation: Put) -> None:
        key = _key_tuple(operation.table, operation.item)
        self._table(operation.table)[key] = copy.deepcopy(operation.item)

    # ── Test helpers ─────────────────────────────────────────────

    def items(self, table: TableSpec) -> list[Item]:
        """Return a copy of every item in *table*."""
        return [copy.deepcopy(item) for item in self._table(table).values()]

    def clear(self) -> None:
        self._tables.clear()
