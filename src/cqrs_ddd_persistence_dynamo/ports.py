"""IKeyValueStore protocol + conditional write operations.

The repositories only talk to the store through these primitives, so the
same event/view logic runs against DynamoDB and the in-memory adapter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from .exceptions import MalformedRecordError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .tables import TableSpec

Item = dict[str, Any]
"""A flat record whose values are ``str``, ``int`` or ``bytes``."""


def require_attribute(item: Item, attribute: str, table: str) -> Any:
    """Return ``item[attribute]``; a missing attribute is a malformed record."""
    try:
        return item[attribute]
    except KeyError:
        raise MalformedRecordError(
            f"Item in {table} is missing attribute {attribute!r}"
        ) from None


@dataclass(frozen=True)
class ItemAbsent:
    """Write succeeds only if no item with the same key exists."""


@dataclass(frozen=True)
class ItemPresent:
    """Write succeeds only if an item with the same key exists."""


@dataclass(frozen=True)
class AttributeEquals:
    """Write succeeds only if the stored item has ``attribute == value``."""

    attribute: str
    value: str | int | bytes


Condition = Union[ItemAbsent, ItemPresent, AttributeEquals]


@dataclass(frozen=True)
class Put:
    """Write a whole item, optionally guarded by a condition."""

    table: TableSpec
    item: Item
    condition: Condition | None = None


@dataclass(frozen=True)
class ConditionCheck:
    """Assert a condition on an item without writing it."""

    table: TableSpec
    key: Item
    condition: Condition


WriteOperation = Union[Put, ConditionCheck]


@runtime_checkable
class IKeyValueStore(Protocol):
    """Protocol for the key-value primitives the repositories need."""

    async def get_item(self, table: TableSpec, key: Item) -> Item | None:
        """Return the item with *key*, or None."""
        ...

    async def batch_get(self, table: TableSpec, keys: list[Item]) -> list[Item]:
        """Return every existing item among *keys* (order not guaranteed)."""
        ...

    def query(
        self,
        table: TableSpec,
        partition_value: str,
        *,
        after_sort_key: int | None = None,
    ) -> AsyncIterator[Item]:
        """Stream items of one partition in ascending sort-key order.

        Args:
            table: Table to read.
            partition_value: Value of the partition key.
            after_sort_key: Only items with a sort key strictly greater.
        """
        ...

    def scan(
        self,
        table: TableSpec,
        *,
        filters: dict[str, str | int] | None = None,
    ) -> AsyncIterator[Item]:
        """Stream every item whose attributes equal *filters*."""
        ...

    async def put(self, operation: Put) -> None:
        """Write one item; raise ConditionalCheckFailedError on a failed guard."""
        ...

    async def delete(
        self,
        table: TableSpec,
        key: Item,
        condition: Condition | None = None,
    ) -> None:
        """Delete one item; raise ConditionalCheckFailedError on a failed guard."""
        ...

    async def transact_write(self, operations: list[WriteOperation]) -> None:
        """Apply all operations or none of them.

        Raises:
            ConditionalCheckFailedError: If any condition fails.
        """
        ...
