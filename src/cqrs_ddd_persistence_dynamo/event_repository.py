"""
DynamoDB event repository.

Events live in the events table keyed by ``AggregateTypeAndId`` +
``AggregateIdSequence``; one snapshot per aggregate lives in the snapshots
table keyed by ``AggregateTypeAndId``. Every commit is a single
``transact_write`` so events and the snapshot become visible together or
not at all.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from .exceptions import (
    ConcurrencyError,
    ConditionalCheckFailedError,
    MalformedRecordError,
    TransactionTooLargeError,
)
from .models import SerializedEvent, SerializedSnapshot, SnapshotUpdate
from .ports import (
    AttributeEquals,
    ConditionCheck,
    IKeyValueStore,
    Item,
    ItemAbsent,
    ItemPresent,
    Put,
    WriteOperation,
    require_attribute,
)
from .serialization import decode_document, encode_document
from .tables import AGGREGATE_ID_SEQUENCE, AGGREGATE_TYPE_AND_ID, DynamoTables

logger = logging.getLogger("cqrs_ddd.dynamo.event_repository")

MAX_TRANSACTION_ITEMS = 100


def stream_key(aggregate_type: str, aggregate_id: str) -> str:
    """Partition key shared by an aggregate's events and snapshot."""
    return f"{aggregate_type}:{aggregate_id}"


def _parse_timestamp(value: str, table: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(
            f"Item in {table} has an invalid LastUpdated value {value!r}"
        ) from e


class DynamoEventRepository:
    """Reads and writes serialized events and snapshots.

    This layer knows nothing about storage strategies; ``DynamoEventStore``
    decides which records to read and when to write a snapshot.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        tables: DynamoTables | None = None,
    ) -> None:
        """
        Initialize the repository.

        Args:
            store: Key-value store adapter shared with other components.
            tables: Table names; defaults to ``Events``/``Snapshots``/``Views``.
        """
        self._store = store
        self._tables = tables or DynamoTables()
        self._events = self._tables.events_spec
        self._snapshots = self._tables.snapshots_spec

    @property
    def tables(self) -> DynamoTables:
        return self._tables

    # ── Record mapping ───────────────────────────────────────────

    def _event_to_item(self, event: SerializedEvent) -> Item:
        return {
            AGGREGATE_TYPE_AND_ID: stream_key(event.aggregate_type, event.aggregate_id),
            AGGREGATE_ID_SEQUENCE: event.sequence,
            "AggregateType": event.aggregate_type,
            "AggregateId": event.aggregate_id,
            "EventType": event.event_type,
            "EventVersion": event.event_version,
            "Payload": encode_document(event.payload),
            "Metadata": encode_document(event.metadata),
        }

    def _item_to_event(self, item: Item) -> SerializedEvent:
        table = self._events.name
        return SerializedEvent(
            aggregate_type=require_attribute(item, "AggregateType", table),
            aggregate_id=require_attribute(item, "AggregateId", table),
            sequence=require_attribute(item, AGGREGATE_ID_SEQUENCE, table),
            event_type=require_attribute(item, "EventType", table),
            event_version=require_attribute(item, "EventVersion", table),
            payload=decode_document(require_attribute(item, "Payload", table)),
            metadata=decode_document(item.get("Metadata", b"{}")),
        )

    def _snapshot_to_item(self, update: SnapshotUpdate) -> Item:
        return {
            AGGREGATE_TYPE_AND_ID: stream_key(
                update.aggregate_type, update.aggregate_id
            ),
            "AggregateType": update.aggregate_type,
            "AggregateId": update.aggregate_id,
            "CurrentSequence": update.current_sequence,
            "CurrentSnapshot": update.previous_snapshot_version + 1,
            "Payload": encode_document(update.state),
            "LastUpdated": datetime.now(timezone.utc).isoformat(),
        }

    def _item_to_snapshot(self, item: Item) -> SerializedSnapshot:
        table = self._snapshots.name
        last_updated = item.get("LastUpdated")
        return SerializedSnapshot(
            aggregate_type=require_attribute(item, "AggregateType", table),
            aggregate_id=require_attribute(item, "AggregateId", table),
            current_sequence=require_attribute(item, "CurrentSequence", table),
            snapshot_version=require_attribute(item, "CurrentSnapshot", table),
            state=decode_document(require_attribute(item, "Payload", table)),
            last_updated=(
                _parse_timestamp(last_updated, table)
                if last_updated
                else datetime.now(timezone.utc)
            ),
        )

    # ── Reads ────────────────────────────────────────────────────

    async def get_events(
        self, aggregate_type: str, aggregate_id: str
    ) -> list[SerializedEvent]:
        """Return every event of the aggregate in sequence order."""
        return await self.get_last_events(aggregate_type, aggregate_id, 0)

    async def get_last_events(
        self,
        aggregate_type: str,
        aggregate_id: str,
        last_sequence: int,
    ) -> list[SerializedEvent]:
        """Return the events with ``sequence > last_sequence``."""
        events = [
            event
            async for event in self._query_events(
                aggregate_type, aggregate_id, after=last_sequence
            )
        ]
        logger.debug(
            "Loaded %d events for %s:%s after %d",
            len(events),
            aggregate_type,
            aggregate_id,
            last_sequence,
        )
        return events

    def stream_events(
        self, aggregate_type: str, aggregate_id: str
    ) -> AsyncIterator[SerializedEvent]:
        """Stream one aggregate's events without loading them all at once."""
        return self._query_events(aggregate_type, aggregate_id, after=0)

    async def stream_all_events(
        self, aggregate_type: str
    ) -> AsyncIterator[SerializedEvent]:
        """Stream every event of every aggregate of *aggregate_type*.

        Uses a table scan; ordering is only guaranteed within one aggregate
        after sorting, so use this for rebuilding projections, not for
        replaying a single aggregate.
        """
        async for item in self._store.scan(
            self._events, filters={"AggregateType": aggregate_type}
        ):
            yield self._item_to_event(item)

    async def _query_events(
        self, aggregate_type: str, aggregate_id: str, *, after: int
    ) -> AsyncIterator[SerializedEvent]:
        async for item in self._store.query(
            self._events,
            stream_key(aggregate_type, aggregate_id),
            after_sort_key=after if after > 0 else None,
        ):
            yield self._item_to_event(item)

    async def get_snapshot(
        self, aggregate_type: str, aggregate_id: str
    ) -> SerializedSnapshot | None:
        """Return the aggregate's snapshot/current-state record, if any."""
        item = await self._store.get_item(
            self._snapshots,
            {AGGREGATE_TYPE_AND_ID: stream_key(aggregate_type, aggregate_id)},
        )
        return self._item_to_snapshot(item) if item is not None else None

    # ── Writes ───────────────────────────────────────────────────

    async def persist(
        self,
        events: list[SerializedEvent],
        snapshot_update: SnapshotUpdate | None = None,
    ) -> None:
        """Atomically append *events* and optionally replace the snapshot.

        *events* must belong to one aggregate and carry contiguous sequence
        numbers. The transaction fails unless the event right before the
        first new one exists and none of the new sequences is taken, which
        pins the stored sequence to ``events[0].sequence - 1``.

        Raises:
            ConcurrencyError: If the stream or snapshot moved on.
            TransactionTooLargeError: If the commit exceeds the item limit.
            StorageError: On transport or serialization failure.
        """
        if not events:
            return
        first = events[0]
        _check_batch(events)
        expected = first.sequence - 1

        operations: list[WriteOperation] = []
        if expected > 0:
            operations.append(
                ConditionCheck(
                    self._events,
                    {
                        AGGREGATE_TYPE_AND_ID: stream_key(
                            first.aggregate_type, first.aggregate_id
                        ),
                        AGGREGATE_ID_SEQUENCE: expected,
                    },
                    ItemPresent(),
                )
            )
        operations.extend(
            Put(self._events, self._event_to_item(event), ItemAbsent())
            for event in events
        )
        if snapshot_update is not None:
            operations.append(self._snapshot_put(snapshot_update))

        if len(operations) > MAX_TRANSACTION_ITEMS:
            raise TransactionTooLargeError(len(operations), MAX_TRANSACTION_ITEMS)

        try:
            await self._store.transact_write(operations)
        except ConditionalCheckFailedError as e:
            logger.warning(
                "Optimistic lock conflict on %s:%s at sequence %d",
                first.aggregate_type,
                first.aggregate_id,
                expected,
            )
            raise ConcurrencyError(
                f"{first.aggregate_type}:{first.aggregate_id} is no longer at "
                f"sequence {expected}",
                aggregate_type=first.aggregate_type,
                aggregate_id=first.aggregate_id,
                expected=expected,
            ) from e

        logger.info(
            "Committed %d events",
            len(events),
            extra={
                "aggregate.type": first.aggregate_type,
                "aggregate.id": first.aggregate_id,
                "sequence": events[-1].sequence,
                "snapshot": snapshot_update is not None,
            },
        )

    def _snapshot_put(self, update: SnapshotUpdate) -> Put:
        condition = (
            ItemAbsent()
            if update.previous_snapshot_version == 0
            else AttributeEquals("CurrentSnapshot", update.previous_snapshot_version)
        )
        return Put(self._snapshots, self._snapshot_to_item(update), condition)


def _check_batch(events: list[SerializedEvent]) -> None:
    first = events[0]
    if first.sequence < 1:
        raise ValueError(f"Event sequences start at 1, got {first.sequence}")
    for offset, event in enumerate(events):
        if (event.aggregate_type, event.aggregate_id) != (
            first.aggregate_type,
            first.aggregate_id,
        ):
            raise ValueError("A commit may only contain events of one aggregate")
        if event.sequence != first.sequence + offset:
            raise ValueError(
                f"Event sequences must be contiguous; expected "
                f"{first.sequence + offset}, got {event.sequence}"
            )
