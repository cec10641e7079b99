"""DynamoEventStore — strategy-aware load/commit over the event repository."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .exceptions import MissingAggregateStateError
from .models import EventStream, SerializedEvent, SnapshotUpdate
from .strategy import (
    AggregateStore,
    EventSourced,
    Snapshot,
    StorageStrategy,
    validate_strategy,
)

if TYPE_CHECKING:
    from .event_repository import DynamoEventRepository
    from .models import PendingEvent, SerializedSnapshot

logger = logging.getLogger("cqrs_ddd.dynamo.event_store")


class DynamoEventStore:
    """
    Event store backed by ``DynamoEventRepository``.

    The storage strategy is fixed at construction:

    - ``EventSourced``: ``load`` returns the full event log.
    - ``AggregateStore``: ``load`` returns only the current-state record;
      events are still appended for audit.
    - ``Snapshot(interval)``: ``load`` returns the latest snapshot plus the
      events committed after it.

    Switching the strategy of an existing table set requires a migration
    (e.g. writing current-state records before moving to
    ``AggregateStore``); this class does not detect or repair a mismatch.
    """

    def __init__(
        self,
        repository: DynamoEventRepository,
        strategy: StorageStrategy | None = None,
    ) -> None:
        self._repository = repository
        self._strategy = validate_strategy(
            strategy if strategy is not None else EventSourced()
        )

    @property
    def strategy(self) -> StorageStrategy:
        return self._strategy

    @property
    def repository(self) -> DynamoEventRepository:
        return self._repository

    async def load(self, aggregate_type: str, aggregate_id: str) -> EventStream:
        """Load what is needed to rebuild the aggregate's current state.

        Never-committed aggregates yield an empty stream, not an error.
        """
        strategy = self._strategy
        if isinstance(strategy, AggregateStore):
            snapshot = await self._repository.get_snapshot(aggregate_type, aggregate_id)
            return EventStream(aggregate_type, aggregate_id, snapshot=snapshot)
        if isinstance(strategy, Snapshot):
            snapshot = await self._repository.get_snapshot(aggregate_type, aggregate_id)
            after = snapshot.current_sequence if snapshot is not None else 0
            events = await self._repository.get_last_events(
                aggregate_type, aggregate_id, after
            )
            return EventStream(aggregate_type, aggregate_id, events, snapshot)
        events = await self._repository.get_events(aggregate_type, aggregate_id)
        return EventStream(aggregate_type, aggregate_id, events)

    async def commit(
        self,
        aggregate_type: str,
        aggregate_id: str,
        expected_current_sequence: int,
        new_events: Sequence[PendingEvent],
        updated_state: dict[str, Any] | None = None,
        *,
        metadata: dict[str, Any] | None = None,
        loaded: EventStream | None = None,
    ) -> int:
        """Append *new_events* after ``expected_current_sequence``.

        Args:
            aggregate_type: Aggregate type name.
            aggregate_id: Aggregate identifier.
            expected_current_sequence: Sequence the caller loaded; the commit
                fails if the stored stream has moved on.
            new_events: Events to append, numbered from
                ``expected_current_sequence + 1``.
            updated_state: Serialized aggregate state after the new events.
                Required by ``AggregateStore``; used by ``Snapshot`` when a
                snapshot is due.
            metadata: Merged into every event's metadata.
            loaded: The stream returned by ``load``; saves a snapshot read.

        Returns:
            The new current sequence.

        Raises:
            ConcurrencyError: On a stale sequence or snapshot version.
            StorageError: If the commit did not take effect.
        """
        if expected_current_sequence < 0:
            raise ValueError("expected_current_sequence must be >= 0")
        if not new_events:
            return expected_current_sequence

        events = [
            SerializedEvent(
                aggregate_type=aggregate_type,
                aggregate_id=aggregate_id,
                sequence=expected_current_sequence + offset,
                event_type=pending.event_type,
                event_version=pending.event_version,
                payload=pending.payload,
                metadata={**(metadata or {}), **pending.metadata},
            )
            for offset, pending in enumerate(new_events, start=1)
        ]
        new_sequence = events[-1].sequence

        snapshot_update = await self._snapshot_update(
            aggregate_type,
            aggregate_id,
            new_sequence,
            updated_state,
            loaded,
        )
        await self._repository.persist(events, snapshot_update)
        return new_sequence

    async def _snapshot_update(
        self,
        aggregate_type: str,
        aggregate_id: str,
        new_sequence: int,
        updated_state: dict[str, Any] | None,
        loaded: EventStream | None,
    ) -> SnapshotUpdate | None:
        strategy = self._strategy
        if isinstance(strategy, EventSourced):
            return None

        previous = await self._previous_snapshot(aggregate_type, aggregate_id, loaded)
        last_sequence = previous.current_sequence if previous is not None else 0
        if not strategy.snapshot_due(last_sequence, new_sequence):
            return None

        if updated_state is None:
            if isinstance(strategy, AggregateStore):
                raise MissingAggregateStateError(
                    f"{aggregate_type}:{aggregate_id}: the aggregate-store "
                    "strategy needs the updated state on every commit"
                )
            logger.debug(
                "Snapshot due for %s:%s at %d but no state supplied; deferring",
                aggregate_type,
                aggregate_id,
                new_sequence,
            )
            return None

        return SnapshotUpdate(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            current_sequence=new_sequence,
            state=updated_state,
            previous_snapshot_version=(
                previous.snapshot_version if previous is not None else 0
            ),
        )

    async def _previous_snapshot(
        self,
        aggregate_type: str,
        aggregate_id: str,
        loaded: EventStream | None,
    ) -> SerializedSnapshot | None:
        if loaded is not None:
            return loaded.snapshot
        return await self._repository.get_snapshot(aggregate_type, aggregate_id)
