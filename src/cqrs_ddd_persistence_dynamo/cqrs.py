"""Framework glue: aggregates, queries, and the command-execution loop.

Wires a ``DynamoEventStore`` to user-defined aggregates and read-side
queries, and provides constructors for the three storage strategies::

    cqrs = dynamodb_snapshot_cqrs(
        store, BankAccount, registry, [AccountQuery(views)], snapshot_size=10
    )
    await cqrs.execute("acc-1", Deposit(amount=100))
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, Protocol, TypeVar, Union, runtime_checkable

from pydantic import BaseModel, ValidationError

from .event_repository import DynamoEventRepository
from .event_store import DynamoEventStore
from .events import DomainEvent, EventTypeRegistry
from .exceptions import SerializationError
from .models import EventStream
from .ports import IKeyValueStore
from .retry import RetryPolicy, retry_on_conflict
from .strategy import AggregateStore, EventSourced, Snapshot, StorageStrategy
from .tables import DynamoTables
from .view_repository import DynamoViewRepository

logger = logging.getLogger("cqrs_ddd.dynamo.cqrs")

A = TypeVar("A", bound="Aggregate")
V = TypeVar("V", bound="View")


@dataclass(frozen=True)
class EventEnvelope:
    """A committed domain event together with its stream position."""

    aggregate_type: str
    aggregate_id: str
    sequence: int
    payload: DomainEvent
    metadata: dict[str, Any] = field(default_factory=dict)


class Aggregate(BaseModel):
    """Base class for event-sourced aggregates.

    Subclasses declare their state as pydantic fields, all with defaults so a
    fresh instance represents the never-committed aggregate. ``handle``
    validates a command and returns the resulting events without mutating
    state; ``apply`` folds one event into the state.

    Usage::

        class BankAccount(Aggregate):
            aggregate_type: ClassVar[str] = "account"
            balance: int = 0

            def handle(self, command):
                return [Deposited(amount=command.amount)]

            def apply(self, event):
                self.balance += event.amount
    """

    aggregate_type: ClassVar[str] = ""

    @classmethod
    def type_name(cls) -> str:
        return cls.aggregate_type or cls.__name__

    def handle(
        self, command: Any
    ) -> Union[Sequence[DomainEvent], Awaitable[Sequence[DomainEvent]]]:
        """Return the events *command* produces; may be a coroutine."""
        raise NotImplementedError

    def apply(self, event: DomainEvent) -> None:
        raise NotImplementedError


@runtime_checkable
class Query(Protocol):
    """Read-side consumer notified after every successful commit."""

    async def dispatch(
        self, aggregate_id: str, events: Sequence[EventEnvelope]
    ) -> None: ...


class View(BaseModel):
    """Base class for materialized views maintained by ``ViewQuery``."""

    def update(self, event: EventEnvelope) -> None:
        raise NotImplementedError


class ViewQuery(Generic[V]):
    """Generic query keeping one ``View`` per aggregate in the view table.

    Each dispatch loads the view, applies the new events and saves it under
    the version it read, reloading and reapplying on a conflict.
    """

    def __init__(
        self,
        repository: DynamoViewRepository,
        view_cls: type[V],
        view_type: str | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._repository = repository
        self._view_cls = view_cls
        self._view_type = view_type or view_cls.__name__
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def view_type(self) -> str:
        return self._view_type

    def _to_view(self, payload: dict[str, Any] | None) -> V:
        if payload is None:
            return self._view_cls()
        try:
            return self._view_cls.model_validate(payload)
        except ValidationError as e:
            raise SerializationError(
                f"Stored {self._view_type} view does not validate: {e}"
            ) from e

    async def load(self, view_id: str) -> V | None:
        record = await self._repository.load(self._view_type, view_id)
        return self._to_view(record.payload) if record is not None else None

    async def dispatch(
        self, aggregate_id: str, events: Sequence[EventEnvelope]
    ) -> None:
        if not events:
            return

        def mutate(payload: dict[str, Any] | None) -> dict[str, Any]:
            view = self._to_view(payload)
            for envelope in events:
                view.update(envelope)
            return view.model_dump(mode="json")

        record = await retry_on_conflict(
            lambda: self._repository.update(self._view_type, aggregate_id, mutate),
            self._retry_policy,
        )
        logger.debug(
            "View %s:%s updated to version %d",
            self._view_type,
            aggregate_id,
            record.version,
        )


class CqrsFramework(Generic[A]):
    """
    Executes commands against one aggregate type.

    ``execute`` runs load, replay, handle and commit as a unit and repeats
    it under ``retry_policy`` when the commit loses an optimistic check.
    Queries are notified in registration order once the commit is durable;
    a failing query is logged and its error propagates, but the committed
    events are not rolled back.
    """

    def __init__(
        self,
        store: DynamoEventStore,
        aggregate_cls: type[A],
        registry: EventTypeRegistry,
        queries: Iterable[Query] = (),
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._aggregate_cls = aggregate_cls
        self._registry = registry
        self._queries = list(queries)
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def store(self) -> DynamoEventStore:
        return self._store

    @property
    def aggregate_type(self) -> str:
        return self._aggregate_cls.type_name()

    def add_query(self, query: Query) -> None:
        self._queries.append(query)

    async def load_aggregate(self, aggregate_id: str) -> A:
        """Rebuild the aggregate from its snapshot and/or events."""
        aggregate, _ = await self._load(aggregate_id)
        return aggregate

    async def _load(self, aggregate_id: str) -> tuple[A, EventStream]:
        stream = await self._store.load(self.aggregate_type, aggregate_id)
        if stream.snapshot is not None:
            try:
                aggregate = self._aggregate_cls.model_validate(stream.snapshot.state)
            except ValidationError as e:
                raise SerializationError(
                    f"Snapshot of {self.aggregate_type}:{aggregate_id} "
                    f"does not validate: {e}"
                ) from e
        else:
            aggregate = self._aggregate_cls()
        for event in stream.events:
            aggregate.apply(self._registry.hydrate(event))
        return aggregate, stream

    async def execute(
        self,
        aggregate_id: str,
        command: Any,
        metadata: dict[str, Any] | None = None,
    ) -> list[EventEnvelope]:
        """Handle *command* and commit the resulting events.

        Returns:
            The committed events, empty when the command produced none.

        Raises:
            ConcurrencyError: If every attempt lost the optimistic check.
            StorageError: If the store failed for any other reason.
        """
        envelopes = await retry_on_conflict(
            lambda: self._execute_once(aggregate_id, command, metadata or {}),
            self._retry_policy,
        )
        if envelopes:
            await self._notify(aggregate_id, envelopes)
        return envelopes

    async def _execute_once(
        self,
        aggregate_id: str,
        command: Any,
        metadata: dict[str, Any],
    ) -> list[EventEnvelope]:
        aggregate, stream = await self._load(aggregate_id)
        result = aggregate.handle(command)
        events = list(await result if inspect.isawaitable(result) else result)
        if not events:
            return []

        for event in events:
            aggregate.apply(event)

        expected = stream.current_sequence
        await self._store.commit(
            self.aggregate_type,
            aggregate_id,
            expected,
            [event.to_pending() for event in events],
            aggregate.model_dump(mode="json"),
            metadata=metadata,
            loaded=stream,
        )
        return [
            EventEnvelope(
                aggregate_type=self.aggregate_type,
                aggregate_id=aggregate_id,
                sequence=expected + offset,
                payload=event,
                metadata=dict(metadata),
            )
            for offset, event in enumerate(events, start=1)
        ]

    async def _notify(
        self, aggregate_id: str, envelopes: Sequence[EventEnvelope]
    ) -> None:
        for query in self._queries:
            try:
                await query.dispatch(aggregate_id, envelopes)
            except Exception:
                logger.exception(
                    "Query %s failed for %s:%s",
                    type(query).__name__,
                    self.aggregate_type,
                    aggregate_id,
                )
                raise


def _framework(
    store: IKeyValueStore,
    strategy: StorageStrategy,
    aggregate_cls: type[A],
    registry: EventTypeRegistry,
    queries: Iterable[Query],
    tables: DynamoTables | None,
    retry_policy: RetryPolicy | None,
) -> CqrsFramework[A]:
    event_store = DynamoEventStore(DynamoEventRepository(store, tables), strategy)
    return CqrsFramework(
        event_store, aggregate_cls, registry, queries, retry_policy=retry_policy
    )


def dynamodb_cqrs(
    store: IKeyValueStore,
    aggregate_cls: type[A],
    registry: EventTypeRegistry,
    queries: Iterable[Query] = (),
    *,
    tables: DynamoTables | None = None,
    retry_policy: RetryPolicy | None = None,
) -> CqrsFramework[A]:
    """Framework whose aggregates are rebuilt from their full event log."""
    return _framework(
        store, EventSourced(), aggregate_cls, registry, queries, tables, retry_policy
    )


def dynamodb_aggregate_cqrs(
    store: IKeyValueStore,
    aggregate_cls: type[A],
    registry: EventTypeRegistry,
    queries: Iterable[Query] = (),
    *,
    tables: DynamoTables | None = None,
    retry_policy: RetryPolicy | None = None,
) -> CqrsFramework[A]:
    """Framework that reads back only the latest aggregate state."""
    return _framework(
        store, AggregateStore(), aggregate_cls, registry, queries, tables, retry_policy
    )


def dynamodb_snapshot_cqrs(
    store: IKeyValueStore,
    aggregate_cls: type[A],
    registry: EventTypeRegistry,
    queries: Iterable[Query] = (),
    *,
    snapshot_size: int,
    tables: DynamoTables | None = None,
    retry_policy: RetryPolicy | None = None,
) -> CqrsFramework[A]:
    """Framework that snapshots aggregate state every *snapshot_size* events."""
    return _framework(
        store,
        Snapshot(snapshot_size),
        aggregate_cls,
        registry,
        queries,
        tables,
        retry_policy,
    )
