"""DynamoDB persistence for CQRS/DDD.

Includes the event repository and strategy-aware event store, the versioned
view repository, the storage adapters (DynamoDB and in-memory), and the
framework glue that runs commands against aggregates.
"""

from __future__ import annotations

# Storage adapters
from .adapters.memory import InMemoryKeyValueStore
from .connection import DynamoConnectionManager

# Framework glue
from .cqrs import (
    Aggregate,
    CqrsFramework,
    EventEnvelope,
    Query,
    View,
    ViewQuery,
    dynamodb_aggregate_cqrs,
    dynamodb_cqrs,
    dynamodb_snapshot_cqrs,
)
from .dynamo import DynamoKeyValueStore

# Core components
from .event_repository import DynamoEventRepository
from .event_store import DynamoEventStore
from .events import DomainEvent, EventTypeRegistry
from .exceptions import (
    ConcurrencyError,
    ConditionalCheckFailedError,
    ConfigurationError,
    DynamoAggregateError,
    DynamoConnectionError,
    MalformedRecordError,
    MissingAggregateStateError,
    SerializationError,
    StorageError,
    TransactionTooLargeError,
    UnknownEventTypeError,
)
from .models import (
    EventStream,
    PendingEvent,
    SerializedEvent,
    SerializedSnapshot,
    SnapshotUpdate,
    ViewRecord,
)
from .ports import IKeyValueStore
from .retry import RetryPolicy, retry_on_conflict
from .strategy import AggregateStore, EventSourced, Snapshot, StorageStrategy
from .tables import DynamoTables, TableSpec, ensure_tables
from .view_repository import DynamoViewRepository

__all__ = [
    # Core
    "DynamoEventRepository",
    "DynamoEventStore",
    "DynamoViewRepository",
    "EventStream",
    "PendingEvent",
    "SerializedEvent",
    "SerializedSnapshot",
    "SnapshotUpdate",
    "ViewRecord",
    # Strategies
    "AggregateStore",
    "EventSourced",
    "Snapshot",
    "StorageStrategy",
    # Storage
    "DynamoConnectionManager",
    "DynamoKeyValueStore",
    "DynamoTables",
    "IKeyValueStore",
    "InMemoryKeyValueStore",
    "TableSpec",
    "ensure_tables",
    # Framework
    "Aggregate",
    "CqrsFramework",
    "DomainEvent",
    "EventEnvelope",
    "EventTypeRegistry",
    "Query",
    "RetryPolicy",
    "View",
    "ViewQuery",
    "dynamodb_aggregate_cqrs",
    "dynamodb_cqrs",
    "dynamodb_snapshot_cqrs",
    "retry_on_conflict",
    # Exceptions
    "ConcurrencyError",
    "ConditionalCheckFailedError",
    "ConfigurationError",
    "DynamoAggregateError",
    "DynamoConnectionError",
    "MalformedRecordError",
    "MissingAggregateStateError",
    "SerializationError",
    "StorageError",
    "TransactionTooLargeError",
    "UnknownEventTypeError",
]
