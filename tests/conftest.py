"""Shared fixtures: in-memory store and repositories."""

from __future__ import annotations

import pytest

from cqrs_ddd_persistence_dynamo import (
    DynamoEventRepository,
    DynamoTables,
    DynamoViewRepository,
    EventTypeRegistry,
    InMemoryKeyValueStore,
)

from .support import AccountOpened, MoneyDeposited, MoneyWithdrawn


@pytest.fixture
def tables() -> DynamoTables:
    return DynamoTables()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def event_repository(
    store: InMemoryKeyValueStore, tables: DynamoTables
) -> DynamoEventRepository:
    return DynamoEventRepository(store, tables)


@pytest.fixture
def view_repository(
    store: InMemoryKeyValueStore, tables: DynamoTables
) -> DynamoViewRepository:
    return DynamoViewRepository(store, tables)


@pytest.fixture
def registry() -> EventTypeRegistry:
    return EventTypeRegistry(AccountOpened, MoneyDeposited, MoneyWithdrawn)
