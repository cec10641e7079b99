"""End-to-end tests of the framework glue over the in-memory store."""

from __future__ import annotations

from collections.abc import Sequence
from unittest.mock import AsyncMock, patch

import pytest

from cqrs_ddd_persistence_dynamo import (
    ConcurrencyError,
    ConfigurationError,
    CqrsFramework,
    DynamoEventStore,
    DynamoTables,
    DynamoViewRepository,
    EventEnvelope,
    EventTypeRegistry,
    InMemoryKeyValueStore,
    Query,
    RetryPolicy,
    UnknownEventTypeError,
    ViewQuery,
    dynamodb_aggregate_cqrs,
    dynamodb_cqrs,
    dynamodb_snapshot_cqrs,
)

from ..support import (
    AccountOpened,
    AccountSummary,
    BankAccount,
    Deposit,
    InsufficientFundsError,
    MoneyDeposited,
    OpenAccount,
    Withdraw,
)


class RecordingQuery:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[EventEnvelope]]] = []

    async def dispatch(
        self, aggregate_id: str, events: Sequence[EventEnvelope]
    ) -> None:
        self.calls.append((aggregate_id, list(events)))


def test_recording_query_satisfies_protocol() -> None:
    assert isinstance(RecordingQuery(), Query)


@pytest.mark.asyncio
async def test_execute_commits_and_notifies_queries(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    query = RecordingQuery()
    cqrs = dynamodb_cqrs(store, BankAccount, registry, [query])

    committed = await cqrs.execute(
        "acc-1", OpenAccount(owner="ada"), metadata={"user": "ada"}
    )

    assert [(e.sequence, type(e.payload)) for e in committed] == [(1, AccountOpened)]
    assert committed[0].aggregate_type == "account"
    assert committed[0].metadata == {"user": "ada"}
    assert query.calls == [("acc-1", committed)]

    stream = await cqrs.store.load("account", "acc-1")
    assert stream.events[0].metadata == {"user": "ada"}


@pytest.mark.asyncio
async def test_load_aggregate_replays_events(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_cqrs(store, BankAccount, registry)
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    await cqrs.execute("acc-1", Deposit(amount=50))
    await cqrs.execute("acc-1", Withdraw(amount=20))

    account = await cqrs.load_aggregate("acc-1")
    assert account.owner == "ada"
    assert account.balance == 30


@pytest.mark.asyncio
async def test_load_unknown_aggregate_returns_default(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_cqrs(store, BankAccount, registry)
    account = await cqrs.load_aggregate("nobody")
    assert account == BankAccount()


@pytest.mark.asyncio
async def test_command_rejection_commits_nothing(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    query = RecordingQuery()
    cqrs = dynamodb_cqrs(store, BankAccount, registry, [query])
    with pytest.raises(InsufficientFundsError):
        await cqrs.execute("acc-1", Withdraw(amount=5))
    assert (await cqrs.store.load("account", "acc-1")).is_empty
    assert query.calls == []


@pytest.mark.asyncio
async def test_command_without_events_skips_commit_and_queries(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    query = RecordingQuery()
    cqrs = dynamodb_cqrs(store, BankAccount, registry, [query])
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    assert await cqrs.execute("acc-1", OpenAccount(owner="again")) == []
    assert len(query.calls) == 1


@pytest.mark.asyncio
async def test_async_handle_is_awaited(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    class AsyncAccount(BankAccount):
        async def handle(self, command: object):  # type: ignore[override]
            return super().handle(command)

    cqrs = dynamodb_cqrs(store, AsyncAccount, registry)
    committed = await cqrs.execute("acc-1", Deposit(amount=7))
    assert [type(e.payload) for e in committed] == [MoneyDeposited]


@pytest.mark.asyncio
async def test_conflict_is_retried_with_fresh_state(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_cqrs(store, BankAccount, registry)
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))

    original_commit = DynamoEventStore.commit
    calls = {"n": 0}

    async def racing_commit(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            # another writer commits first
            await original_commit(
                self, "account", "acc-1", 1, [MoneyDeposited(amount=100).to_pending()]
            )
        return await original_commit(self, *args, **kwargs)

    with (
        patch.object(DynamoEventStore, "commit", racing_commit),
        patch("cqrs_ddd_persistence_dynamo.retry.asyncio.sleep", new=AsyncMock()),
    ):
        committed = await cqrs.execute("acc-1", Deposit(amount=1))

    assert [e.sequence for e in committed] == [3]
    account = await cqrs.load_aggregate("acc-1")
    assert account.balance == 101


@pytest.mark.asyncio
async def test_conflict_surfaces_when_retries_exhausted(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    policy = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0)
    cqrs = dynamodb_cqrs(store, BankAccount, registry, retry_policy=policy)
    calls = {"n": 0}

    async def always_stale(self, *args, **kwargs):
        calls["n"] += 1
        raise ConcurrencyError("stale", expected=0)

    with (
        patch.object(DynamoEventStore, "commit", always_stale),
        pytest.raises(ConcurrencyError),
    ):
        await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    assert calls["n"] == 2
    assert (await cqrs.store.load("account", "acc-1")).is_empty


@pytest.mark.asyncio
async def test_failing_query_propagates_after_commit(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    class BrokenQuery:
        async def dispatch(self, aggregate_id, events) -> None:
            raise RuntimeError("projection down")

    cqrs = dynamodb_cqrs(store, BankAccount, registry, [BrokenQuery()])
    with pytest.raises(RuntimeError, match="projection down"):
        await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    assert (await cqrs.store.load("account", "acc-1")).current_sequence == 1


@pytest.mark.asyncio
async def test_unregistered_stored_event_fails_load(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_cqrs(store, BankAccount, registry)
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    strict = dynamodb_cqrs(store, BankAccount, EventTypeRegistry(MoneyDeposited))
    with pytest.raises(UnknownEventTypeError):
        await strict.load_aggregate("acc-1")


# ── Strategies through the glue ──────────────────────────────────────


@pytest.mark.asyncio
async def test_aggregate_store_framework_reads_state_record(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_aggregate_cqrs(store, BankAccount, registry)
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    for _ in range(3):
        await cqrs.execute("acc-1", Deposit(amount=10))

    stream = await cqrs.store.load("account", "acc-1")
    assert stream.events == []
    assert stream.snapshot is not None
    assert stream.snapshot.current_sequence == 4
    assert stream.snapshot.state == {"owner": "ada", "balance": 30, "opened": True}

    account = await cqrs.load_aggregate("acc-1")
    assert account.balance == 30


@pytest.mark.asyncio
async def test_snapshot_framework_rebuilds_from_snapshot_and_tail(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_snapshot_cqrs(store, BankAccount, registry, snapshot_size=5)
    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    for _ in range(11):
        await cqrs.execute("acc-1", Deposit(amount=1))

    stream = await cqrs.store.load("account", "acc-1")
    assert stream.snapshot is not None
    assert stream.snapshot.current_sequence == 10
    assert [e.sequence for e in stream.events] == [11, 12]

    account = await cqrs.load_aggregate("acc-1")
    assert account.balance == 11
    assert account.owner == "ada"


def test_snapshot_framework_validates_size(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    with pytest.raises(ConfigurationError):
        dynamodb_snapshot_cqrs(store, BankAccount, registry, snapshot_size=0)


def test_custom_tables_are_used(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    tables = DynamoTables(events="AccountEvents", snapshots="AccountSnapshots")
    cqrs = dynamodb_cqrs(store, BankAccount, registry, tables=tables)
    assert isinstance(cqrs, CqrsFramework)
    assert cqrs.store.repository.tables == tables
    assert cqrs.aggregate_type == "account"


# ── ViewQuery ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_view_query_maintains_versioned_view(
    store: InMemoryKeyValueStore,
    registry: EventTypeRegistry,
    view_repository: DynamoViewRepository,
) -> None:
    summaries = ViewQuery(view_repository, AccountSummary)
    cqrs = dynamodb_cqrs(store, BankAccount, registry, [summaries])

    await cqrs.execute("acc-1", OpenAccount(owner="ada"))
    await cqrs.execute("acc-1", Deposit(amount=40))
    await cqrs.execute("acc-1", Withdraw(amount=15))

    view = await summaries.load("acc-1")
    assert view == AccountSummary(
        owner="ada", balance=25, transactions=2, last_sequence=3
    )
    record = await view_repository.load("AccountSummary", "acc-1")
    assert record is not None
    assert record.version == 3


@pytest.mark.asyncio
async def test_view_query_retries_on_view_conflict(
    view_repository: DynamoViewRepository,
) -> None:
    summaries = ViewQuery(
        view_repository,
        AccountSummary,
        "summary",
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
    )
    envelope = EventEnvelope("account", "acc-1", 1, MoneyDeposited(amount=5))

    original_update = view_repository.update
    calls = {"n": 0}

    async def racing_update(view_type, view_id, mutator, expected_version=None):
        calls["n"] += 1
        if calls["n"] == 1:
            await view_repository.save(view_type, view_id, {"balance": 100}, 0)
            raise ConcurrencyError("view moved")
        return await original_update(view_type, view_id, mutator, expected_version)

    with patch.object(view_repository, "update", racing_update):
        await summaries.dispatch("acc-1", [envelope])

    view = await summaries.load("acc-1")
    assert view is not None
    assert view.balance == 105
    assert summaries.view_type == "summary"


@pytest.mark.asyncio
async def test_view_query_ignores_empty_dispatch(
    view_repository: DynamoViewRepository,
) -> None:
    summaries = ViewQuery(view_repository, AccountSummary)
    await summaries.dispatch("acc-1", [])
    assert await summaries.load("acc-1") is None


def test_framework_accepts_queries_later(
    store: InMemoryKeyValueStore, registry: EventTypeRegistry
) -> None:
    cqrs = dynamodb_cqrs(store, BankAccount, registry)
    query = RecordingQuery()
    cqrs.add_query(query)
    assert query in cqrs._queries
