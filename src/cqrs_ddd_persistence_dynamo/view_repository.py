"""DynamoViewRepository — versioned materialized views with optimistic updates."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Union

from .exceptions import ConcurrencyError, ConditionalCheckFailedError
from .models import ViewRecord
from .ports import (
    AttributeEquals,
    Condition,
    IKeyValueStore,
    Item,
    ItemAbsent,
    Put,
    require_attribute,
)
from .serialization import decode_document, encode_document
from .tables import VIEW_ID, VIEW_TYPE, DynamoTables

logger = logging.getLogger("cqrs_ddd.dynamo.view_repository")

ViewMutator = Callable[
    [Union[dict[str, Any], None]],
    Union[dict[str, Any], Awaitable[dict[str, Any]]],
]


class DynamoViewRepository:
    """
    Loads and stores projections keyed by ``(view_type, view_id)``.

    Each record carries a ``Version`` that starts at 1 on creation and
    increments on every successful write. Writes are conditioned on the
    version the writer read, so concurrent query processors can never
    overwrite a newer view with stale data; the loser gets a
    ``ConcurrencyError`` and is expected to re-read and retry.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        tables: DynamoTables | None = None,
    ) -> None:
        self._store = store
        self._views = (tables or DynamoTables()).views_spec

    def _record_to_item(self, record: ViewRecord) -> Item:
        return {
            VIEW_TYPE: record.view_type,
            VIEW_ID: record.view_id,
            "Version": record.version,
            "Payload": encode_document(record.payload),
            "LastUpdated": datetime.now(timezone.utc).isoformat(),
        }

    def _item_to_record(self, item: Item) -> ViewRecord:
        table = self._views.name
        return ViewRecord(
            view_type=require_attribute(item, VIEW_TYPE, table),
            view_id=require_attribute(item, VIEW_ID, table),
            version=require_attribute(item, "Version", table),
            payload=decode_document(require_attribute(item, "Payload", table)),
        )

    async def load(self, view_type: str, view_id: str) -> ViewRecord | None:
        """Return the current projection and its version, or None."""
        item = await self._store.get_item(
            self._views, {VIEW_TYPE: view_type, VIEW_ID: view_id}
        )
        return self._item_to_record(item) if item is not None else None

    async def load_many(
        self, view_type: str, view_ids: list[str]
    ) -> dict[str, ViewRecord]:
        """Batch-load several views of one type; missing ids are omitted."""
        if not view_ids:
            return {}
        keys = [{VIEW_TYPE: view_type, VIEW_ID: view_id} for view_id in view_ids]
        items = await self._store.batch_get(self._views, keys)
        records = (self._item_to_record(item) for item in items)
        return {record.view_id: record for record in records}

    async def save(
        self,
        view_type: str,
        view_id: str,
        payload: dict[str, Any],
        expected_version: int,
    ) -> ViewRecord:
        """Write *payload* if the stored version still equals *expected_version*.

        ``expected_version=0`` means the view must not exist yet.

        Raises:
            ConcurrencyError: If another writer got there first.
        """
        record = ViewRecord(view_type, view_id, expected_version + 1, payload)
        condition: Condition = (
            ItemAbsent()
            if expected_version == 0
            else AttributeEquals("Version", expected_version)
        )
        try:
            await self._store.put(
                Put(self._views, self._record_to_item(record), condition)
            )
        except ConditionalCheckFailedError as e:
            logger.warning(
                "View %s:%s changed since version %d",
                view_type,
                view_id,
                expected_version,
            )
            raise ConcurrencyError(
                f"View {view_type}:{view_id} is no longer at version "
                f"{expected_version}",
                expected=expected_version,
            ) from e
        logger.debug(
            "Saved view %s:%s at version %d", view_type, view_id, record.version
        )
        return record

    async def update(
        self,
        view_type: str,
        view_id: str,
        mutator: ViewMutator,
        expected_version: int | None = None,
    ) -> ViewRecord:
        """Read-modify-write a view under an optimistic version check.

        Args:
            view_type: View type name.
            view_id: View identifier (usually the aggregate id).
            mutator: Receives the current payload (None when absent) and
                returns the new payload; may be a coroutine function.
            expected_version: Version the caller last saw; None accepts
                whatever is stored at read time. Absent views are version 0.

        Returns:
            The record as written, with its new version.

        Raises:
            ConcurrencyError: If the stored version differs from
                *expected_version* or changes between read and write.
        """
        current = await self.load(view_type, view_id)
        current_version = current.version if current is not None else 0
        if expected_version is not None and expected_version != current_version:
            raise ConcurrencyError(
                f"View {view_type}:{view_id} is at version {current_version}, "
                f"expected {expected_version}",
                expected=expected_version,
            )
        result = mutator(current.payload if current is not None else None)
        payload = await result if inspect.isawaitable(result) else result
        return await self.save(view_type, view_id, payload, current_version)

    async def delete(
        self,
        view_type: str,
        view_id: str,
        expected_version: int | None = None,
    ) -> None:
        """Remove a view, optionally only if it is still at *expected_version*."""
        condition = (
            AttributeEquals("Version", expected_version)
            if expected_version is not None
            else None
        )
        try:
            await self._store.delete(
                self._views, {VIEW_TYPE: view_type, VIEW_ID: view_id}, condition
            )
        except ConditionalCheckFailedError as e:
            raise ConcurrencyError(
                f"View {view_type}:{view_id} is no longer at version "
                f"{expected_version}",
                expected=expected_version,
            ) from e
