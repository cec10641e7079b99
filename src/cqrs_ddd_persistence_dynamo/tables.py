"""Table layout and creation helpers for the events, snapshots and views tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import DynamoConnectionError, StorageError

if TYPE_CHECKING:
    from .connection import DynamoConnectionManager

logger = logging.getLogger("cqrs_ddd.dynamo.tables")

# Attribute names shared by the repositories and the table definitions.
AGGREGATE_TYPE_AND_ID = "AggregateTypeAndId"
AGGREGATE_ID_SEQUENCE = "AggregateIdSequence"
VIEW_TYPE = "ViewType"
VIEW_ID = "ViewId"


@dataclass(frozen=True)
class TableSpec:
    """Name and key schema of one table.

    The sort key, when present, is numeric; partition keys are strings.
    """

    name: str
    partition_key: str
    sort_key: str | None = None

    def key_of(self, item: dict[str, Any]) -> dict[str, Any]:
        """Extract the primary key attributes from *item*."""
        key = {self.partition_key: item[self.partition_key]}
        if self.sort_key is not None:
            key[self.sort_key] = item[self.sort_key]
        return key

    def key_schema(self) -> list[dict[str, str]]:
        schema = [{"AttributeName": self.partition_key, "KeyType": "HASH"}]
        if self.sort_key is not None:
            schema.append({"AttributeName": self.sort_key, "KeyType": "RANGE"})
        return schema

    def attribute_definitions(self) -> list[dict[str, str]]:
        defs = [{"AttributeName": self.partition_key, "AttributeType": "S"}]
        if self.sort_key is not None:
            sort_type = "N" if self.sort_key == AGGREGATE_ID_SEQUENCE else "S"
            defs.append({"AttributeName": self.sort_key, "AttributeType": sort_type})
        return defs


@dataclass(frozen=True)
class DynamoTables:
    """Names of the three logical tables used by the repositories."""

    events: str = "Events"
    snapshots: str = "Snapshots"
    views: str = "Views"

    @property
    def events_spec(self) -> TableSpec:
        return TableSpec(self.events, AGGREGATE_TYPE_AND_ID, AGGREGATE_ID_SEQUENCE)

    @property
    def snapshots_spec(self) -> TableSpec:
        return TableSpec(self.snapshots, AGGREGATE_TYPE_AND_ID)

    @property
    def views_spec(self) -> TableSpec:
        return TableSpec(self.views, VIEW_TYPE, VIEW_ID)

    def all_specs(self) -> list[TableSpec]:
        return [self.events_spec, self.snapshots_spec, self.views_spec]


async def ensure_tables(
    connection: DynamoConnectionManager,
    tables: DynamoTables | None = None,
) -> list[str]:
    """Create any missing table with on-demand billing.

    Idempotent: tables that already exist are left untouched.
    Returns the names of the tables that were created.
    """
    tables = tables or DynamoTables()
    client = await connection.get_client()
    created: list[str] = []
    for spec in tables.all_specs():
        try:
            await client.create_table(
                TableName=spec.name,
                KeySchema=spec.key_schema(),
                AttributeDefinitions=spec.attribute_definitions(),
                BillingMode="PAY_PER_REQUEST",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceInUseException":
                logger.debug("Table %s already exists", spec.name)
                continue
            raise StorageError(str(e)) from e
        except BotoCoreError as e:
            raise DynamoConnectionError(str(e)) from e
        logger.info("Created table %s", spec.name)
        created.append(spec.name)
    return created
