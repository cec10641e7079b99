"""
DynamoDB implementation of the key-value store primitives.

Translates ``IKeyValueStore`` calls into low-level DynamoDB API requests
(attribute-value marshalling, condition expressions, pagination) and maps
botocore failures onto the package exception hierarchy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import (
    ConditionalCheckFailedError,
    DynamoConnectionError,
    MalformedRecordError,
    StorageError,
)
from .ports import (
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

if TYPE_CHECKING:
    from .connection import DynamoConnectionManager
    from .tables import TableSpec

logger = logging.getLogger("cqrs_ddd.dynamo.store")

BATCH_GET_LIMIT = 100
MAX_UNPROCESSED_ROUNDS = 8

_CONFLICT_REASONS = frozenset({"ConditionalCheckFailed", "TransactionConflict"})


def marshal_value(value: Any) -> dict[str, Any]:
    """Convert a Python value to a DynamoDB attribute value."""
    # bool is an int subclass and has no place in our records
    if isinstance(value, bool):
        raise TypeError("Boolean attributes are not supported")
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, int):
        return {"N": str(value)}
    if isinstance(value, (bytes, bytearray)):
        return {"B": bytes(value)}
    raise TypeError(f"Unsupported attribute type: {type(value).__name__}")


def unmarshal_value(attribute: dict[str, Any]) -> Any:
    """Convert a DynamoDB attribute value back to a Python value."""
    if "S" in attribute:
        return attribute["S"]
    if "N" in attribute:
        try:
            return int(attribute["N"])
        except ValueError as e:
            raise MalformedRecordError(
                f"Numeric attribute is not an integer: {attribute['N']!r}"
            ) from e
    if "B" in attribute:
        return bytes(attribute["B"])
    raise MalformedRecordError(f"Unsupported attribute value: {attribute!r}")


def marshal_item(item: Item) -> dict[str, Any]:
    try:
        return {name: marshal_value(value) for name, value in item.items()}
    except TypeError as e:
        raise StorageError(str(e)) from e


def unmarshal_item(raw: dict[str, Any]) -> Item:
    return {name: unmarshal_value(value) for name, value in raw.items()}


def build_condition(
    table: TableSpec, condition: Condition
) -> tuple[str, dict[str, str], dict[str, Any]]:
    """Return ``(expression, names, values)`` for a condition."""
    if isinstance(condition, ItemAbsent):
        return "attribute_not_exists(#pk)", {"#pk": table.partition_key}, {}
    if isinstance(condition, ItemPresent):
        return "attribute_exists(#pk)", {"#pk": table.partition_key}, {}
    if isinstance(condition, AttributeEquals):
        return (
            "#attr = :expected",
            {"#attr": condition.attribute},
            {":expected": marshal_value(condition.value)},
        )
    raise TypeError(f"Unsupported condition: {condition!r}")


def _with_condition(
    request: dict[str, Any], table: TableSpec, condition: Condition | None
) -> dict[str, Any]:
    if condition is None:
        return request
    expression, names, values = build_condition(table, condition)
    request["ConditionExpression"] = expression
    request["ExpressionAttributeNames"] = names
    if values:
        request["ExpressionAttributeValues"] = values
    return request


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class DynamoKeyValueStore(IKeyValueStore):
    """``IKeyValueStore`` backed by DynamoDB through aiobotocore.

    Reads are strongly consistent so a load issued after a successful
    commit always observes it.
    """

    def __init__(self, connection: DynamoConnectionManager) -> None:
        self._connection = connection

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        client = await self._connection.get_client()
        try:
            result: dict[str, Any] = await getattr(client, operation)(**kwargs)
            return result
        except ClientError as e:
            code = _error_code(e)
            if code == "ConditionalCheckFailedException":
                raise ConditionalCheckFailedError(str(e)) from e
            if code == "TransactionCanceledException":
                reasons = {
                    reason.get("Code")
                    for reason in e.response.get("CancellationReasons", [])
                }
                if reasons & _CONFLICT_REASONS:
                    raise ConditionalCheckFailedError(str(e)) from e
            logger.error("DynamoDB %s failed: %s", operation, code or e)
            raise StorageError(str(e)) from e
        except BotoCoreError as e:
            logger.error("DynamoDB %s transport failure: %s", operation, e)
            raise DynamoConnectionError(str(e)) from e

    async def get_item(self, table: TableSpec, key: Item) -> Item | None:
        result = await self._call(
            "get_item",
            TableName=table.name,
            Key=marshal_item(key),
            ConsistentRead=True,
        )
        raw = result.get("Item")
        return unmarshal_item(raw) if raw else None

    async def batch_get(self, table: TableSpec, keys: list[Item]) -> list[Item]:
        found: list[Item] = []
        for start in range(0, len(keys), BATCH_GET_LIMIT):
            chunk = [marshal_item(key) for key in keys[start : start + BATCH_GET_LIMIT]]
            request: dict[str, Any] = {
                table.name: {"Keys": chunk, "ConsistentRead": True}
            }
            rounds = 0
            while request:
                result = await self._call("batch_get_item", RequestItems=request)
                for raw in result.get("Responses", {}).get(table.name, []):
                    found.append(unmarshal_item(raw))
                request = result.get("UnprocessedKeys") or {}
                if request:
                    rounds += 1
                    if rounds > MAX_UNPROCESSED_ROUNDS:
                        raise StorageError(
                            f"batch_get on {table.name} left keys unprocessed "
                            f"after {MAX_UNPROCESSED_ROUNDS} retries"
                        )
                    await asyncio.sleep(0.05 * 2**rounds)
        return found

    async def query(
        self,
        table: TableSpec,
        partition_value: str,
        *,
        after_sort_key: int | None = None,
    ) -> AsyncIterator[Item]:
        names = {"#pk": table.partition_key}
        values: dict[str, Any] = {":pk": marshal_value(partition_value)}
        expression = "#pk = :pk"
        if after_sort_key is not None and table.sort_key is not None:
            names["#sk"] = table.sort_key
            values[":after"] = marshal_value(after_sort_key)
            expression += " AND #sk > :after"
        kwargs: dict[str, Any] = {
            "TableName": table.name,
            "KeyConditionExpression": expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ConsistentRead": True,
            "ScanIndexForward": True,
        }
        while True:
            result = await self._call("query", **kwargs)
            for raw in result.get("Items", []):
                yield unmarshal_item(raw)
            last_key = result.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

    async def scan(
        self,
        table: TableSpec,
        *,
        filters: dict[str, str | int] | None = None,
    ) -> AsyncIterator[Item]:
        kwargs: dict[str, Any] = {"TableName": table.name, "ConsistentRead": True}
        if filters:
            clauses = []
            names: dict[str, str] = {}
            values: dict[str, Any] = {}
            for i, (attribute, value) in enumerate(sorted(filters.items())):
                clauses.append(f"#f{i} = :f{i}")
                names[f"#f{i}"] = attribute
                values[f":f{i}"] = marshal_value(value)
            kwargs["FilterExpression"] = " AND ".join(clauses)
            kwargs["ExpressionAttributeNames"] = names
            kwargs["ExpressionAttributeValues"] = values
        while True:
            result = await self._call("scan", **kwargs)
            for raw in result.get("Items", []):
                yield unmarshal_item(raw)
            last_key = result.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

    async def put(self, operation: Put) -> None:
        await self._call("put_item", **self._put_request(operation))

    async def delete(
        self,
        table: TableSpec,
        key: Item,
        condition: Condition | None = None,
    ) -> None:
        request = _with_condition(
            {"TableName": table.name, "Key": marshal_item(key)}, table, condition
        )
        await self._call("delete_item", **request)

    async def transact_write(self, operations: list[WriteOperation]) -> None:
        if not operations:
            return
        items: list[dict[str, Any]] = []
        for operation in operations:
            if isinstance(operation, Put):
                items.append({"Put": self._put_request(operation)})
            elif isinstance(operation, ConditionCheck):
                request = _with_condition(
                    {
                        "TableName": operation.table.name,
                        "Key": marshal_item(operation.key),
                    },
                    operation.table,
                    operation.condition,
                )
                items.append({"ConditionCheck": request})
            else:
                raise TypeError(f"Unsupported write operation: {operation!r}")
        await self._call("transact_write_items", TransactItems=items)

    @staticmethod
    def _put_request(operation: Put) -> dict[str, Any]:
        return _with_condition(
            {"TableName": operation.table.name, "Item": marshal_item(operation.item)},
            operation.table,
            operation.condition,
        )
