"""Tests for table layout definitions."""

from __future__ import annotations

from cqrs_ddd_persistence_dynamo import DynamoTables, TableSpec


def test_default_table_names() -> None:
    tables = DynamoTables()
    assert [spec.name for spec in tables.all_specs()] == [
        "Events",
        "Snapshots",
        "Views",
    ]


def test_events_key_schema() -> None:
    spec = DynamoTables(events="OrderEvents").events_spec
    assert spec == TableSpec("OrderEvents", "AggregateTypeAndId", "AggregateIdSequence")
    assert spec.attribute_definitions() == [
        {"AttributeName": "AggregateTypeAndId", "AttributeType": "S"},
        {"AttributeName": "AggregateIdSequence", "AttributeType": "N"},
    ]


def test_views_sort_key_is_string() -> None:
    spec = DynamoTables().views_spec
    assert spec.key_schema()[1] == {"AttributeName": "ViewId", "KeyType": "RANGE"}
    assert spec.attribute_definitions()[1]["AttributeType"] == "S"


def test_key_of_extracts_primary_key() -> None:
    item = {
        "AggregateTypeAndId": "order:1",
        "AggregateIdSequence": 3,
        "Payload": b"{}",
    }
    assert DynamoTables().events_spec.key_of(item) == {
        "AggregateTypeAndId": "order:1",
        "AggregateIdSequence": 3,
    }
    assert DynamoTables().snapshots_spec.key_of(item) == {
        "AggregateTypeAndId": "order:1"
    }
