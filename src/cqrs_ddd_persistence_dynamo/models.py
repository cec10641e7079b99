"""Persisted record types: events, snapshots, views, and loaded streams."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _empty_document() -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class PendingEvent:
    """An event about to be committed; the store assigns its sequence."""

    event_type: str
    payload: dict[str, Any] = field(default_factory=_empty_document)
    event_version: str = "1.0"
    metadata: dict[str, Any] = field(default_factory=_empty_document)


@dataclass(frozen=True)
class SerializedEvent:
    """Persistent representation of one committed event.

    - ``sequence``: 1-based position in the aggregate's stream.
    - ``event_version``: payload schema version, for upcasting.
    """

    aggregate_type: str
    aggregate_id: str
    sequence: int
    event_type: str
    event_version: str = "1.0"
    payload: dict[str, Any] = field(default_factory=_empty_document)
    metadata: dict[str, Any] = field(default_factory=_empty_document)


@dataclass(frozen=True)
class SerializedSnapshot:
    """Materialized aggregate state at ``current_sequence``.

    ``snapshot_version`` counts how many times the record was written and
    guards replacement with an optimistic check.
    """

    aggregate_type: str
    aggregate_id: str
    current_sequence: int
    snapshot_version: int
    state: dict[str, Any] = field(default_factory=_empty_document)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SnapshotUpdate:
    """A snapshot write to include in a commit transaction."""

    aggregate_type: str
    aggregate_id: str
    current_sequence: int
    state: dict[str, Any]
    previous_snapshot_version: int


@dataclass(frozen=True)
class EventStream:
    """Result of loading one aggregate: optional snapshot plus tail events."""

    aggregate_type: str
    aggregate_id: str
    events: list[SerializedEvent] = field(default_factory=list)
    snapshot: SerializedSnapshot | None = None

    @property
    def current_sequence(self) -> int:
        """Highest committed sequence visible through this stream."""
        if self.events:
            return self.events[-1].sequence
        if self.snapshot is not None:
            return self.snapshot.current_sequence
        return 0

    @property
    def snapshot_sequence(self) -> int:
        return self.snapshot.current_sequence if self.snapshot is not None else 0

    @property
    def is_empty(self) -> bool:
        return not self.events and self.snapshot is None


@dataclass(frozen=True)
class ViewRecord:
    """A materialized projection and its optimistic version."""

    view_type: str
    view_id: str
    version: int
    payload: dict[str, Any] = field(default_factory=_empty_document)
