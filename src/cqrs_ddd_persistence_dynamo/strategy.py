"""Storage strategies: which records are authoritative for an aggregate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class EventSourced:
    """The full event log is authoritative; no snapshot is kept."""

    def snapshot_due(self, last_snapshot_sequence: int, new_sequence: int) -> bool:
        return False


@dataclass(frozen=True)
class AggregateStore:
    """Only the latest aggregate state is read back.

    Events are still appended on every commit as an audit trail.
    """

    def snapshot_due(self, last_snapshot_sequence: int, new_sequence: int) -> bool:
        return True


@dataclass(frozen=True)
class Snapshot:
    """Event log between snapshots; the snapshot is refreshed every *interval*.

    A snapshot is written by the commit whose new sequence reaches or passes
    the next multiple of ``interval`` after the last snapshot. With
    ``interval=5`` and one event per commit, snapshots land at 5, 10, 15...
    A single commit of several events that jumps over a multiple (4 -> 7)
    snapshots at 7.
    """

    interval: int

    def __post_init__(self) -> None:
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise ConfigurationError(
                f"Snapshot interval must be an int, got {self.interval!r}"
            )
        if self.interval < 1:
            raise ConfigurationError(
                f"Snapshot interval must be >= 1, got {self.interval}"
            )

    def snapshot_due(self, last_snapshot_sequence: int, new_sequence: int) -> bool:
        return new_sequence // self.interval > last_snapshot_sequence // self.interval


StorageStrategy = Union[EventSourced, AggregateStore, Snapshot]


def validate_strategy(strategy: object) -> StorageStrategy:
    """Return *strategy* if it is one of the known variants."""
    if isinstance(strategy, (EventSourced, AggregateStore, Snapshot)):
        return strategy
    raise ConfigurationError(f"Unknown storage strategy: {strategy!r}")
