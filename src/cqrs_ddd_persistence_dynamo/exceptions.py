"""DynamoDB persistence exceptions."""

from __future__ import annotations


class DynamoAggregateError(Exception):
    """Root exception for the DynamoDB persistence package."""


class ConcurrencyError(DynamoAggregateError):
    """Raised when an optimistic sequence or version check fails.

    Callers catch this to reload the aggregate (or view) and retry.
    """

    def __init__(
        self,
        message: str,
        *,
        aggregate_type: str | None = None,
        aggregate_id: str | None = None,
        expected: int | None = None,
    ) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.expected = expected
        super().__init__(message)


class ConditionalCheckFailedError(ConcurrencyError):
    """Raised by a store adapter when a conditional write is rejected."""


class StorageError(DynamoAggregateError):
    """Raised when an operation did not take effect for a non-conflict reason."""


class DynamoConnectionError(StorageError):
    """Raised when the DynamoDB endpoint cannot be reached or times out."""


class SerializationError(StorageError):
    """Raised when a payload cannot be encoded or decoded."""


class UnknownEventTypeError(SerializationError):
    """Raised when a stored event type has no registered event class."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Event type {event_type!r} is not registered")


class MalformedRecordError(StorageError):
    """Raised when a stored item is missing required attributes."""


class TransactionTooLargeError(StorageError):
    """Raised when a commit exceeds the store's transaction item limit."""

    def __init__(self, operations: int, limit: int) -> None:
        self.operations = operations
        self.limit = limit
        super().__init__(
            f"Commit requires {operations} write operations; "
            f"the store accepts at most {limit} per transaction"
        )


class MissingAggregateStateError(StorageError):
    """Raised when a state-persisting strategy commits without aggregate state."""


class ConfigurationError(DynamoAggregateError):
    """Raised at construction time for invalid settings."""
