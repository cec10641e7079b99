"""DomainEvent base class + EventTypeRegistry for hydrating stored events."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import SerializationError, UnknownEventTypeError
from .models import PendingEvent, SerializedEvent


class DomainEvent(BaseModel):
    """Base class for all Domain Events.

    Events are immutable. The stored ``event_type`` defaults to the class
    name; bump ``event_version`` when the payload schema changes.
    """

    model_config = ConfigDict(frozen=True)

    event_version: ClassVar[str] = "1.0"

    @classmethod
    def event_type(cls) -> str:
        return cls.__name__

    def to_pending(self, metadata: dict[str, Any] | None = None) -> PendingEvent:
        """Serialize this event for ``DynamoEventStore.commit``."""
        return PendingEvent(
            event_type=self.event_type(),
            payload=self.model_dump(mode="json"),
            event_version=self.event_version,
            metadata=dict(metadata or {}),
        )


class EventTypeRegistry:
    """Registry for mapping ``event_type: str`` → ``Type[DomainEvent]``.

    Used to reconstruct domain events from stored payloads. Unlike a lenient
    lookup, ``hydrate`` refuses unknown types instead of skipping them, so an
    aggregate is never rebuilt from a partial history.

    Usage::

        registry = EventTypeRegistry()
        registry.register(OrderCreated)
        event = registry.hydrate(serialized_event)
    """

    def __init__(self, *event_classes: type[DomainEvent]) -> None:
        self._registry: dict[str, type[DomainEvent]] = {}
        for event_class in event_classes:
            self.register(event_class)

    def register(
        self, event_class: type[DomainEvent], name: str | None = None
    ) -> None:
        """Register an event class under *name* (default: its event type)."""
        self._registry[name or event_class.event_type()] = event_class

    def get(self, event_type: str) -> type[DomainEvent] | None:
        return self._registry.get(event_type)

    def has(self, event_type: str) -> bool:
        return event_type in self._registry

    def hydrate(self, event: SerializedEvent) -> DomainEvent:
        """Reconstruct a domain event from its stored form.

        Raises:
            UnknownEventTypeError: If the type is not registered.
            SerializationError: If the payload does not validate.
        """
        event_class = self.get(event.event_type)
        if event_class is None:
            raise UnknownEventTypeError(event.event_type)
        try:
            return event_class.model_validate(event.payload)
        except ValidationError as e:
            raise SerializationError(
                f"Cannot hydrate {event.event_type} #{event.sequence} of "
                f"{event.aggregate_type}:{event.aggregate_id}: {e}"
            ) from e

    def list_registered(self) -> list[str]:
        return list(self._registry.keys())
