"""
Event System Module

Publish/subscribe dispatcher for post-commit ledger notifications.
Handlers run after the change is durable; a failing handler is logged and
never rolls back or blocks the operation that published the event.
"""

from enum import Enum
from typing import Callable, Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import Lock


class DomainEvent(Enum):
    """Domain events published by the ledger"""

    # Journal events
    ENTRY_POSTED = "journal.entry_posted"

    # Chart of accounts events
    ACCOUNT_CREATED = "account.created"
    ACCOUNT_UPDATED = "account.updated"
    ACCOUNT_DEACTIVATED = "account.deactivated"
    ACCOUNT_DELETED = "account.deleted"

    # Rollup events
    BALANCES_REBUILT = "rollup.rebuilt"


@dataclass(frozen=True)
class EventPayload:
    """Immutable notification of a committed change"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


EventHandler = Callable[[EventPayload], None]

# Subscription key for handlers that receive every event
ALL_EVENTS = None


class EventDispatcher:
    """
    Central event dispatcher

    Handler lists are replaced, never mutated, so publish() iterates a
    stable tuple without holding the lock while handlers run.
    """

    def __init__(self):
        self._subscriptions: Dict[Optional[DomainEvent], Tuple[EventHandler, ...]] = {}
        self._lock = Lock()
        self.logger = logging.getLogger("core_accounting.events")

    def subscribe(self, event_type: Optional[DomainEvent],
                  handler: EventHandler) -> Callable[[], bool]:
        """
        Register a handler for one event type (ALL_EVENTS for every type)

        Returns:
            A callable that removes this subscription
        """
        with self._lock:
            self._subscriptions[event_type] = self._subscriptions.get(event_type, ()) + (handler,)
        self.logger.debug("Subscribed %s to %s", _name(handler), _label(event_type))
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], bool]:
        return self.subscribe(ALL_EVENTS, handler)

    def unsubscribe(self, event_type: Optional[DomainEvent], handler: EventHandler) -> bool:
        """Remove one subscription; False if the handler was not subscribed"""
        with self._lock:
            handlers = list(self._subscriptions.get(event_type, ()))
            if handler not in handlers:
                self.logger.warning("Handler %s was not subscribed to %s",
                                    _name(handler), _label(event_type))
                return False
            handlers.remove(handler)
            self._subscriptions[event_type] = tuple(handlers)
            return True

    def publish(self, event: EventPayload) -> int:
        """
        Deliver an event to its subscribers, then to the catch-all handlers

        Returns:
            Number of handlers that raised
        """
        with self._lock:
            handlers = (self._subscriptions.get(event.event_type, ())
                        + self._subscriptions.get(ALL_EVENTS, ()))

        self.logger.debug("Publishing %s for %s:%s to %d handlers",
                          event.event_type.value, event.entity_type, event.entity_id,
                          len(handlers))
        failures = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # The published change stands
                failures += 1
                self.logger.error("Error in event handler %s for %s",
                                  _name(handler), event.event_type.value, exc_info=True)
        return failures

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Handlers for one event type, or across every subscription"""
        with self._lock:
            if event_type is not None:
                return len(self._subscriptions.get(event_type, ()))
            return sum(len(handlers) for handlers in self._subscriptions.values())


def _name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


def _label(event_type: Optional[DomainEvent]) -> str:
    return event_type.value if event_type is not None else "all events"
