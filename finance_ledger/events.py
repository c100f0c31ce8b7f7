"""
Event System Module

Publish/subscribe dispatcher for ledger domain events. External
collaborators (PDF rendering, reporting, notifications) subscribe here;
events are only published once the unit of work that caused them commits.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
from threading import RLock

from .logging_config import get_logger
from .storage import StorageInterface


class DomainEvent(Enum):
    """Domain events emitted by the ledger core"""

    DOCUMENT_NUMBER_ISSUED = "document_number.issued"
    DOCUMENT_COMPLETED = "document.completed"
    DOCUMENT_DELETED = "document.deleted"
    TRANSACTION_POSTED = "transaction.posted"
    TRANSACTION_REVERSED = "transaction.reversed"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = get_logger("finance_ledger.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {getattr(handler, '__name__', repr(handler))} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {getattr(handler, '__name__', repr(handler))} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Subscribers never break the ledger
                self.logger.error(f"Error in event handler {getattr(handler, '__name__', repr(handler))} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            return sum(len(handlers) for handlers in self._handlers.values()) + len(self._global_handlers)


def publish_after_commit(
    storage: StorageInterface,
    dispatcher: Optional[EventDispatcher],
    event: EventPayload
) -> None:
    """Publish once the current unit of work commits; dropped on rollback"""
    if dispatcher is None:
        return
    storage.on_commit(lambda: dispatcher.publish(event))


def create_transaction_event(event_type: DomainEvent, transaction) -> EventPayload:
    """Create a transaction-related event"""
    return EventPayload(
        event_type=event_type,
        entity_type="transaction",
        entity_id=transaction.id,
        data={
            "account_id": transaction.account_id,
            "document_id": transaction.document_id,
            "direction": transaction.direction.value,
            "amount": str(transaction.amount),
            "balance_before": str(transaction.balance_before),
            "balance_after": str(transaction.balance_after),
            "description": transaction.description,
            "metadata": transaction.metadata
        }
    )


def create_document_event(event_type: DomainEvent, document) -> EventPayload:
    """Create a document-related event"""
    return EventPayload(
        event_type=event_type,
        entity_type="document",
        entity_id=document.id,
        data={
            "organization_id": document.organization_id,
            "kind": document.kind.value,
            "status": document.status.value,
            "document_number": document.document_number,
            "account_id": document.account_id,
            "amount": str(document.amount)
        }
    )
