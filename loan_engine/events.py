"""
Event System Module

Publish/subscribe dispatcher for loan engine domain events. Handlers run
synchronously after the state change they describe has been persisted; a
failing handler is logged and never undoes that change.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events raised by the loan engine"""

    REPAYMENT_POSTED = "loan.repayment_posted"
    LOAN_CLOSED = "loan.closed"
    LOAN_IN_ARREARS = "loan.arrears"
    LOAN_RESTORED = "loan.restored"
    LOAN_WRITTEN_OFF = "loan.written_off"
    CREDIT_STAGE_CHANGED = "staging.stage_changed"
    PORTFOLIO_STAGED = "staging.portfolio_staged"


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
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("loan_engine.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to every event"""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Deliver an event to its subscribers, then to catch-all handlers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # The event describes a committed change; a handler cannot veto it
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}",
                    exc_info=True
                )

    def handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            return sum(len(h) for h in self._handlers.values()) + len(self._global_handlers)


def loan_event(event_type: DomainEvent, loan, **data: Any) -> EventPayload:
    """Build a loan event carrying the loan's current position"""
    payload = {
        "loan_number": loan.loan_number,
        "customer_id": loan.customer_id,
        "organisation_id": loan.organisation_id,
        "status": loan.status.value,
        "outstanding_balance": str(loan.outstanding_balance),
        "currency": loan.currency.code
    }
    payload.update(data)
    return EventPayload(event_type=event_type, entity_type="loan", entity_id=loan.id, data=payload)
