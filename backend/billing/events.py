"""
Billing events for collaborators (notifications, analytics).

Listeners may be plain functions or coroutines. A failing listener is logged
and does not undo the transition that produced the event.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("BillingEvents")


class EventType(str, Enum):
    PAYMENT_CREATED = "payment_created"
    PAYMENT_CONFIRMED = "payment_confirmed"
    STATE_CHANGED = "subscription_state_changed"


@dataclass
class BillingEvent:
    type: EventType
    user_id: str
    occurred_at: datetime
    payment_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[BillingEvent], Any]


class EventBus:
    def __init__(self):
        self._listeners: Dict[EventType, List[Listener]] = {t: [] for t in EventType}

    def subscribe(self, event_type: EventType, listener: Listener):
        self._listeners[event_type].append(listener)

    def on_activation(self, listener: Listener):
        """Shorthand for the notification collaborator."""
        self.subscribe(EventType.PAYMENT_CONFIRMED, listener)

    async def emit(self, event: BillingEvent):
        for listener in list(self._listeners[event.type]):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[BillingEvents] Listener for {event.type.value} failed: {e}")
