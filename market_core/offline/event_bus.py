# =============================================================================
# market_core/offline/event_bus.py
# Typed Publish/Subscribe Notifications
# =============================================================================
"""
EventBus - typed notifications from the core to whoever renders data.

Subscribers register for an event class and get back a Subscription whose
``unsubscribe()`` removes them; a handler that raises is logged and does not
stop delivery to the others.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
import logging

from market_core.models import utcnow

logger = logging.getLogger(__name__)

E = TypeVar("E")


# =============================================================================
# EVENTS
# =============================================================================

@dataclass
class DataUpdated:
    """Fresh data for ``topic`` was written to the local cache."""
    topic: str
    value: Any
    at: datetime = field(default_factory=utcnow)


@dataclass
class ConnectionChanged:
    previous: str
    current: str
    is_online: bool


@dataclass
class SessionChanged:
    """Emitted on login, refresh and logout/expiry."""
    authenticated: bool
    reason: str


@dataclass
class CartChanged:
    item_count: int
    total_cents: int


# =============================================================================
# BUS
# =============================================================================

class Subscription:
    """Handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: EventBus, event_type: type, handler: Callable[[Any], None]):
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.unsubscribe()
        return False


class EventBus:
    """Synchronous, in-process event bus keyed by event class."""

    def __init__(self):
        self._subscriptions: Dict[type, List[Subscription]] = {}

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Subscription:
        subscription = Subscription(self, event_type, handler)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        handlers = self._subscriptions.get(subscription.event_type, [])
        if subscription in handlers:
            handlers.remove(subscription)
        if not handlers:
            self._subscriptions.pop(subscription.event_type, None)

    def publish(self, event: Any) -> int:
        """
        Deliver ``event`` to handlers subscribed to its class (or a base class).

        Returns:
            Number of handlers that ran without raising
        """
        delivered = 0
        for event_type, subscriptions in list(self._subscriptions.items()):
            if not isinstance(event, event_type):
                continue
            for subscription in list(subscriptions):
                try:
                    subscription.handler(event)
                    delivered += 1
                except Exception as e:
                    logger.error(f"Error in {type(event).__name__} handler: {e}", exc_info=True)
        return delivered

    def subscriber_count(self, event_type: Optional[type] = None) -> int:
        if event_type is not None:
            return len(self._subscriptions.get(event_type, []))
        return sum(len(s) for s in self._subscriptions.values())
