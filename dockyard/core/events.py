"""
Domain event system for loose coupling between services.

This module provides a simple in-process event dispatcher that allows
services to communicate without direct dependencies. Live log lines do not
travel through here; they go through the per-project LogBroadcaster.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Any, Type
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

logger = logging.getLogger(__name__)


# =============================================================================
# Base Event Classes
# =============================================================================

@dataclass
class DomainEvent:
    """Base class for all domain events."""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def event_type(self) -> str:
        """Return the event type name."""
        return self.__class__.__name__


# =============================================================================
# Deployment Events
# =============================================================================

@dataclass
class DeploymentCreatedEvent(DomainEvent):
    """Emitted when a deployment request is accepted."""
    deployment_id: UUID = None
    project_id: UUID = None


@dataclass
class DeploymentStatusChangedEvent(DomainEvent):
    """Emitted when a deployment status changes."""
    deployment_id: UUID = None
    project_id: UUID = None
    old_status: str = None
    new_status: str = None
    url: str = None
    error: str = None


# =============================================================================
# Event Dispatcher
# =============================================================================

class EventDispatcher:
    """
    Simple in-process event dispatcher.

    Handlers are registered per event type. A failing handler is logged and
    never interrupts the dispatching service.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}

    def register(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event class to handle
            handler: Callable that takes the event as argument
        """
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
        logger.debug(f"Registered handler {handler.__name__} for {event_type.__name__}")

    def unregister(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """Unregister a handler for an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    async def dispatch_async(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all registered handlers.

        Handlers can be either sync or async functions.

        Args:
            event: The event to dispatch
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])

        logger.debug(f"Dispatching {event_type.__name__} to {len(handlers)} handlers")

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.__name__}: {e}"
                )

    def clear(self) -> None:
        """Clear all registered handlers."""
        self._handlers.clear()


# Global event dispatcher instance
event_dispatcher = EventDispatcher()
