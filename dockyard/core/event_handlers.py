"""
Event handlers for domain events.

This module registers handlers that react to deployment lifecycle events.
"""
import logging

from dockyard.core.events import (
    DeploymentCreatedEvent,
    DeploymentStatusChangedEvent,
    event_dispatcher,
)

logger = logging.getLogger(__name__)


async def on_deployment_created(event: DeploymentCreatedEvent):
    """Record accepted deployment requests."""
    logger.info(f"Deployment {event.deployment_id} accepted for project {event.project_id}")


async def on_deployment_status_changed(event: DeploymentStatusChangedEvent):
    """Record lifecycle transitions; failures are logged at warning level."""
    if event.new_status == "failed":
        logger.warning(
            f"Deployment {event.deployment_id} failed for project {event.project_id}: {event.error}"
        )
    elif event.new_status == "succeeded":
        logger.info(
            f"Deployment {event.deployment_id} for project {event.project_id} is live at {event.url}"
        )
    else:
        logger.info(
            f"Deployment {event.deployment_id}: {event.old_status} -> {event.new_status}"
        )


def register_all_handlers():
    """
    Register all handlers.

    Call this during application startup so handlers are in place before
    the first deployment is accepted. Safe to call more than once.
    """
    event_dispatcher.register(DeploymentCreatedEvent, on_deployment_created)
    event_dispatcher.register(DeploymentStatusChangedEvent, on_deployment_status_changed)
    logger.info("Event handlers registered")
