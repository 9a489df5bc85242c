"""
Deployment lifecycle state machine.

    pending  --start build-->   building
    building --all steps ok-->  succeeded
    building --any failure-->   failed

succeeded and failed are terminal. Every transition persists the Deployment
together with the project's visible status in a single commit and then
dispatches a DeploymentStatusChangedEvent.
"""
import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.events import (
    DeploymentCreatedEvent,
    DeploymentStatusChangedEvent,
    EventDispatcher,
    event_dispatcher,
)
from dockyard.core.exceptions import InvalidStateTransitionError
from dockyard.models.deployment import Deployment
from dockyard.repositories.project_repository import ProjectRepository
from dockyard.schemas.deployment import DeploymentStatus, ProjectStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DeploymentStatus.PENDING.value: frozenset({DeploymentStatus.BUILDING.value}),
    DeploymentStatus.BUILDING.value: frozenset({
        DeploymentStatus.SUCCEEDED.value,
        DeploymentStatus.FAILED.value,
    }),
    DeploymentStatus.SUCCEEDED.value: frozenset(),
    DeploymentStatus.FAILED.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)


def can_transition(current: str, target: str) -> bool:
    """Check whether the lifecycle permits moving from current to target."""
    return target in TRANSITIONS.get(current, frozenset())


class DeploymentStateMachine:
    """
    Owns the Deployment record and the project status it implies.

    Entering succeeded stores the URL on both the deployment and the
    project. Entering failed returns the project to active and leaves its
    deployed URL pointing at the last good deployment.
    """

    def __init__(self, db: AsyncSession, dispatcher: Optional[EventDispatcher] = None):
        self.db = db
        self.projects = ProjectRepository(db)
        self.dispatcher = dispatcher or event_dispatcher

    async def open(self, project_id: UUID) -> Deployment:
        """
        Create a pending deployment and mark the project as deploying.

        Both writes are committed together.
        """
        project = await self.projects.get_project(project_id)
        deployment = Deployment(project_id=project_id, status=DeploymentStatus.PENDING.value)
        self.db.add(deployment)
        project.status = ProjectStatus.DEPLOYING.value
        await self.db.commit()
        await self.db.refresh(deployment)

        await self.dispatcher.dispatch_async(
            DeploymentCreatedEvent(deployment_id=deployment.id, project_id=project_id)
        )
        return deployment

    async def start_build(
        self,
        deployment: Deployment,
    ) -> Deployment:
        """pending -> building."""
        return await self._transition(deployment, DeploymentStatus.BUILDING.value)

    async def succeed(
        self,
        deployment: Deployment,
        url: str,
        logs: str,
    ) -> Deployment:
        """building -> succeeded; publishes the URL on the project."""
        return await self._transition(
            deployment,
            DeploymentStatus.SUCCEEDED.value,
            fields={"url": url, "logs": logs, "error": None, "finished_at": datetime.utcnow()},
            project_status=ProjectStatus.ACTIVE.value,
            deployed_url=url,
        )

    async def fail(
        self,
        deployment: Deployment,
        error: str,
        logs: str,
    ) -> Deployment:
        """building -> failed; the project goes back to active."""
        return await self._transition(
            deployment,
            DeploymentStatus.FAILED.value,
            fields={"url": None, "logs": logs, "error": error, "finished_at": datetime.utcnow()},
            project_status=ProjectStatus.ACTIVE.value,
        )

    async def _transition(
        self,
        deployment: Deployment,
        target: str,
        fields: Optional[Dict[str, Any]] = None,
        project_status: Optional[str] = None,
        deployed_url: Optional[str] = None,
    ) -> Deployment:
        current = deployment.status
        if not can_transition(current, target):
            raise InvalidStateTransitionError(str(deployment.id), current, target)

        for name, value in (fields or {}).items():
            setattr(deployment, name, value)
        deployment.status = target
        if project_status is not None:
            # set_status commits the deployment changes in the same transaction
            await self.projects.set_status(deployment.project_id, project_status, deployed_url)
        else:
            await self.db.commit()
        await self.db.refresh(deployment)

        logger.info(f"Deployment {deployment.id} transitioned {current} -> {target}")

        await self.dispatcher.dispatch_async(
            DeploymentStatusChangedEvent(
                deployment_id=deployment.id,
                project_id=deployment.project_id,
                old_status=current,
                new_status=target,
                url=deployment.url,
                error=deployment.error,
            )
        )
        return deployment
