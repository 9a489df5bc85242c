"""
Repository for Deployment entity database operations.
"""
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy import desc, select

from dockyard.core.exceptions import DeploymentNotFoundError
from dockyard.models.deployment import Deployment
from dockyard.repositories.base import BaseRepository


class DeploymentRepository(BaseRepository[Deployment]):
    """Repository for Deployment database operations."""

    model = Deployment

    async def get_by_id_or_raise(self, id: UUID) -> Deployment:
        """Get a deployment by ID, raising exception if not found."""
        deployment = await self.get_by_id(id)
        if not deployment:
            raise DeploymentNotFoundError(str(id))
        return deployment

    async def list_unfinished(self) -> List[Deployment]:
        """Deployments that have not reached a terminal status, oldest first."""
        result = await self.db.execute(
            select(Deployment)
            .where(Deployment.status.in_(("pending", "building")))
            .order_by(Deployment.created_at)
        )
        return list(result.scalars().all())

    async def list_for_project(
        self,
        project_id: UUID,
        limit: Optional[int] = None,
    ) -> List[Deployment]:
        """List a project's deployments, newest first."""
        query = (
            select(Deployment)
            .where(Deployment.project_id == project_id)
            .order_by(desc(Deployment.created_at), Deployment.id)
        )
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_live_ports(self) -> Set[int]:
        """
        Ports bound by the latest successful deployment of each project.

        Those containers stay reachable until the project's next deployment
        stops them, so their ports must not be handed out again.
        """
        result = await self.db.execute(
            select(Deployment.project_id, Deployment.host_port)
            .where(
                Deployment.status == "succeeded",
                Deployment.host_port.isnot(None),
            )
            .order_by(desc(Deployment.finished_at))
        )
        ports = {}
        for project_id, host_port in result.all():
            ports.setdefault(project_id, host_port)
        return set(ports.values())
