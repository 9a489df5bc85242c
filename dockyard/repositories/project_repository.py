"""
Repository for the project store.

The deployment engine only reads projects and their files, and writes the
project's status and deployed URL.
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from dockyard.core.exceptions import ProjectNotFoundError
from dockyard.models.project import Project, ProjectFile
from dockyard.repositories.base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Repository for Project database operations."""

    model = Project

    async def get_project(self, id: UUID) -> Project:
        """Get a project by ID, raising exception if not found."""
        project = await self.get_by_id(id)
        if not project:
            raise ProjectNotFoundError(str(id))
        return project

    async def list_files(self, project_id: UUID) -> List[ProjectFile]:
        """List every entry of the project's file tree, ordered by path."""
        result = await self.db.execute(
            select(ProjectFile)
            .where(ProjectFile.project_id == project_id)
            .order_by(ProjectFile.path)
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: str) -> List[Project]:
        """List projects with the given status."""
        result = await self.db.execute(
            select(Project).where(Project.status == status)
        )
        return list(result.scalars().all())

    async def set_status(
        self,
        project_id: UUID,
        status: str,
        deployed_url: Optional[str] = None,
    ) -> Project:
        """
        Update the project's status and, when given, its deployed URL.

        A missing deployed_url leaves the stored value untouched.

        Raises:
            ProjectNotFoundError: If project not found
        """
        project = await self.get_project(project_id)
        project.status = status
        if deployed_url is not None:
            project.deployed_url = deployed_url
        await self.db.commit()
        return project
