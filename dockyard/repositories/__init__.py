"""
Repository layer for database access.
"""
from dockyard.repositories.base import BaseRepository
from dockyard.repositories.project_repository import ProjectRepository
from dockyard.repositories.deployment_repository import DeploymentRepository

__all__ = [
    "BaseRepository",
    "ProjectRepository",
    "DeploymentRepository",
]
