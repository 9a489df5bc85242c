"""
Pydantic schemas for Deployment.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from uuid import UUID


class DeploymentStatus(str, Enum):
    """Status of a deployment attempt."""
    PENDING = "pending"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProjectStatus(str, Enum):
    """Status of a project as seen by the rest of the system."""
    ACTIVE = "active"
    DEPLOYING = "deploying"
    ARCHIVED = "archived"


class DeploymentHandle(BaseModel):
    """Returned by the deploy trigger as soon as the attempt is accepted."""
    deployment_id: UUID
    project_id: UUID
    status: DeploymentStatus = DeploymentStatus.PENDING
    message: str = "Deployment started"


class DeploymentResponse(BaseModel):
    """Schema for Deployment status response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    status: DeploymentStatus
    url: Optional[str] = None
    runtime_type: Optional[str] = None
    host_port: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None


class DeploymentLogsResponse(BaseModel):
    """Persisted log of a deployment attempt."""
    deployment_id: UUID
    status: DeploymentStatus
    logs: str = ""


class DeploymentHistoryResponse(BaseModel):
    """Every attempt of a project, newest first."""
    project_id: UUID
    results: int
    deployments: List[DeploymentResponse]


class DeploymentCancelResponse(BaseModel):
    """Acknowledges a cancellation request."""
    deployment_id: UUID
    project_id: UUID
    message: str = "Cancellation requested"
