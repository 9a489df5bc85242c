"""
Project and project file models.

Both tables belong to the project store; the deployment engine reads files
and writes only the project's status and deployed URL.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from dockyard.core.database import Base


class Project(Base):
    """A user's application, stored as a virtual file tree."""

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # 'active', 'deploying', 'archived'
    deployed_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    files = relationship("ProjectFile", back_populates="project", cascade="all, delete-orphan")
    deployments = relationship("Deployment", back_populates="project")


class ProjectFile(Base):
    """One entry of a project's file tree."""

    __tablename__ = "project_files"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    path = Column(String(1000), nullable=False)
    content = Column(Text, nullable=False, default="")
    type = Column(String(20), nullable=False, default="file")  # 'file', 'directory'

    project = relationship("Project", back_populates="files")
