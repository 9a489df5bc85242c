"""
Deployment model for tracking deployment attempts.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from dockyard.core.database import Base


class Deployment(Base):
    """One execution of the deployment pipeline for a project."""

    __tablename__ = "deployments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # 'pending', 'building', 'succeeded', 'failed'
    logs = Column(Text, nullable=True)
    url = Column(String(500), nullable=True)
    runtime_type = Column(String(50), nullable=True)
    host_port = Column(Integer, nullable=True, index=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="deployments")
