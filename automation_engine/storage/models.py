"""SQLAlchemy database models for the automation engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    workflow_data = Column(JSON, nullable=False)  # Editor document: {"nodes": [...], "edges": [...]}
    created_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship(
        "WorkflowExecutionModel",
        back_populates="workflow",
        cascade="all, delete-orphan"
    )


class WorkflowExecutionModel(Base):
    """Database model for workflow execution runs."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    trigger_type = Column(String, nullable=False)
    trigger_data = Column(JSON)
    status = Column(String, nullable=False)  # running, completed, failed, cancelled
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    error_message = Column(Text)
    execution_log = Column(JSON, nullable=False, default=list)  # Ordered list of log entries

    workflow = relationship("WorkflowModel", back_populates="executions")
