"""
Execution Models
Database models for workflow runs, their per-node steps and the memoised
results of durable steps.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class ExecutionStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


TERMINAL_EXECUTION_STATUSES = frozenset({ExecutionStatus.SUCCESS.value, ExecutionStatus.FAILED.value})


class StepStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


TERMINAL_STEP_STATUSES = frozenset({StepStatus.SUCCESS.value, StepStatus.FAILED.value})


class Execution(Base):
    """
    Execution Model (a "run")

    One end-to-end attempt to execute a workflow.
    RUNNING -> SUCCESS | FAILED | PAUSED, and PAUSED -> RUNNING on resume.
    Never mutated again once SUCCESS or FAILED.
    """
    __tablename__ = "executions"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=ExecutionStatus.RUNNING.value, index=True)

    # Seed data the run started with (trigger payload)
    initial_data = Column(JSON, nullable=True)
    trigger_node_id = Column(String(64), nullable=True)

    # Final context on SUCCESS
    output = Column(JSON, nullable=True)

    # Terminal error on FAILED
    error = Column(Text, nullable=True)
    error_stack = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    steps = relationship(
        "ExecutionStep",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionStep.order",
    )
    approvals = relationship("Approval", back_populates="execution", cascade="all, delete-orphan")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    def __repr__(self):
        return f"<Execution(id={self.id}, workflow_id={self.workflow_id}, status='{self.status}')>"


class ExecutionStep(Base):
    """
    ExecutionStep Model (a "run step")

    Audit trail of one node execution attempt. Append-only within a run;
    ``order`` increases monotonically. For approval nodes it also carries
    the approved/rejected outcome.
    """
    __tablename__ = "execution_steps"

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(Integer, ForeignKey("executions.id"), nullable=False, index=True)

    order = Column(Integer, nullable=False)

    node_id = Column(String(64), nullable=False, index=True)
    node_type = Column(String(50), nullable=False)
    node_name = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default=StepStatus.RUNNING.value)

    input = Column(JSON, nullable=True)
    output = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    execution = relationship("Execution", back_populates="steps")

    def __repr__(self):
        return f"<ExecutionStep(execution_id={self.execution_id}, order={self.order}, node_id='{self.node_id}', status='{self.status}')>"


class StepResult(Base):
    """
    Memoised output of a named durable step.

    Replaying a run looks results up by (execution_id, name) instead of
    re-running the side effect.
    """
    __tablename__ = "step_results"
    __table_args__ = (UniqueConstraint("execution_id", "name", name="uq_step_results_execution_name"),)

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(Integer, ForeignKey("executions.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    output = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<StepResult(execution_id={self.execution_id}, name='{self.name}')>"
