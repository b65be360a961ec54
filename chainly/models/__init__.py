"""
Models module - SQLAlchemy database models
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined to avoid circular imports
from .workflow import Workflow, Node, Connection
from .execution import Execution, ExecutionStep, ExecutionStatus, StepStatus, StepResult
from .approval import Approval, ApprovalStatus
from .credential import Credential

__all__ = [
    "Base",
    "Workflow",
    "Node",
    "Connection",
    "Execution",
    "ExecutionStep",
    "ExecutionStatus",
    "StepStatus",
    "StepResult",
    "Approval",
    "ApprovalStatus",
    "Credential",
]
