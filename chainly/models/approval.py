"""
Approval Model
A pending human decision that pauses a run.
"""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MODIFIED = "MODIFIED"


class Approval(Base):
    """
    Approval Model

    Created PENDING by the human approval node together with a snapshot of
    the context at the pause point. Mutated exactly once by approve, reject
    or modify; never deleted.
    """
    __tablename__ = "approvals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    execution_id = Column(Integer, ForeignKey("executions.id"), nullable=False, index=True)
    node_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=ApprovalStatus.PENDING.value, index=True)
    message = Column(Text, nullable=False)

    # Context captured when the run paused
    context = Column(JSON, nullable=False)

    # {"approved": true, ...} / {"rejected": true, "reason": "..."} / {"modified": true, "context": {...}}
    response = Column(JSON, nullable=True)
    responded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    execution = relationship("Execution", back_populates="approvals")

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value

    def __repr__(self):
        return f"<Approval(id='{self.id}', execution_id={self.execution_id}, status='{self.status}')>"
