"""
Credential Model
API keys used by action nodes, scoped per user.
"""

import uuid

from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime
from . import Base


class Credential(Base):
    """
    Credential Model

    ``value`` is stored as provided by the credential service. Executors only
    ever read it, and only for the owning user.
    """
    __tablename__ = "credentials"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)  # OPENAI, ANTHROPIC, GEMINI, RESEND
    value = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Credential(id='{self.id}', type='{self.type}', user_id='{self.user_id}')>"
