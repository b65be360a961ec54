"""
Workflow Models
Database models for workflow definitions: the workflow itself, its nodes and
the connections between them.
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base
from ..core.nodes import ConnectionSpec, NodeSpec, WorkflowGraph


class Workflow(Base):
    """
    Workflow Model

    Owns a graph of nodes and connections. ``user_id`` scopes the
    credentials executors may read while running it.
    """
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    user_id = Column(String(64), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    nodes = relationship("Node", back_populates="workflow", cascade="all, delete-orphan", order_by="Node.created_at")
    connections = relationship(
        "Connection", back_populates="workflow", cascade="all, delete-orphan", order_by="Connection.id"
    )

    def to_graph(self) -> WorkflowGraph:
        return WorkflowGraph(
            nodes=[node.to_spec() for node in self.nodes],
            connections=[connection.to_spec() for connection in self.connections],
        )

    def __repr__(self):
        return f"<Workflow(id={self.id}, name='{self.name}')>"


class Node(Base):
    """
    Node Model

    ``data`` holds the node configuration edited in the UI, e.g.
    {"variableName": "weather", "endpoint": "https://...", "method": "GET"}
    """
    __tablename__ = "nodes"

    id = Column(String(64), primary_key=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    type = Column(String(50), nullable=False, index=True)
    position = Column(JSON, nullable=True)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="nodes")

    def to_spec(self) -> NodeSpec:
        return NodeSpec(id=self.id, type=self.type, name=self.name, data=dict(self.data or {}))

    def __repr__(self):
        return f"<Node(id='{self.id}', type='{self.type}', workflow_id={self.workflow_id})>"


class Connection(Base):
    """
    Connection Model

    Directed edge between two nodes. ``from_output`` names the output port on
    branching nodes ("true"/"false", "case-0", "default").
    """
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)
    from_node_id = Column(String(64), ForeignKey("nodes.id"), nullable=False)
    to_node_id = Column(String(64), ForeignKey("nodes.id"), nullable=False)
    from_output = Column(String(64), nullable=False, default="main")
    to_input = Column(String(64), nullable=False, default="main")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="connections")

    def to_spec(self) -> ConnectionSpec:
        return ConnectionSpec(
            from_node_id=self.from_node_id,
            to_node_id=self.to_node_id,
            from_output=self.from_output,
            to_input=self.to_input,
        )

    def __repr__(self):
        return f"<Connection({self.from_node_id} -> {self.to_node_id})>"
