"""
Node System for Chainly Workflows

A workflow graph is a set of typed nodes joined by directed connections.
Node configuration (``data``) is an opaque map interpreted only by the
node's executor.

All specs are immutable (frozen) Pydantic models with validation.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeType(str, Enum):
    """Node-type tags, as stored on Node rows."""

    INITIAL = "INITIAL"

    # Triggers
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    WEBHOOK_TRIGGER = "WEBHOOK_TRIGGER"
    GOOGLE_FORM_TRIGGER = "GOOGLE_FORM_TRIGGER"
    GITHUB_TRIGGER = "GITHUB_TRIGGER"
    SCHEDULE_TRIGGER = "SCHEDULE_TRIGGER"

    # Actions
    HTTP_REQUEST = "HTTP_REQUEST"
    OPENAI = "OPENAI"
    ANTHROPIC = "ANTHROPIC"
    GEMINI = "GEMINI"
    DISCORD = "DISCORD"
    EMAIL = "EMAIL"
    CODE = "CODE"
    SET = "SET"

    # Control flow
    CONDITIONAL = "CONDITIONAL"
    SWITCH = "SWITCH"
    LOOP = "LOOP"
    WAIT = "WAIT"
    ERROR_HANDLER = "ERROR_HANDLER"
    HUMAN_APPROVAL = "HUMAN_APPROVAL"


TRIGGER_NODE_TYPES = frozenset({
    NodeType.MANUAL_TRIGGER,
    NodeType.GOOGLE_FORM_TRIGGER,
    NodeType.WEBHOOK_TRIGGER,
    NodeType.GITHUB_TRIGGER,
    NodeType.SCHEDULE_TRIGGER,
})


def is_trigger(node_type: str) -> bool:
    return node_type in TRIGGER_NODE_TYPES


def status_channel(node_type: str) -> str:
    """``HUMAN_APPROVAL`` -> ``human-approval-execution``"""
    value = node_type.value if isinstance(node_type, NodeType) else str(node_type)
    return value.lower().replace("_", "-") + "-execution"


class NodeSpec(BaseModel):
    """
    One configured node of a workflow.

    ``type`` is kept as a plain string so graphs containing tags unknown to
    this build can still be resolved; dispatch rejects them later with
    ``UnknownNodeType``.
    """

    id: str = Field(..., min_length=1, description="Unique node identifier")
    type: str = Field(..., min_length=1, description="Node-type tag")
    name: Optional[str] = Field(None, description="Human-readable label")
    data: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")

    model_config = ConfigDict(frozen=True)

    @field_validator("id")
    @classmethod
    def validate_id_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Node ID cannot be empty")
        return v

    @property
    def is_trigger(self) -> bool:
        return is_trigger(self.type)


class ConnectionSpec(BaseModel):
    """Directed edge ``from_node_id -> to_node_id``, optionally on a named output port."""

    from_node_id: str = Field(..., min_length=1)
    to_node_id: str = Field(..., min_length=1)
    from_output: Optional[str] = Field("main", description="Output-port label (e.g. 'true', 'case-0')")
    to_input: Optional[str] = Field("main")

    model_config = ConfigDict(frozen=True)


class WorkflowGraph(BaseModel):
    """Nodes and connections of one workflow, as loaded from the store."""

    nodes: List[NodeSpec] = Field(default_factory=list)
    connections: List[ConnectionSpec] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def node(self, node_id: str) -> Optional[NodeSpec]:
        return next((n for n in self.nodes if n.id == node_id), None)
