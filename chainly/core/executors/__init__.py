"""
Executor registry

Maps every NodeType to the executor that runs it. The registry is total:
a node type without an executor is a programming error caught at build time.
"""

from typing import Dict

from ..exceptions import UnknownNodeType
from ..nodes import NodeType
from .ai import AnthropicExecutor, GeminiExecutor, OpenAIExecutor
from .approval import HumanApprovalExecutor
from .base import ExecutorDependencies, NodeCall, NodeExecutor, PassThroughExecutor
from .code import CodeExecutor
from .control import (
    ConditionalExecutor,
    ErrorHandlerExecutor,
    LoopExecutor,
    SetExecutor,
    SwitchExecutor,
    WaitExecutor,
)
from .http import DiscordExecutor, EmailExecutor, HttpRequestExecutor
from .triggers import (
    GithubTriggerExecutor,
    GoogleFormTriggerExecutor,
    InitialExecutor,
    ManualTriggerExecutor,
    ScheduleTriggerExecutor,
    WebhookTriggerExecutor,
)

EXECUTOR_CLASSES = (
    InitialExecutor,
    ManualTriggerExecutor,
    WebhookTriggerExecutor,
    GoogleFormTriggerExecutor,
    GithubTriggerExecutor,
    ScheduleTriggerExecutor,
    HttpRequestExecutor,
    OpenAIExecutor,
    AnthropicExecutor,
    GeminiExecutor,
    DiscordExecutor,
    EmailExecutor,
    CodeExecutor,
    SetExecutor,
    ConditionalExecutor,
    SwitchExecutor,
    LoopExecutor,
    WaitExecutor,
    ErrorHandlerExecutor,
    HumanApprovalExecutor,
)

ExecutorRegistry = Dict[NodeType, NodeExecutor]


def build_executor_registry(deps: ExecutorDependencies = None) -> ExecutorRegistry:
    deps = deps or ExecutorDependencies()
    registry = {cls.node_type: cls(deps) for cls in EXECUTOR_CLASSES}

    missing = set(NodeType) - set(registry)
    if missing:
        raise RuntimeError(f"No executor registered for: {', '.join(sorted(t.value for t in missing))}")
    return registry


def get_executor(registry: ExecutorRegistry, node_type: str) -> NodeExecutor:
    """Executor for ``node_type``; raises UnknownNodeType for unregistered tags."""
    try:
        return registry[NodeType(node_type)]
    except (ValueError, KeyError):
        raise UnknownNodeType(str(node_type))


__all__ = [
    "ExecutorDependencies",
    "ExecutorRegistry",
    "NodeCall",
    "NodeExecutor",
    "PassThroughExecutor",
    "build_executor_registry",
    "get_executor",
]
