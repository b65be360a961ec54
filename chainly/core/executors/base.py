"""
Executor Contract

Every node type implements ``execute(config, node_id, context, step,
publisher, user_id, run_id) -> context``:

1. publish ``loading`` on the node type's status channel
2. validate required configuration (missing field -> NodeConfigurationError,
   published as ``error`` before propagating)
3. perform the effect inside named, replay-safe steps
4. return the old context plus one top-level key
5. publish ``success``; on any failure publish ``error`` and re-raise

The pause signal raised by the human approval node passes through untouched.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..context import Context
from ..exceptions import CredentialsError, NodeConfigurationError, PauseExecution
from ..nodes import NodeType, status_channel
from ..publisher import ERROR, LOADING, SUCCESS, StatusPublisher
from ..sandbox import CodeSandbox
from ..step_runner import StepRunner
from ..store import ExecutionStore
from ..templating import TemplateEngine

logger = logging.getLogger(__name__)


@dataclass
class ExecutorDependencies:
    """
    Shared collaborators handed to every executor once, at registry build time.

    ``http_transport`` lets tests plug an ``httpx.MockTransport``;
    ``sandbox`` is created lazily by the code node when not provided.
    """

    templates: TemplateEngine = field(default_factory=TemplateEngine)
    store: Optional[ExecutionStore] = None
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    sandbox: Optional[CodeSandbox] = None
    http_timeout: float = 30.0


@dataclass
class NodeCall:
    """Arguments of one executor invocation."""

    config: Dict[str, Any]
    node_id: str
    context: Context
    step: StepRunner
    publisher: StatusPublisher
    user_id: Optional[str]
    run_id: Optional[int]


class NodeExecutor(ABC):
    """
    Base class for node executors.

    Subclasses set ``node_type`` and ``label`` and implement ``validate``
    and ``run``.
    """

    node_type: NodeType
    label: str

    def __init__(self, deps: ExecutorDependencies):
        self.deps = deps
        self.templates = deps.templates

    @property
    def channel(self) -> str:
        return status_channel(self.node_type)

    async def execute(
        self,
        config: Dict[str, Any],
        node_id: str,
        context: Context,
        step: StepRunner,
        publisher: StatusPublisher,
        user_id: Optional[str] = None,
        run_id: Optional[int] = None,
    ) -> Context:
        call = NodeCall(
            config=dict(config or {}),
            node_id=node_id,
            context=context,
            step=step,
            publisher=publisher,
            user_id=user_id,
            run_id=run_id,
        )

        await publisher.publish_status(self.channel, node_id, LOADING)
        try:
            self.validate(call)
            result = await self.run(call)
        except PauseExecution:
            raise
        except Exception:
            await publisher.publish_status(self.channel, node_id, ERROR)
            raise

        await publisher.publish_status(self.channel, node_id, SUCCESS)
        return result

    def validate(self, call: NodeCall) -> None:
        """Check required configuration. Default: nothing required."""
        pass

    @abstractmethod
    async def run(self, call: NodeCall) -> Context:
        pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def config_error(self, call: NodeCall, message: str) -> NodeConfigurationError:
        return NodeConfigurationError(self.label, message, node_id=call.node_id)

    def require(self, call: NodeCall, key: str, message: str) -> Any:
        value = call.config.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise self.config_error(call, message)
        return value

    def step_name(self, purpose: str, call: NodeCall) -> str:
        return f"{purpose}-{call.node_id}"

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.deps.http_timeout, transport=self.deps.http_transport)

    async def get_credential(self, call: NodeCall, credential_id: str) -> str:
        """Credential value owned by the workflow's user, read inside a memoised step."""
        store = self.deps.store
        if store is None:
            raise CredentialsError(f"{self.label} Node: Credential store is not configured", credential_id)

        value = await call.step.run(
            self.step_name("get-credential", call),
            lambda: store.get_credential_value(credential_id, call.user_id),
        )
        if not value:
            raise CredentialsError(f"{self.label} Node: Credential not found", credential_id)
        return value.strip()


class PassThroughExecutor(NodeExecutor):
    """Leaves the context unchanged (triggers, placeholder nodes)."""

    async def run(self, call: NodeCall) -> Context:
        return call.context
