"""
Code executor

Runs the node's Python snippet in the sandbox and stores its return value.
"""

import logging

from ..context import Context, with_variable
from ..exceptions import CodeExecutionError
from ..nodes import NodeType
from ..sandbox import CodeSandbox, E2BSandbox
from .base import NodeCall, NodeExecutor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


class CodeExecutor(NodeExecutor):
    node_type = NodeType.CODE
    label = "Code"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "code", "Code is required")

    @property
    def sandbox(self) -> CodeSandbox:
        if self.deps.sandbox is None:
            self.deps.sandbox = E2BSandbox()
        return self.deps.sandbox

    async def run(self, call: NodeCall) -> Context:
        variable_name = call.config.get("variableName") or "code"
        timeout = int(call.config.get("timeout") or DEFAULT_TIMEOUT_SECONDS)

        async def execute():
            try:
                return await self.sandbox.run(call.config["code"], dict(call.context), timeout=timeout)
            except CodeExecutionError as e:
                raise CodeExecutionError(
                    f"Code Node: Execution failed. {e.message}",
                    code=call.config["code"],
                    error_details=e.error_details,
                ) from e

        result = await call.step.run(self.step_name("execute-code", call), execute)
        return with_variable(call.context, variable_name, result)
