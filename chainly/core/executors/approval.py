"""
Human approval executor

Suspends the run until a person approves, rejects or modifies it:

1. render the approval message against the context
2. create a PENDING Approval holding a snapshot of the context
3. mark the run PAUSED
4. raise PauseExecution (a control-flow signal, not an error)

The approval API later resumes the run from the next node, with the
decision stored under this node's variable name.
"""

import logging

from ..context import Context, snapshot
from ..exceptions import PauseExecution, WorkflowError
from ..nodes import NodeType
from .base import NodeCall, NodeExecutor

logger = logging.getLogger(__name__)


class HumanApprovalExecutor(NodeExecutor):
    node_type = NodeType.HUMAN_APPROVAL
    label = "Human Approval"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "message", "Approval message is required")

    async def run(self, call: NodeCall) -> Context:
        store = self.deps.store
        if store is None or call.run_id is None:
            raise WorkflowError("Human Approval Node: approvals need a persisted run", retry_allowed=False)

        message = self.templates.render(call.config["message"], call.context)
        context_snapshot = snapshot(call.context)

        approval_id = await call.step.run(
            self.step_name("create-approval", call),
            lambda: store.create_approval(
                execution_id=call.run_id,
                node_id=call.node_id,
                user_id=call.user_id,
                message=message,
                context=context_snapshot,
            ).id,
        )

        execution = store.get_execution(call.run_id)
        if execution is not None:
            store.mark_paused(execution)

        logger.info(f"Run {call.run_id} paused at node {call.node_id} waiting for approval {approval_id}")
        raise PauseExecution(approval_id, node_id=call.node_id)
