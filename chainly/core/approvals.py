"""
Approval Service

Lifecycle of a human approval after the run paused:

    PENDING -> APPROVED  (step SUCCESS, run resumed)
    PENDING -> MODIFIED  (context patched, step SUCCESS, run resumed)
    PENDING -> REJECTED  (step FAILED, run FAILED, no resume)

Resuming re-enters the run entry point through ``dispatch`` (the Celery
task in production, ``WorkflowEngine.execute`` in tests) with the context
captured at the pause, the optional patch, and the decision stored under
the approval node's variable name.
"""

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .context import merge_context
from .exceptions import ApprovalError, ApprovalNotFound, ApprovalNotPending
from .nodes import NodeType, status_channel
from .publisher import ERROR, SUCCESS, StatusPublisher, create_status_publisher
from .store import ExecutionStore
from ..models.approval import Approval, ApprovalStatus
from ..models.execution import StepStatus

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "Workflow rejected by user"

Dispatch = Callable[..., Any]


class ApprovalService:
    """Approve, reject or modify pending approvals and resume their runs."""

    def __init__(self, db_session: Session, dispatch: Dispatch, publisher: Optional[StatusPublisher] = None):
        self.store = ExecutionStore(db_session)
        self.dispatch = dispatch
        self.publisher = publisher or create_status_publisher()
        self.channel = status_channel(NodeType.HUMAN_APPROVAL)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_pending(self, user_id: Optional[str] = None) -> List[Approval]:
        return self.store.list_pending_approvals(user_id)

    def get(self, approval_id: str, user_id: Optional[str] = None) -> Approval:
        """Approval by id; another user's approval is reported as not found."""
        approval = self.store.get_approval(approval_id)
        if approval is None or (user_id is not None and approval.user_id != user_id):
            raise ApprovalNotFound(approval_id)
        return approval

    def _get_pending(self, approval_id: str, user_id: Optional[str]) -> Approval:
        approval = self.get(approval_id, user_id)
        if not approval.is_pending:
            raise ApprovalNotPending(approval_id, approval.status)
        return approval

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def approve(
        self,
        approval_id: str,
        response: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Any:
        approval = self._get_pending(approval_id, user_id)
        self.store.respond_to_approval(approval, ApprovalStatus.APPROVED, response or {"approved": True})
        self._finish_approval_step(approval, StepStatus.SUCCESS, {"approved": True, "response": response or {}})
        await self.publisher.publish_status(self.channel, approval.node_id, SUCCESS)

        logger.info(f"Approval {approval.id} approved, resuming execution {approval.execution_id}")
        return await self.resume(approval.execution_id, approval.node_id, {"approved": True, "response": response or {}})

    async def reject(self, approval_id: str, reason: Optional[str] = None, user_id: Optional[str] = None) -> None:
        approval = self._get_pending(approval_id, user_id)
        error_message = reason or DEFAULT_REJECT_REASON

        self.store.respond_to_approval(approval, ApprovalStatus.REJECTED, {"rejected": True, "reason": reason})
        self._finish_approval_step(
            approval, StepStatus.FAILED, {"rejected": True, "reason": reason}, error=error_message
        )
        await self.publisher.publish_status(self.channel, approval.node_id, ERROR)

        execution = self.store.get_execution(approval.execution_id)
        if execution is not None:
            self.store.mark_failed(execution, error_message)
        logger.info(f"Approval {approval.id} rejected, execution {approval.execution_id} failed: {error_message}")

    async def modify(
        self,
        approval_id: str,
        modified_context: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> Any:
        approval = self._get_pending(approval_id, user_id)
        response = {"modified": True, "context": modified_context}

        self.store.respond_to_approval(approval, ApprovalStatus.MODIFIED, response)
        self._finish_approval_step(approval, StepStatus.SUCCESS, {"approved": True, **response})
        await self.publisher.publish_status(self.channel, approval.node_id, SUCCESS)

        logger.info(f"Approval {approval.id} modified, resuming execution {approval.execution_id}")
        return await self.resume(approval.execution_id, approval.node_id, {"approved": True, **response})

    def _finish_approval_step(
        self,
        approval: Approval,
        status: StepStatus,
        output: Dict[str, Any],
        error: Optional[str] = None,
    ) -> None:
        step = self.store.latest_step(approval.execution_id, approval.node_id)
        if step is None:
            logger.warning(f"No step recorded for approval node {approval.node_id} in execution {approval.execution_id}")
            return
        self.store.finish_step(step, status, output=output, error=error)

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def build_resume_context(self, approval: Approval, response: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Context captured at the pause, plus the MODIFIED patch, plus
        ``{variableName: {status, response, approvedAt}}``.
        """
        patch = None
        if approval.status == ApprovalStatus.MODIFIED.value and isinstance(approval.response, dict):
            patch = approval.response.get("context")

        node = self.store.get_node(approval.node_id)
        variable_name = (node.data or {}).get("variableName") if node is not None else None

        decision = None
        if variable_name:
            responded_at = approval.responded_at or datetime.utcnow()
            decision = {
                variable_name: {
                    "status": approval.status.lower(),
                    "response": approval.response or response,
                    "approvedAt": responded_at.isoformat(),
                }
            }
        return merge_context(approval.context, patch, decision)

    async def resume(self, run_id: int, node_id: str, response: Optional[Dict[str, Any]] = None) -> Any:
        """Re-enter the run entry point after the approval node of ``run_id``."""
        execution = self.store.get_execution(run_id)
        if execution is None:
            raise ApprovalError(f"Execution {run_id} not found")

        approval = self.store.latest_approval(run_id, node_id)
        if approval is None or approval.status not in (ApprovalStatus.APPROVED.value, ApprovalStatus.MODIFIED.value):
            raise ApprovalError(f"No approved decision for node {node_id} in execution {run_id}")

        context = self.build_resume_context(approval, response)
        self.store.mark_running(execution)

        result = self.dispatch(
            workflow_id=execution.workflow_id,
            initial_data=context,
            resume_from_node_id=node_id,
            run_id=run_id,
        )
        if inspect.isawaitable(result):
            result = await result
        return result
