"""
Execution Store

Persistence operations the run loop, the executors and the approval service
need, on top of a SQLAlchemy session:

- read a workflow's nodes and connections
- create/update runs (Execution) and append run steps (ExecutionStep)
- create/update approvals
- read credentials scoped to a user
- update a node's stored configuration (schedule bookkeeping)

Every mutation commits immediately so observers see progress while a run is
still folding.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .context import make_json_serializable
from .exceptions import DatabaseError, WorkflowNotFound
from .nodes import NodeSpec, NodeType
from ..models.approval import Approval, ApprovalStatus
from ..models.credential import Credential
from ..models.execution import (
    Execution,
    ExecutionStatus,
    ExecutionStep,
    StepStatus,
    TERMINAL_STEP_STATUSES,
)
from ..models.workflow import Node, Workflow

logger = logging.getLogger(__name__)


class ExecutionStore:
    """SQLAlchemy-backed persistence for runs, steps and approvals."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(f"Database commit failed: {e}") from e

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def load_workflow(self, workflow_id: int) -> Workflow:
        workflow = self.db.query(Workflow).filter(Workflow.id == workflow_id).first()
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def list_nodes_by_type(self, node_type: str) -> List[Node]:
        return self.db.query(Node).filter(Node.type == node_type).all()

    def get_node(self, node_id: str) -> Optional[Node]:
        return self.db.query(Node).filter(Node.id == node_id).first()

    def update_node_data(self, node_id: str, data: Dict[str, Any]) -> None:
        node = self.get_node(node_id)
        if node is None:
            logger.warning(f"Cannot update data of missing node {node_id}")
            return
        # Reassign so the JSON column is flagged dirty
        node.data = make_json_serializable(data)
        self._commit()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_execution(
        self,
        workflow_id: int,
        initial_data: Optional[Dict[str, Any]] = None,
        trigger_node_id: Optional[str] = None,
    ) -> Execution:
        execution = Execution(
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING.value,
            initial_data=make_json_serializable(initial_data or {}),
            trigger_node_id=trigger_node_id,
            started_at=datetime.utcnow(),
        )
        self.db.add(execution)
        self._commit()
        logger.info(f"Created Execution {execution.id} for workflow {workflow_id}")
        return execution

    def get_execution(self, execution_id: int) -> Optional[Execution]:
        return self.db.query(Execution).filter(Execution.id == execution_id).first()

    def _set_status(self, execution: Execution, status: ExecutionStatus, **fields) -> bool:
        if execution.is_terminal:
            logger.warning(
                f"Execution {execution.id} is already {execution.status}, ignoring transition to {status.value}"
            )
            return False
        execution.status = status.value
        for key, value in fields.items():
            setattr(execution, key, value)
        self._commit()
        return True

    def mark_running(self, execution: Execution) -> bool:
        return self._set_status(execution, ExecutionStatus.RUNNING, completed_at=None)

    def mark_paused(self, execution: Execution) -> bool:
        return self._set_status(execution, ExecutionStatus.PAUSED)

    def mark_success(self, execution: Execution, output: Dict[str, Any]) -> bool:
        return self._set_status(
            execution,
            ExecutionStatus.SUCCESS,
            output=make_json_serializable(output),
            completed_at=datetime.utcnow(),
        )

    def mark_failed(self, execution: Execution, error: str, error_stack: Optional[str] = None) -> bool:
        return self._set_status(
            execution,
            ExecutionStatus.FAILED,
            error=error,
            error_stack=error_stack,
            completed_at=datetime.utcnow(),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def start_step(self, execution_id: int, node: NodeSpec, input_context: Dict[str, Any]) -> ExecutionStep:
        last_order = (
            self.db.query(func.max(ExecutionStep.order))
            .filter(ExecutionStep.execution_id == execution_id)
            .scalar()
        )
        step = ExecutionStep(
            execution_id=execution_id,
            order=(last_order or 0) + 1,
            node_id=node.id,
            node_type=node.type,
            node_name=node.name,
            status=StepStatus.RUNNING.value,
            input=make_json_serializable(input_context),
            started_at=datetime.utcnow(),
        )
        self.db.add(step)
        self._commit()
        return step

    def finish_step(
        self,
        step: ExecutionStep,
        status: StepStatus,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        step.status = status.value
        if output is not None:
            step.output = make_json_serializable(output)
        step.error = error
        if status != StepStatus.PAUSED:
            step.completed_at = datetime.utcnow()
        self._commit()

    def latest_step(self, execution_id: int, node_id: str) -> Optional[ExecutionStep]:
        return (
            self.db.query(ExecutionStep)
            .filter(ExecutionStep.execution_id == execution_id, ExecutionStep.node_id == node_id)
            .order_by(ExecutionStep.order.desc())
            .first()
        )

    def list_steps(self, execution_id: int) -> List[ExecutionStep]:
        return (
            self.db.query(ExecutionStep)
            .filter(ExecutionStep.execution_id == execution_id)
            .order_by(ExecutionStep.order)
            .all()
        )

    def latest_context(self, execution_id: int, after_order: int = 0) -> Optional[Dict[str, Any]]:
        """
        Output context of the last SUCCESS step ordered after ``after_order``.

        Approval steps store the decision, not a context, and are ignored.
        """
        step = (
            self.db.query(ExecutionStep)
            .filter(
                ExecutionStep.execution_id == execution_id,
                ExecutionStep.order > after_order,
                ExecutionStep.status == StepStatus.SUCCESS.value,
                ExecutionStep.node_type != NodeType.HUMAN_APPROVAL.value,
            )
            .order_by(ExecutionStep.order.desc())
            .first()
        )
        if step is None or step.output is None:
            return None
        return dict(step.output)

    def completed_node_ids(self, execution_id: int) -> Set[str]:
        """Nodes that already have a SUCCESS or FAILED step in this run."""
        rows = (
            self.db.query(ExecutionStep.node_id)
            .filter(
                ExecutionStep.execution_id == execution_id,
                ExecutionStep.status.in_(TERMINAL_STEP_STATUSES),
            )
            .all()
        )
        return {row[0] for row in rows}

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def create_approval(
        self,
        execution_id: int,
        node_id: str,
        user_id: str,
        message: str,
        context: Dict[str, Any],
    ) -> Approval:
        approval = Approval(
            execution_id=execution_id,
            node_id=node_id,
            user_id=user_id,
            status=ApprovalStatus.PENDING.value,
            message=message,
            context=make_json_serializable(context),
        )
        self.db.add(approval)
        self._commit()
        logger.info(f"Created Approval {approval.id} for execution {execution_id}, node {node_id}")
        return approval

    def get_approval(self, approval_id: str) -> Optional[Approval]:
        return self.db.query(Approval).filter(Approval.id == approval_id).first()

    def latest_approval(self, execution_id: int, node_id: str) -> Optional[Approval]:
        return (
            self.db.query(Approval)
            .filter(Approval.execution_id == execution_id, Approval.node_id == node_id)
            .order_by(Approval.created_at.desc())
            .first()
        )

    def list_pending_approvals(self, user_id: Optional[str] = None) -> List[Approval]:
        query = self.db.query(Approval).filter(Approval.status == ApprovalStatus.PENDING.value)
        if user_id is not None:
            query = query.filter(Approval.user_id == user_id)
        return query.order_by(Approval.created_at.desc()).all()

    def respond_to_approval(self, approval: Approval, status: ApprovalStatus, response: Dict[str, Any]) -> Approval:
        approval.status = status.value
        approval.response = make_json_serializable(response)
        approval.responded_at = datetime.utcnow()
        self._commit()
        return approval

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credential_value(self, credential_id: str, user_id: str) -> Optional[str]:
        credential = (
            self.db.query(Credential)
            .filter(Credential.id == credential_id, Credential.user_id == user_id)
            .first()
        )
        return credential.value if credential else None
