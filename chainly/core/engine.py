"""
Workflow Engine for Chainly

The WorkflowEngine runs one workflow end to end:
1. Create (or re-open, on resume) the Execution record
2. Resolve the node/connection graph into an execution order
3. Fold the context through each node's executor, recording one
   ExecutionStep per node
4. Stop on the pause signal (PAUSED), on any failure (FAILED) or after the
   last node (SUCCESS)

Fresh starts and resumes share the same entry point. A resume passes the
run id, the merged context and the node it paused at; every node up to and
including that node, and every node that already has a terminal step, is
skipped. Passing the run id of an interrupted run (a retried task)
continues it the same way, from the context saved by its last completed
step, so memoised steps replay instead of running again.

Example:
    engine = WorkflowEngine(db_session)

    result = await engine.execute(workflow_id=1, initial_data={"email": "a@b.c"})
    # {"run_id": 7, "status": "SUCCESS", "output": {...}, "error": None}
"""

import logging
import traceback
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
from sqlalchemy.orm import Session

from .context import Context, make_json_serializable
from .exceptions import GraphValidationError, PauseExecution, WorkflowError, is_retriable
from .executors import ExecutorDependencies, ExecutorRegistry, build_executor_registry, get_executor
from .graph import resolve_execution_order
from .logging_config import clear_run_id, set_run_id
from .nodes import NodeSpec
from .publisher import StatusPublisher, create_status_publisher
from .sandbox import CodeSandbox
from .step_runner import DatabaseStepRunner, StepRunner
from .store import ExecutionStore
from .templating import TemplateEngine
from ..models.execution import Execution, ExecutionStatus, StepStatus

logger = logging.getLogger(__name__)

StepRunnerFactory = Callable[[Execution], StepRunner]


class WorkflowEngine:
    """
    Run loop over a resolved workflow graph.

    Collaborators default to their production implementations; tests pass
    in-memory ones.
    """

    def __init__(
        self,
        db_session: Session,
        templates: Optional[TemplateEngine] = None,
        publisher: Optional[StatusPublisher] = None,
        step_runner_factory: Optional[StepRunnerFactory] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sandbox: Optional[CodeSandbox] = None,
        registry: Optional[ExecutorRegistry] = None,
    ):
        self.db_session = db_session
        self.store = ExecutionStore(db_session)
        self.templates = templates or TemplateEngine()
        self.publisher = publisher or create_status_publisher()
        self.step_runner_factory = step_runner_factory or (
            lambda execution: DatabaseStepRunner(db_session, execution.id)
        )
        self.registry = registry or build_executor_registry(ExecutorDependencies(
            templates=self.templates,
            store=self.store,
            http_transport=http_transport,
            sandbox=sandbox,
        ))

    async def execute(
        self,
        workflow_id: int,
        initial_data: Optional[Dict[str, Any]] = None,
        resume_from_node_id: Optional[str] = None,
        run_id: Optional[int] = None,
        trigger_node_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Execute (or resume) a workflow.

        Args:
            workflow_id: Workflow to run
            initial_data: Seed context; on resume, the merged context
            resume_from_node_id: Node the run paused at (resume only)
            run_id: Existing Execution to continue (resume or task retry)
            trigger_node_id: Start only from this trigger node

        Returns:
            {"run_id", "status", "output", "error"}

        Raises:
            WorkflowNotFound: workflow does not exist (no run is created)
            WorkflowError: run_id does not exist
        """
        workflow = self.store.load_workflow(workflow_id)
        execution = self._open_execution(workflow_id, initial_data, run_id, trigger_node_id)
        if execution.is_terminal:
            logger.warning(f"Execution {execution.id} is already {execution.status}, nothing to do")
            return self._result(execution)

        context = dict(initial_data or {})
        if run_id is not None:
            context = self._continued_context(execution, initial_data, resume_from_node_id)

        set_run_id(str(execution.id))
        try:
            return await self._run(
                execution,
                workflow.to_graph(),
                user_id=workflow.user_id,
                context=context,
                resume_from_node_id=resume_from_node_id,
                trigger_node_id=trigger_node_id or execution.trigger_node_id,
            )
        except Exception as e:
            # Persistence failures escape the loop; retriable ones leave the run
            # RUNNING for a retry with the same run_id
            if is_retriable(e):
                logger.warning(f"Execution {execution.id} interrupted, left {execution.status} for retry: {e}")
            else:
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(f"Execution {execution.id} aborted: {message}")
                self.store.mark_failed(execution, message, traceback.format_exc())
            raise
        finally:
            clear_run_id()

    def create_run(
        self,
        workflow_id: int,
        initial_data: Optional[Dict[str, Any]] = None,
        trigger_node_id: Optional[str] = None,
    ) -> Execution:
        """
        Create the Execution record up front so every retry of the task
        continues the same run (and its memoised steps).

        Raises:
            WorkflowNotFound: workflow does not exist
        """
        self.store.load_workflow(workflow_id)
        return self.store.create_execution(workflow_id, initial_data, trigger_node_id)

    def _continued_context(
        self,
        execution: Execution,
        initial_data: Optional[Dict[str, Any]],
        resume_from_node_id: Optional[str],
    ) -> Context:
        """Context saved by the last node this run completed, else the seed."""
        after_order = 0
        if resume_from_node_id is not None:
            paused_step = self.store.latest_step(execution.id, resume_from_node_id)
            after_order = paused_step.order if paused_step is not None else 0

        saved = self.store.latest_context(execution.id, after_order=after_order)
        if saved is not None:
            return saved
        if initial_data is not None:
            return dict(initial_data)
        return dict(execution.initial_data or {})

    def _open_execution(
        self,
        workflow_id: int,
        initial_data: Optional[Dict[str, Any]],
        run_id: Optional[int],
        trigger_node_id: Optional[str],
    ) -> Execution:
        if run_id is None:
            return self.store.create_execution(workflow_id, initial_data, trigger_node_id)

        execution = self.store.get_execution(run_id)
        if execution is None:
            raise WorkflowError(f"Execution {run_id} not found", retry_allowed=False)
        if not execution.is_terminal:
            self.store.mark_running(execution)
            logger.info(f"Continuing Execution {execution.id}")
        return execution

    async def _run(
        self,
        execution: Execution,
        graph,
        user_id: Optional[str],
        context: Context,
        resume_from_node_id: Optional[str],
        trigger_node_id: Optional[str],
    ) -> Dict[str, Any]:
        try:
            order = resolve_execution_order(graph.nodes, graph.connections, trigger_node_id)
            skip = self._skipped_node_ids(execution, order, resume_from_node_id)
        except GraphValidationError as e:
            logger.error(f"Workflow {execution.workflow_id} failed validation: {e.message}")
            self.store.mark_failed(execution, e.message, traceback.format_exc())
            return self._result(execution)

        logger.info(
            f"Executing {len(order) - len(skip)} of {len(order)} nodes: "
            f"{' -> '.join(n.id for n in order if n.id not in skip)}"
        )
        step_runner = self.step_runner_factory(execution)

        for node in order:
            if node.id in skip:
                continue

            step = self.store.start_step(execution.id, node, context)
            try:
                executor = get_executor(self.registry, node.type)
                context = await executor.execute(
                    node.data,
                    node.id,
                    context,
                    step_runner,
                    self.publisher,
                    user_id=user_id,
                    run_id=execution.id,
                )
            except PauseExecution as pause:
                self.store.finish_step(step, StepStatus.PAUSED, output={"approvalId": pause.approval_id})
                self.store.mark_paused(execution)
                logger.info(f"Execution {execution.id} paused at node {node.id}")
                return self._result(execution)
            except Exception as e:
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(f"Node {node.id} ({node.type}) failed: {message}", exc_info=True)
                self.store.finish_step(step, StepStatus.FAILED, error=message)
                self.store.mark_failed(execution, message, traceback.format_exc())
                return self._result(execution)

            self.store.finish_step(step, StepStatus.SUCCESS, output=context)
            logger.debug(f"Node {node.id} ({node.type}) completed")

        self.store.mark_success(execution, context)
        logger.info(f"Execution {execution.id} completed successfully")
        return self._result(execution)

    def _skipped_node_ids(
        self,
        execution: Execution,
        order: List[NodeSpec],
        resume_from_node_id: Optional[str],
    ) -> Set[str]:
        skip = set(self.store.completed_node_ids(execution.id))
        if resume_from_node_id is None:
            return skip

        ids = [n.id for n in order]
        if resume_from_node_id not in ids:
            raise GraphValidationError(f"Resume node {resume_from_node_id} is not part of the execution order")
        skip.update(ids[: ids.index(resume_from_node_id) + 1])
        return skip

    @staticmethod
    def _result(execution: Execution) -> Dict[str, Any]:
        return {
            "run_id": execution.id,
            "status": execution.status,
            "output": make_json_serializable(execution.output) if execution.status == ExecutionStatus.SUCCESS.value else None,
            "error": execution.error,
        }
