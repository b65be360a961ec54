"""
Celery Tasks for Chainly

Main Tasks:
- execute_workflow_task: start or resume a workflow run
- check_schedules_task: fire due schedule triggers (Celery beat, every minute)

Task Design Principles:
- Idempotent: the run is created before executing and every retry
  continues it, replaying its memoised steps
- Resilient: retried only when the failure is retriable; invalid graphs,
  bad configuration and rejected approvals are final
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .celery_app import celery_app
from ..database import get_db
from ..core.engine import WorkflowEngine
from ..core.exceptions import is_retriable
from ..core.schedule import check_schedules
from ..core.templating import TemplateEngine

logger = logging.getLogger(__name__)

# One stateless template engine per worker process, shared by every run
templates = TemplateEngine()


@celery_app.task(
    bind=True,
    name="execute_workflow_task",
    max_retries=3,
    default_retry_delay=60,
)
def execute_workflow_task(
    self,
    workflow_id: int,
    initial_data: Optional[Dict[str, Any]] = None,
    resume_from_node_id: Optional[str] = None,
    run_id: Optional[int] = None,
    trigger_node_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Execute or resume a workflow.

    Args:
        workflow_id: ID of workflow to execute
        initial_data: Seed context (merged context on resume)
        resume_from_node_id: Approval node the run paused at
        run_id: Existing Execution to resume
        trigger_node_id: Start only from this trigger node

    Returns:
        {"run_id", "status", "output", "error"}
    """
    task_id = self.request.id
    action = f"Resuming run {run_id} of" if run_id else "Starting"
    logger.info(f"Task {task_id}: {action} workflow {workflow_id}")
    logger.info(f"Task {task_id}: Retry attempt: {self.request.retries}/{self.max_retries}")

    try:
        with get_db() as db:
            engine = WorkflowEngine(db, templates=templates)
            if run_id is None:
                run_id = engine.create_run(workflow_id, initial_data, trigger_node_id).id
            result = asyncio.run(
                engine.execute(
                    workflow_id,
                    initial_data=initial_data,
                    resume_from_node_id=resume_from_node_id,
                    run_id=run_id,
                    trigger_node_id=trigger_node_id,
                )
            )
    except Exception as e:
        if not is_retriable(e):
            logger.error(f"Task {task_id}: Workflow {workflow_id} failed permanently: {e}")
            raise
        logger.warning(f"Task {task_id}: Retrying in {self.default_retry_delay}s after: {e}")
        # Same run_id: memoised steps replay
        raise self.retry(
            exc=e,
            kwargs={
                "workflow_id": workflow_id,
                "initial_data": initial_data,
                "resume_from_node_id": resume_from_node_id,
                "run_id": run_id,
                "trigger_node_id": trigger_node_id,
            },
            countdown=self.default_retry_delay * (2 ** self.request.retries),
        )

    logger.info(f"Task {task_id}: Run {result['run_id']} finished with status {result['status']}")
    return result


def dispatch_workflow(**kwargs) -> str:
    """Enqueue a run; used as the dispatch of the approval service and the schedule checker."""
    return execute_workflow_task.delay(**kwargs).id


@celery_app.task(name="check_schedules_task")
def check_schedules_task() -> List[str]:
    with get_db() as db:
        fired = check_schedules(db, dispatch_workflow)
    if fired:
        logger.info(f"Fired {len(fired)} schedule trigger(s): {fired}")
    return fired
