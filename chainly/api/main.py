"""
FastAPI main application
REST API endpoints for Chainly
"""

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import hmac
import os
import logging
import uuid

from ..database import get_db_session
from ..models.workflow import Node, Workflow
from ..core.approvals import ApprovalService
from ..core.exceptions import ApprovalNotFound, ApprovalNotPending, ChainlyException
from ..core.logging_config import setup_logging, set_request_id, clear_request_id
from ..core.nodes import NodeType
from ..core.publisher import StatusPublisher, create_status_publisher
from ..core.store import ExecutionStore
from .schemas import (
    ExecutionRequest, ExecutionQueuedResponse, ExecutionResponse,
    ExecutionStepListResponse, ApprovalResponse, ApprovalListResponse,
    ApproveRequest, RejectRequest, ModifyRequest, MessageResponse, WebhookResponse
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = os.getenv("WEBHOOK_SECRET_HEADER", "x-chainly-secret").lower()

# ============================================================================
# FASTAPI APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="Chainly API",
    description="""
# Chainly

Runs workflow graphs (triggers, AI calls, HTTP calls, branching and human
approval gates) node by node, carrying a growing context between nodes.

## Run Flow

1. **POST /workflows/{id}/execute** - Queue a run (HTTP 202)
2. **GET /executions/{id}** - Run status and final output
3. **GET /executions/{id}/steps** - One step per executed node
4. **GET /approvals** - Runs paused at a human approval node
5. **POST /approvals/{id}/approve|reject|modify** - Resume or stop the run
    """,
    version="0.1.0",
    openapi_tags=[
        {"name": "health", "description": "Health checks"},
        {"name": "execution", "description": "Queue workflow runs"},
        {"name": "executions", "description": "Run status and steps"},
        {"name": "approvals", "description": "Human approval decisions"},
        {"name": "webhooks", "description": "Webhook triggers"},
    ]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_db():
    """Dependency for database session"""
    db = get_db_session()
    try:
        yield db
    finally:
        db.close()


def get_dispatch() -> Callable[..., Any]:
    """Dependency for the run dispatcher (Celery)"""
    from ..workers.tasks import dispatch_workflow
    return dispatch_workflow


def get_publisher() -> StatusPublisher:
    return create_status_publisher()


def get_approval_service(
    db: Session = Depends(get_db),
    dispatch: Callable[..., Any] = Depends(get_dispatch),
    publisher: StatusPublisher = Depends(get_publisher),
) -> ApprovalService:
    return ApprovalService(db, dispatch, publisher=publisher)


def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Optional[str]:
    """Caller's user id, used to scope approvals (not authentication)"""
    return x_user_id


# ============================================================================
# MIDDLEWARE - Request ID Tracking
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Middleware to add request ID to all requests.

    - Generates UUID for each request
    - Sets request ID in logging context
    - Adds X-Request-ID header to response
    - Clears request ID after response
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    set_request_id(request_id)

    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(f"Response {response.status_code}", extra={"status_code": response.status_code})
        return response

    except Exception as e:
        logger.exception("Unhandled exception in request", extra={"error": str(e)})
        raise

    finally:
        clear_request_id()


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler for better error responses"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(ApprovalNotFound)
async def approval_not_found_handler(request, exc):
    return JSONResponse(status_code=404, content={"error": exc.message, "status_code": 404})


@app.exception_handler(ApprovalNotPending)
async def approval_not_pending_handler(request, exc):
    return JSONResponse(status_code=400, content={"error": exc.message, "status_code": 400})


@app.exception_handler(ChainlyException)
async def chainly_exception_handler(request, exc):
    logger.error(f"Request failed: {exc.message}")
    return JSONResponse(status_code=500, content={"error": exc.message, "status_code": 500})


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/health", tags=["health"], summary="Health check (lightweight)")
def health_check():
    """Lightweight health check - just confirms API is alive"""
    return {
        "status": "healthy",
        "service": "Chainly API",
        "version": "0.1.0"
    }


# ============================================================================
# EXECUTION
# ============================================================================

@app.post(
    "/workflows/{workflow_id}/execute",
    status_code=202,
    response_model=ExecutionQueuedResponse,
    tags=["execution"],
    summary="Queue a workflow run",
)
def execute_workflow(
    workflow_id: int,
    execution_request: ExecutionRequest,
    db: Session = Depends(get_db),
    dispatch: Callable[..., Any] = Depends(get_dispatch),
):
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise HTTPException(status_code=404, detail=f"Workflow {workflow_id} not found")

    task_id = dispatch(
        workflow_id=workflow_id,
        initial_data=execution_request.initial_data or {},
        trigger_node_id=execution_request.trigger_node_id,
    )

    return {
        "task_id": str(task_id),
        "status": "queued",
        "workflow_id": workflow_id,
        "message": "Workflow queued for execution",
    }


@app.get(
    "/executions/{execution_id}",
    response_model=ExecutionResponse,
    tags=["executions"],
    summary="Get run status",
)
def get_execution(execution_id: int, db: Session = Depends(get_db)):
    execution = ExecutionStore(db).get_execution(execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return execution


@app.get(
    "/executions/{execution_id}/steps",
    response_model=ExecutionStepListResponse,
    tags=["executions"],
    summary="List run steps",
)
def get_execution_steps(execution_id: int, db: Session = Depends(get_db)):
    store = ExecutionStore(db)
    if not store.get_execution(execution_id):
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")

    steps = store.list_steps(execution_id)
    return {"execution_id": execution_id, "steps": steps, "total": len(steps)}


# ============================================================================
# APPROVALS
# ============================================================================

@app.get("/approvals", response_model=ApprovalListResponse, tags=["approvals"], summary="List pending approvals")
def list_approvals(
    service: ApprovalService = Depends(get_approval_service),
    user_id: Optional[str] = Depends(get_user_id),
):
    approvals = service.list_pending(user_id)
    return {"approvals": approvals, "total": len(approvals)}


@app.get("/approvals/{approval_id}", response_model=ApprovalResponse, tags=["approvals"], summary="Get an approval")
def get_approval(
    approval_id: str,
    service: ApprovalService = Depends(get_approval_service),
    user_id: Optional[str] = Depends(get_user_id),
):
    return service.get(approval_id, user_id)


@app.post("/approvals/{approval_id}/approve", response_model=MessageResponse, tags=["approvals"])
async def approve(
    approval_id: str,
    request: ApproveRequest,
    service: ApprovalService = Depends(get_approval_service),
    user_id: Optional[str] = Depends(get_user_id),
):
    await service.approve(approval_id, request.response, user_id=user_id)
    return {"message": f"Approval {approval_id} approved, run resumed"}


@app.post("/approvals/{approval_id}/reject", response_model=MessageResponse, tags=["approvals"])
async def reject(
    approval_id: str,
    request: RejectRequest,
    service: ApprovalService = Depends(get_approval_service),
    user_id: Optional[str] = Depends(get_user_id),
):
    await service.reject(approval_id, request.reason, user_id=user_id)
    return {"message": f"Approval {approval_id} rejected, run stopped"}


@app.post("/approvals/{approval_id}/modify", response_model=MessageResponse, tags=["approvals"])
async def modify(
    approval_id: str,
    request: ModifyRequest,
    service: ApprovalService = Depends(get_approval_service),
    user_id: Optional[str] = Depends(get_user_id),
):
    await service.modify(approval_id, request.modified_context, user_id=user_id)
    return {"message": f"Approval {approval_id} modified, run resumed"}


# ============================================================================
# WEBHOOKS
# ============================================================================

@app.post("/webhooks/{workflow_id}", response_model=WebhookResponse, tags=["webhooks"], summary="Webhook trigger")
async def webhook_trigger(
    workflow_id: int,
    request: Request,
    node_id: str = Query(..., alias="nodeId"),
    db: Session = Depends(get_db),
    dispatch: Callable[..., Any] = Depends(get_dispatch),
):
    """
    Start a run from a WEBHOOK_TRIGGER node.

    The secret header must match the node's ``secret``. The payload is
    seeded under the node's variable name (default ``webhook``).
    """
    node = db.query(Node).filter(Node.id == node_id).first()
    if node is None or node.workflow_id != workflow_id:
        raise HTTPException(status_code=404, detail="Node not found for this workflow")
    if node.type != NodeType.WEBHOOK_TRIGGER.value:
        raise HTTPException(status_code=400, detail="Node is not a webhook trigger")

    data = node.data or {}
    stored_secret = data.get("secret")
    if not isinstance(stored_secret, str) or not stored_secret:
        raise HTTPException(status_code=400, detail="Webhook secret is not configured")

    provided_secret = request.headers.get(WEBHOOK_SECRET_HEADER) or ""
    if not hmac.compare_digest(provided_secret.encode(), stored_secret.encode()):
        raise HTTPException(status_code=401, detail=f"Invalid {WEBHOOK_SECRET_HEADER} header")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")

    variable_name = data.get("variableName") or "webhook"
    headers = {k: v for k, v in request.headers.items() if k.lower() != WEBHOOK_SECRET_HEADER}

    task_id = dispatch(
        workflow_id=workflow_id,
        trigger_node_id=node_id,
        initial_data={
            variable_name: {
                "body": body,
                "headers": headers,
                "query": dict(request.query_params),
                "nodeId": node_id,
                "receivedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            }
        },
    )
    logger.info(f"Webhook node {node_id} queued workflow {workflow_id}")
    return {"success": True, "task_id": str(task_id) if task_id is not None else None}
