"""
Integration Tests for the REST API

The database dependency is overridden with the test session and the run
dispatcher with a Mock, so no Celery worker is involved.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock

from chainly.api.main import app, get_db, get_dispatch, get_publisher
from chainly.core.nodes import NodeType
from chainly.models.approval import Approval


@pytest.fixture
def dispatch():
    return Mock(return_value="task-1")


@pytest.fixture
def client(db_session, dispatch, publisher):
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_dispatch] = lambda: dispatch
    app.dependency_overrides[get_publisher] = lambda: publisher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def webhook_workflow(make_workflow):
    return make_workflow(
        nodes=[
            ("hook", NodeType.WEBHOOK_TRIGGER, {"secret": "s3cret", "variableName": "order"}),
            ("store", NodeType.SET, {"fields": [{"key": "id", "value": "{{order.body.id}}"}]}),
        ],
        connections=[("hook", "store")],
    )


@pytest.fixture
async def paused_run(engine, approval_workflow, simple_context, db_session):
    result = await engine.execute(approval_workflow.id, initial_data=simple_context)
    approval = db_session.query(Approval).filter_by(execution_id=result["run_id"]).one()
    return result["run_id"], approval


# ============================================================================
# HEALTH
# ============================================================================

@pytest.mark.integration
def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


# ============================================================================
# EXECUTION
# ============================================================================

@pytest.mark.integration
def test_execute_queues_run(client, dispatch, approval_workflow):
    response = client.post(
        f"/workflows/{approval_workflow.id}/execute",
        json={"initial_data": {"order": {"total": 10}}},
    )

    assert response.status_code == 202
    assert response.json() == {
        "task_id": "task-1",
        "status": "queued",
        "workflow_id": approval_workflow.id,
        "message": "Workflow queued for execution",
    }
    dispatch.assert_called_once_with(
        workflow_id=approval_workflow.id,
        initial_data={"order": {"total": 10}},
        trigger_node_id=None,
    )


@pytest.mark.integration
def test_execute_unknown_workflow(client, dispatch):
    response = client.post("/workflows/999/execute", json={})

    assert response.status_code == 404
    assert response.json() == {"error": "Workflow 999 not found", "status_code": 404}
    dispatch.assert_not_called()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_get_execution_and_steps(client, paused_run):
    run_id, approval = paused_run

    execution = client.get(f"/executions/{run_id}")
    steps = client.get(f"/executions/{run_id}/steps")

    assert execution.status_code == 200
    assert execution.json()["status"] == "PAUSED"
    assert steps.status_code == 200
    body = steps.json()
    assert body["total"] == 3
    assert [s["node_id"] for s in body["steps"]] == ["trigger", "prepare", "review"]
    assert body["steps"][2]["output"] == {"approvalId": approval.id}


@pytest.mark.integration
def test_get_unknown_execution(client):
    assert client.get("/executions/404").status_code == 404
    assert client.get("/executions/404/steps").status_code == 404


# ============================================================================
# APPROVALS
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_list_and_get_approvals(client, paused_run):
    _, approval = paused_run

    listed = client.get("/approvals", headers={"X-User-Id": "user-1"})
    other = client.get("/approvals", headers={"X-User-Id": "someone-else"})
    single = client.get(f"/approvals/{approval.id}", headers={"X-User-Id": "user-1"})

    assert listed.json()["total"] == 1
    assert listed.json()["approvals"][0]["message"] == "Approve order of 150?"
    assert other.json()["total"] == 0
    assert single.status_code == 200
    assert single.json()["status"] == "PENDING"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_approve_endpoint_dispatches_resume(client, dispatch, paused_run, approval_workflow):
    run_id, approval = paused_run

    response = client.post(
        f"/approvals/{approval.id}/approve",
        json={"response": {"note": "fine"}},
        headers={"X-User-Id": "user-1"},
    )

    assert response.status_code == 200
    dispatch.assert_called_once()
    kwargs = dispatch.call_args.kwargs
    assert kwargs["workflow_id"] == approval_workflow.id
    assert kwargs["run_id"] == run_id
    assert kwargs["resume_from_node_id"] == "review"
    assert kwargs["initial_data"]["approval"]["status"] == "approved"
    assert kwargs["initial_data"]["data"] == {"total": 150}

    again = client.post(f"/approvals/{approval.id}/approve", json={}, headers={"X-User-Id": "user-1"})
    assert again.status_code == 400
    assert "is not pending" in again.json()["error"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reject_endpoint(client, dispatch, paused_run):
    run_id, approval = paused_run

    response = client.post(f"/approvals/{approval.id}/reject", json={"reason": "No budget"})
    execution = client.get(f"/executions/{run_id}")

    assert response.status_code == 200
    dispatch.assert_not_called()
    assert execution.json()["status"] == "FAILED"
    assert execution.json()["error"] == "No budget"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_modify_endpoint(client, dispatch, paused_run):
    _, approval = paused_run

    response = client.post(f"/approvals/{approval.id}/modify", json={"modified_context": {"discount": 10}})

    assert response.status_code == 200
    assert dispatch.call_args.kwargs["initial_data"]["discount"] == 10


@pytest.mark.integration
def test_unknown_approval_is_404(client):
    response = client.post("/approvals/missing/reject", json={})

    assert response.status_code == 404
    assert response.json()["error"] == "Approval missing not found"


# ============================================================================
# WEBHOOKS
# ============================================================================

@pytest.mark.integration
def test_webhook_with_valid_secret(client, dispatch, webhook_workflow):
    response = client.post(
        f"/webhooks/{webhook_workflow.id}?nodeId=hook&source=shop",
        json={"id": 42},
        headers={"x-chainly-secret": "s3cret"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "task_id": "task-1"}

    kwargs = dispatch.call_args.kwargs
    assert kwargs["workflow_id"] == webhook_workflow.id
    assert kwargs["trigger_node_id"] == "hook"
    payload = kwargs["initial_data"]["order"]
    assert payload["body"] == {"id": 42}
    assert payload["query"] == {"nodeId": "hook", "source": "shop"}
    assert payload["nodeId"] == "hook"
    assert "x-chainly-secret" not in payload["headers"]


@pytest.mark.integration
@pytest.mark.parametrize("headers", [{}, {"x-chainly-secret": "wrong"}])
def test_webhook_rejects_bad_secret(client, dispatch, webhook_workflow, headers):
    response = client.post(f"/webhooks/{webhook_workflow.id}?nodeId=hook", json={}, headers=headers)

    assert response.status_code == 401
    dispatch.assert_not_called()


@pytest.mark.integration
def test_webhook_rejects_invalid_json(client, webhook_workflow):
    response = client.post(
        f"/webhooks/{webhook_workflow.id}?nodeId=hook",
        content=b"not json",
        headers={"x-chainly-secret": "s3cret", "content-type": "application/json"},
    )

    assert response.status_code == 400


@pytest.mark.integration
def test_webhook_node_checks(client, make_workflow, webhook_workflow):
    unsecured = make_workflow(
        nodes=[("open-hook", NodeType.WEBHOOK_TRIGGER, {}), ("manual", NodeType.MANUAL_TRIGGER, {})],
    )

    assert client.post(f"/webhooks/{webhook_workflow.id}?nodeId=missing", json={}).status_code == 404
    assert client.post(f"/webhooks/{unsecured.id}?nodeId=hook", json={}).status_code == 404
    assert client.post(f"/webhooks/{unsecured.id}?nodeId=manual", json={}).status_code == 400
    assert client.post(f"/webhooks/{unsecured.id}?nodeId=open-hook", json={}).status_code == 400
