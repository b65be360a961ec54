"""
Pytest fixtures for Chainly tests

This module provides shared fixtures for all tests:
- Database session fixtures
- Workflow builders (nodes + connections persisted like the editor saves them)
- In-memory step runner and status publisher
- Engine and approval service wired to the test database
"""

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence, Tuple
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chainly.models import Base
from chainly.models.workflow import Connection, Node, Workflow
from chainly.core.approvals import ApprovalService
from chainly.core.engine import WorkflowEngine
from chainly.core.executors import ExecutorDependencies
from chainly.core.nodes import NodeType
from chainly.core.publisher import InMemoryStatusPublisher
from chainly.core.step_runner import DatabaseStepRunner, InMemoryStepRunner
from chainly.core.templating import TemplateEngine


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_session():
    """
    Create an in-memory SQLite database for testing.
    Each test gets a fresh database that's torn down after the test.
    """
    # StaticPool keeps one connection so the API test client's threads see the same database
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        engine.dispose()


NodeDef = Tuple[str, str, Optional[Dict[str, Any]]]


@pytest.fixture
def make_workflow(db_session):
    """
    Persist a workflow from ``(id, type, data)`` node tuples and
    ``(from, to)`` connection pairs.
    """
    base_time = datetime(2026, 1, 1, 12, 0, 0)

    def _make(
        nodes: Sequence[NodeDef],
        connections: Sequence[Tuple[str, str]] = (),
        user_id: str = "user-1",
        name: str = "Test Workflow",
    ) -> Workflow:
        workflow = Workflow(name=name, user_id=user_id)
        db_session.add(workflow)
        db_session.flush()

        for i, (node_id, node_type, data) in enumerate(nodes):
            db_session.add(Node(
                id=node_id,
                workflow_id=workflow.id,
                name=node_id,
                type=node_type.value if isinstance(node_type, NodeType) else node_type,
                data=data or {},
                created_at=base_time + timedelta(seconds=i),
            ))
        db_session.flush()

        for source, target in connections:
            db_session.add(Connection(workflow_id=workflow.id, from_node_id=source, to_node_id=target))

        db_session.commit()
        db_session.refresh(workflow)
        return workflow

    return _make


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def templates():
    return TemplateEngine()


@pytest.fixture
def publisher():
    return InMemoryStatusPublisher()


@pytest.fixture
def step():
    return InMemoryStepRunner()


@pytest.fixture
def deps(templates):
    return ExecutorDependencies(templates=templates)


@pytest.fixture
def engine(db_session, templates, publisher):
    """WorkflowEngine with a database-backed step runner that never sleeps between retries."""
    return WorkflowEngine(
        db_session,
        templates=templates,
        publisher=publisher,
        step_runner_factory=lambda execution: DatabaseStepRunner(
            db_session, execution.id, max_attempts=1, backoff_seconds=0
        ),
    )


@pytest.fixture
def approval_service(db_session, engine, publisher):
    """Approval service resuming runs in-process through the engine."""
    return ApprovalService(db_session, dispatch=engine.execute, publisher=publisher)


# ============================================================================
# WORKFLOW DEFINITION FIXTURES
# ============================================================================

@pytest.fixture
def approval_workflow(make_workflow):
    """
    trigger -> prepare (SET) -> review (HUMAN_APPROVAL) -> finish (SET)
    """
    return make_workflow(
        nodes=[
            ("trigger", NodeType.MANUAL_TRIGGER, {}),
            ("prepare", NodeType.SET, {
                "variableName": "data",
                "fields": [{"key": "total", "value": "{{order.total}}"}],
            }),
            ("review", NodeType.HUMAN_APPROVAL, {
                "variableName": "approval",
                "message": "Approve order of {{data.total}}?",
            }),
            ("finish", NodeType.SET, {
                "variableName": "result",
                "fields": [
                    {"key": "decision", "value": "{{approval.status}}"},
                    {"key": "total", "value": "{{order.total}}"},
                ],
            }),
        ],
        connections=[("trigger", "prepare"), ("prepare", "review"), ("review", "finish")],
    )


@pytest.fixture
def simple_context():
    return {
        "order": {"id": 456, "total": 150, "paid": True, "items": [{"sku": "A"}, {"sku": "B"}]},
        "customer": {"email": "ana@example.com"},
    }

