"""
Unit Tests for the exception hierarchy and retry classification
"""

import pytest

from chainly.core.exceptions import (
    ChainlyException,
    CodeExecutionError,
    CredentialsError,
    DatabaseError,
    GraphValidationError,
    NodeConfigurationError,
    NonRetriableNodeError,
    PauseExecution,
    SandboxTimeoutError,
    TransientNodeError,
    UnknownNodeType,
    is_retriable,
)


@pytest.mark.unit
def test_node_configuration_error_message():
    error = NodeConfigurationError("HTTP Request", "Endpoint is required", node_id="n1")

    assert error.message == "HTTP Request Node: Endpoint is required"
    assert str(error) == error.message
    assert error.node_id == "n1"


@pytest.mark.unit
def test_unknown_node_type_message():
    assert UnknownNodeType("FAX").message == "No executor found for node type: FAX"


@pytest.mark.unit
@pytest.mark.parametrize("error, expected", [
    (TransientNodeError("rate limited", status_code=429), True),
    (SandboxTimeoutError("slow", timeout_seconds=30), True),
    (DatabaseError("connection reset"), True),
    (NonRetriableNodeError("bad key", status_code=401), False),
    (NodeConfigurationError("Email", "To is required"), False),
    (CodeExecutionError("NameError"), False),
    (GraphValidationError("bad graph"), False),
    (CredentialsError("missing"), False),
    (ConnectionError("reset by peer"), True),
    (PauseExecution("approval-1"), False),
])
def test_is_retriable(error, expected):
    assert is_retriable(error) is expected


@pytest.mark.unit
def test_pause_is_not_a_chainly_error():
    pause = PauseExecution("approval-1", node_id="review")

    assert not isinstance(pause, ChainlyException)
    assert pause.approval_id == "approval-1"
    assert pause.node_id == "review"
