"""
Custom Exceptions for Chainly

This module defines custom exception types for better error handling and retry logic.

Exception Hierarchy:
- ChainlyException (base)
  - WorkflowError
    - GraphValidationError (don't retry)
      - NoTriggerFound
      - NoReachableConnections
      - CyclicDependency
      - WorkflowNotFound
    - UnknownNodeType (don't retry)
  - NodeError
    - NodeConfigurationError (don't retry)
    - NonRetriableNodeError (don't retry)
    - TransientNodeError (retry)
    - CodeExecutionError (don't retry)
    - SandboxError (retry with circuit breaker)
      - SandboxTimeoutError (retry)
  - TemplateSyntaxError (don't retry)
  - ApprovalError (don't retry)
    - ApprovalNotFound
    - ApprovalNotPending
  - CredentialsError (don't retry)
  - DatabaseError (retry)

PauseExecution is NOT part of the hierarchy: it is a control-flow signal
raised by the human approval node and caught by the run loop.
"""

from typing import Optional


class ChainlyException(Exception):
    """Base exception for all Chainly errors"""

    def __init__(self, message: str, retry_allowed: bool = True):
        super().__init__(message)
        self.message = message
        self.retry_allowed = retry_allowed


# ============================================================================
# WORKFLOW ERRORS
# ============================================================================

class WorkflowError(ChainlyException):
    """Base class for workflow-related errors"""
    pass


class GraphValidationError(WorkflowError):
    """
    Workflow structure is invalid (e.g., cycles, no trigger, disconnected nodes).
    Should NOT be retried - fix the workflow definition.
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=False)


class NoTriggerFound(GraphValidationError):
    """No usable trigger node in the workflow."""


class NoReachableConnections(GraphValidationError):
    """Several nodes are reachable from the trigger but none are connected."""


class CyclicDependency(GraphValidationError):
    """Reachable nodes form a cycle."""

    def __init__(self, message: str = "Cyclic dependency detected in workflow"):
        super().__init__(message)


class WorkflowNotFound(GraphValidationError):
    def __init__(self, workflow_id: int):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class UnknownNodeType(WorkflowError):
    """
    No executor registered for a node type.
    Programmer error - never retried.
    """

    def __init__(self, node_type: str):
        super().__init__(f"No executor found for node type: {node_type}", retry_allowed=False)
        self.node_type = node_type


# ============================================================================
# NODE ERRORS
# ============================================================================

class NodeError(ChainlyException):
    """Base class for errors raised inside a node executor"""

    def __init__(self, message: str, retry_allowed: bool = True, node_id: Optional[str] = None):
        super().__init__(message, retry_allowed=retry_allowed)
        self.node_id = node_id


class NodeConfigurationError(NodeError):
    """
    A node is missing a required field or has an invalid value.
    Should NOT be retried - fix the node configuration.

    Message format: "<Label> Node: <message>"
    """

    def __init__(self, node_label: str, message: str, node_id: Optional[str] = None):
        super().__init__(f"{node_label} Node: {message}", retry_allowed=False, node_id=node_id)
        self.node_label = node_label


class NonRetriableNodeError(NodeError):
    """
    External call failed for a reason retrying cannot fix (bad API key, 4xx).
    """

    def __init__(self, message: str, node_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, retry_allowed=False, node_id=node_id)
        self.status_code = status_code


class TransientNodeError(NodeError):
    """
    External call failed for a retriable reason (rate limit, 5xx, network).
    Left to the step runner's retry policy.
    """

    def __init__(self, message: str, node_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, retry_allowed=True, node_id=node_id)
        self.status_code = status_code


class CodeExecutionError(NodeError):
    """
    User code raised inside the sandbox (syntax error, runtime error).
    Should NOT be retried - fix the code.
    """

    def __init__(self, message: str, code: Optional[str] = None, error_details: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.code = code
        self.error_details = error_details


class SandboxError(NodeError):
    """
    E2B sandbox error (sandbox crashed, could not be created).
    Should be retried with circuit breaker.
    """

    def __init__(self, message: str, sandbox_id: Optional[str] = None):
        super().__init__(message, retry_allowed=True)
        self.sandbox_id = sandbox_id


class SandboxTimeoutError(SandboxError):
    def __init__(self, message: str, timeout_seconds: Optional[int] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


# ============================================================================
# TEMPLATE ERRORS
# ============================================================================

class TemplateSyntaxError(ChainlyException):
    """
    Template or expression is malformed.
    Carries the offending fragment for diagnosis.
    """

    def __init__(self, message: str, fragment: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.fragment = fragment


# ============================================================================
# APPROVAL ERRORS
# ============================================================================

class ApprovalError(ChainlyException):
    """Base class for approval lifecycle errors"""

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=False)


class ApprovalNotFound(ApprovalError):
    def __init__(self, approval_id: str):
        super().__init__(f"Approval {approval_id} not found")
        self.approval_id = approval_id


class ApprovalNotPending(ApprovalError):
    def __init__(self, approval_id: str, status: str):
        super().__init__(f"Approval {approval_id} is not pending (status: {status})")
        self.approval_id = approval_id
        self.status = status


# ============================================================================
# CREDENTIALS ERRORS
# ============================================================================

class CredentialsError(ChainlyException):
    """
    Credential not found or not owned by the workflow's user.
    Should NOT be retried - fix the credentials.
    """

    def __init__(self, message: str, credential_id: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.credential_id = credential_id


# ============================================================================
# DATABASE ERRORS
# ============================================================================

class DatabaseError(ChainlyException):
    """
    Database connection or query error.
    Should be retried (transient failures).
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=True)


# ============================================================================
# CONTROL FLOW
# ============================================================================

class PauseExecution(Exception):
    """
    Raised by the human approval node to suspend the run.

    The run loop catches it, leaves the run PAUSED and returns normally.
    """

    def __init__(self, approval_id: str, node_id: Optional[str] = None):
        super().__init__(f"Execution paused waiting for approval {approval_id}")
        self.approval_id = approval_id
        self.node_id = node_id


def is_retriable(exc: BaseException) -> bool:
    """
    Decide whether an error is worth retrying.

    Chainly errors carry their own flag; the pause signal never is.
    Anything else (network errors, unexpected bugs in third-party clients)
    is treated as transient.
    """
    if isinstance(exc, PauseExecution):
        return False
    if isinstance(exc, ChainlyException):
        return exc.retry_allowed
    return True
