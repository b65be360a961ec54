"""
Unit Tests for Step Runners

Tests cover:
- Memoisation by step name (in-memory and database-backed)
- Memo survives a new runner for the same execution
- Retry policy for transient vs non-retriable failures
- Durable sleeps
- Duration parsing
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from chainly.core.exceptions import NonRetriableNodeError, TransientNodeError
from chainly.core.step_runner import DatabaseStepRunner, InMemoryStepRunner, parse_duration
from chainly.models.execution import Execution, StepResult


class CountingFn:
    """Async callable that counts invocations and can fail a few times first."""

    def __init__(self, result=None, failures=()):
        self.calls = 0
        self.result = result if result is not None else {"ok": True}
        self.failures = list(failures)

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.fixture
def execution(db_session):
    execution = Execution(workflow_id=1, status="RUNNING", initial_data={})
    db_session.add(execution)
    db_session.commit()
    return execution


# ============================================================================
# DURATIONS
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("duration, seconds", [
    ("500ms", 0.5),
    ("5s", 5.0),
    ("2m", 120.0),
    ("1h", 3600.0),
    ("1d", 86400.0),
    (" 1.5 m ", 90.0),
    (10, 10.0),
])
def test_parse_duration(duration, seconds):
    assert parse_duration(duration) == seconds


@pytest.mark.unit
def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError, match="Invalid duration"):
        parse_duration("soon")


# ============================================================================
# IN-MEMORY RUNNER
# ============================================================================

@pytest.mark.unit
async def test_in_memory_runner_memoises_by_name():
    """Test a completed step name is never executed twice"""
    step = InMemoryStepRunner()
    fn = CountingFn({"status": 200})

    first = await step.run("http-request-n1", fn)
    second = await step.run("http-request-n1", fn)

    assert first == second == {"status": 200}
    assert fn.calls == 1
    assert step.executed == ["http-request-n1"]


@pytest.mark.unit
async def test_in_memory_runner_returns_copies():
    step = InMemoryStepRunner()

    result = await step.run("s", CountingFn({"items": [1]}))
    result["items"].append(2)

    assert await step.run("s", CountingFn()) == {"items": [1]}


@pytest.mark.unit
async def test_in_memory_runner_accepts_sync_functions():
    step = InMemoryStepRunner()

    assert await step.run("sync", lambda: 41 + 1) == 42


@pytest.mark.unit
async def test_retries_transient_failures():
    step = InMemoryStepRunner(max_attempts=3, backoff_seconds=0)
    fn = CountingFn("done", failures=[TransientNodeError("503"), TransientNodeError("503")])

    assert await step.run("flaky", fn) == "done"
    assert fn.calls == 3


@pytest.mark.unit
async def test_gives_up_after_max_attempts():
    step = InMemoryStepRunner(max_attempts=2, backoff_seconds=0)
    fn = CountingFn(failures=[TransientNodeError("503")] * 3)

    with pytest.raises(TransientNodeError):
        await step.run("flaky", fn)

    assert fn.calls == 2
    assert "flaky" not in step.results


@pytest.mark.unit
async def test_does_not_retry_non_retriable_failures():
    step = InMemoryStepRunner(max_attempts=5, backoff_seconds=0)
    fn = CountingFn(failures=[NonRetriableNodeError("401 Unauthorized", status_code=401)])

    with pytest.raises(NonRetriableNodeError):
        await step.run("auth", fn)

    assert fn.calls == 1


@pytest.mark.unit
async def test_in_memory_sleep_is_recorded_once():
    step = InMemoryStepRunner()

    await step.sleep("wait-n1", "2m")
    await step.sleep("wait-n1", "2m")

    assert step.sleeps == [("wait-n1", 120.0)]


# ============================================================================
# DATABASE RUNNER
# ============================================================================

@pytest.mark.unit
async def test_database_runner_persists_result(db_session, execution):
    step = DatabaseStepRunner(db_session, execution.id, max_attempts=1, backoff_seconds=0)
    fn = CountingFn({"id": "msg-1"})

    assert await step.run("send-email-n1", fn) == {"id": "msg-1"}

    stored = db_session.query(StepResult).filter_by(execution_id=execution.id, name="send-email-n1").one()
    assert stored.output == {"id": "msg-1"}


@pytest.mark.unit
async def test_database_memo_survives_new_runner(db_session, execution):
    """Test a fresh runner for the same execution replays instead of re-running"""
    fn = CountingFn({"id": "msg-1"})

    await DatabaseStepRunner(db_session, execution.id, max_attempts=1).run("send-email-n1", fn)
    replayed = await DatabaseStepRunner(db_session, execution.id, max_attempts=1).run("send-email-n1", fn)

    assert replayed == {"id": "msg-1"}
    assert fn.calls == 1


@pytest.mark.unit
async def test_database_memo_is_scoped_to_execution(db_session, execution):
    other = Execution(workflow_id=1, status="RUNNING", initial_data={})
    db_session.add(other)
    db_session.commit()
    fn = CountingFn()

    await DatabaseStepRunner(db_session, execution.id, max_attempts=1).run("s", fn)
    await DatabaseStepRunner(db_session, other.id, max_attempts=1).run("s", fn)

    assert fn.calls == 2


@pytest.mark.unit
async def test_database_runner_failure_is_not_memoised(db_session, execution):
    step = DatabaseStepRunner(db_session, execution.id, max_attempts=1)
    failing = CountingFn(failures=[NonRetriableNodeError("boom")])

    with pytest.raises(NonRetriableNodeError):
        await step.run("s", failing)

    assert await step.run("s", CountingFn("second")) == "second"


@pytest.mark.unit
async def test_database_sleep_stores_wake_time(db_session, execution):
    step = DatabaseStepRunner(db_session, execution.id, max_attempts=1)

    with patch("chainly.core.step_runner.asyncio.sleep") as mock_sleep:
        await step.sleep("wait-n1", "5s")

    mock_sleep.assert_awaited_once()
    assert mock_sleep.await_args.args[0] == pytest.approx(5.0)
    stored = db_session.query(StepResult).filter_by(name="wait-n1").one()
    assert "wakeAt" in stored.output


@pytest.mark.unit
async def test_database_sleep_replay_after_deadline_returns_immediately(db_session, execution):
    past = (datetime.utcnow() - timedelta(minutes=1)).isoformat()
    db_session.add(StepResult(execution_id=execution.id, name="wait-n1", output={"wakeAt": past}))
    db_session.commit()
    step = DatabaseStepRunner(db_session, execution.id, max_attempts=1)

    with patch("chainly.core.step_runner.asyncio.sleep") as mock_sleep:
        await step.sleep("wait-n1", "1h")

    mock_sleep.assert_not_called()
