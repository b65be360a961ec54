"""
Step Runner

Durable, replay-safe units of work. Executors wrap every side effect in
``await step.run(name, fn)``; a name that already completed returns the
stored result instead of calling ``fn`` again, so a crashed or resumed run
never repeats an email, an HTTP call or an LLM request.

Step names must be deterministic (derived from the node id and purpose,
e.g. ``"http-request-node_3"``).

Implementations:
- InMemoryStepRunner: dict-backed memo, used in tests and local runs
- DatabaseStepRunner: memo persisted in the ``step_results`` table

Example:
    step = DatabaseStepRunner(db_session, execution_id=42)
    result = await step.run("send-email-node_7", send_email)
    await step.sleep("wait-node_8", "5m")
"""

import asyncio
import copy
import inspect
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .context import make_json_serializable
from .exceptions import DatabaseError, is_retriable

logger = logging.getLogger(__name__)

StepFn = Callable[[], Union[Any, Awaitable[Any]]]

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(duration: Union[str, int, float]) -> float:
    """
    ``"5s"`` -> 5.0, ``"2m"`` -> 120.0, ``"1h"`` -> 3600.0, ``"1d"`` -> 86400.0

    Bare numbers are seconds.
    """
    if isinstance(duration, (int, float)):
        return float(duration)
    match = _DURATION.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")
    value, unit = match.groups()
    return float(value) * _UNIT_SECONDS[unit]


async def _call(fn: StepFn) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class StepRunner(ABC):
    """
    Base class for step runners.

    Subclasses provide memo storage; retry policy is shared.
    """

    def __init__(self, max_attempts: int = 1, backoff_seconds: float = 0.0):
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    @abstractmethod
    async def run(self, name: str, fn: StepFn) -> Any:
        """Run ``fn`` once per ``name``; replays return the memoised result."""
        pass

    @abstractmethod
    async def sleep(self, name: str, duration: Union[str, int, float]) -> None:
        """Suspend for ``duration``; a replayed sleep whose deadline passed returns immediately."""
        pass

    async def _run_with_retries(self, name: str, fn: StepFn) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await _call(fn)
            except Exception as e:
                if not is_retriable(e) or attempt >= self.max_attempts:
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Step '{name}' failed (attempt {attempt}/{self.max_attempts}), retrying in {delay:.1f}s: {e}"
                )
                if delay:
                    await asyncio.sleep(delay)


class InMemoryStepRunner(StepRunner):
    """
    Dict-backed step runner.

    ``executed`` lists the step names whose function actually ran, in order,
    and ``sleeps`` the (name, seconds) pairs requested.
    """

    def __init__(self, max_attempts: int = 1, backoff_seconds: float = 0.0, real_sleep: bool = False):
        super().__init__(max_attempts=max_attempts, backoff_seconds=backoff_seconds)
        self.real_sleep = real_sleep
        self.results: Dict[str, Any] = {}
        self.executed: List[str] = []
        self.sleeps: List[Tuple[str, float]] = []

    async def run(self, name: str, fn: StepFn) -> Any:
        if name in self.results:
            logger.debug(f"Step '{name}' replayed from memo")
            return copy.deepcopy(self.results[name])

        result = await self._run_with_retries(name, fn)
        self.results[name] = make_json_serializable(result)
        self.executed.append(name)
        return copy.deepcopy(self.results[name])

    async def sleep(self, name: str, duration: Union[str, int, float]) -> None:
        if name in self.results:
            return
        seconds = parse_duration(duration)
        self.sleeps.append((name, seconds))
        if self.real_sleep:
            await asyncio.sleep(seconds)
        self.results[name] = {"sleptSeconds": seconds}


class DatabaseStepRunner(StepRunner):
    """
    Step runner whose memo lives in the ``step_results`` table.

    Environment Variables:
        STEP_MAX_ATTEMPTS: attempts for retriable failures (default: 3)
        STEP_RETRY_BACKOFF: base backoff in seconds (default: 1)
    """

    def __init__(
        self,
        db_session: Session,
        execution_id: int,
        max_attempts: int = None,
        backoff_seconds: float = None,
    ):
        super().__init__(
            max_attempts=max_attempts if max_attempts is not None else int(os.getenv("STEP_MAX_ATTEMPTS", "3")),
            backoff_seconds=backoff_seconds if backoff_seconds is not None else float(os.getenv("STEP_RETRY_BACKOFF", "1")),
        )
        self.db_session = db_session
        self.execution_id = execution_id

    def _lookup(self, name: str):
        from ..models.execution import StepResult

        return (
            self.db_session.query(StepResult)
            .filter(StepResult.execution_id == self.execution_id, StepResult.name == name)
            .first()
        )

    def _store(self, name: str, output: Any) -> None:
        from ..models.execution import StepResult

        try:
            self.db_session.add(StepResult(execution_id=self.execution_id, name=name, output=output))
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            raise DatabaseError(f"Failed to store result of step '{name}': {e}") from e

    async def run(self, name: str, fn: StepFn) -> Any:
        memo = self._lookup(name)
        if memo is not None:
            logger.info(f"Step '{name}' replayed from memo")
            return copy.deepcopy(memo.output)

        result = make_json_serializable(await self._run_with_retries(name, fn))
        self._store(name, result)
        return copy.deepcopy(result)

    async def sleep(self, name: str, duration: Union[str, int, float]) -> None:
        memo = self._lookup(name)
        now = datetime.utcnow()

        if memo is not None:
            wake_at = datetime.fromisoformat(memo.output["wakeAt"])
            remaining = (wake_at - now).total_seconds()
        else:
            remaining = parse_duration(duration)
            wake_at = now + timedelta(seconds=remaining)
            self._store(name, {"wakeAt": wake_at.isoformat()})

        if remaining > 0:
            logger.info(f"Step '{name}' sleeping {remaining:.1f}s")
            await asyncio.sleep(remaining)
