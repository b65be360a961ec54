"""
Code Sandbox

Runs the Python snippet of a CODE node in an isolated E2B cloud sandbox.

The snippet is the body of a function that receives ``context`` (the
current execution context, read-only by convention) and may ``return`` a
JSON-serializable value:

    total = sum(item["price"] for item in context["order"]["items"])
    return {"total": total}

Errors are classified the same way for every caller:
- CodeExecutionError: the snippet raised or returned non-JSON (not retried)
- SandboxTimeoutError / SandboxError: the sandbox itself failed (retried,
  guarded by the shared circuit breaker)
"""

import asyncio
import json
import logging
import os
import textwrap
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .circuit_breaker import sandbox_circuit_breaker
from .exceptions import CodeExecutionError, SandboxError, SandboxTimeoutError

logger = logging.getLogger(__name__)

RESULT_MARKER = "__CHAINLY_RESULT__"


class CodeSandbox(ABC):
    """Executes a code snippet against a context and returns its result."""

    @abstractmethod
    async def run(self, code: str, context: Dict[str, Any], timeout: int = 30) -> Any:
        pass


def build_program(code: str, context: Dict[str, Any]) -> str:
    """Wrap the snippet so its return value is printed as a marked JSON line."""
    context_json = json.dumps(context, default=str)
    body = textwrap.indent(textwrap.dedent(code).strip() or "pass", "    ")
    return (
        "import json\n"
        f"context = json.loads({context_json!r})\n"
        "\n"
        "def __chainly_main(context):\n"
        f"{body}\n"
        "\n"
        "__result = __chainly_main(context)\n"
        f"print({RESULT_MARKER!r} + json.dumps(__result))\n"
    )


def parse_result(stdout: str) -> Any:
    """Find the marked result line in stdout (last one wins)."""
    for line in reversed((stdout or "").splitlines()):
        if line.startswith(RESULT_MARKER):
            try:
                return json.loads(line[len(RESULT_MARKER):])
            except json.JSONDecodeError as e:
                raise CodeExecutionError(f"Code result is not valid JSON: {e}", error_details=line)
    raise CodeExecutionError("Code finished without producing a result", error_details=stdout)


class E2BSandbox(CodeSandbox):
    """
    E2B-backed sandbox.

    Environment Variables:
        E2B_API_KEY: E2B API key (required)
        E2B_TEMPLATE_ID: custom template with pre-installed packages (optional)
    """

    def __init__(self, api_key: Optional[str] = None, template: Optional[str] = None):
        self.api_key = api_key or os.getenv("E2B_API_KEY")
        self.template = template or os.getenv("E2B_TEMPLATE_ID")

        if not self.api_key:
            raise ValueError(
                "E2B API key required. Set E2B_API_KEY environment variable or pass api_key parameter."
            )

    async def run(self, code: str, context: Dict[str, Any], timeout: int = 30) -> Any:
        if sandbox_circuit_breaker.is_open():
            raise SandboxError(f"Sandbox circuit breaker is OPEN: {sandbox_circuit_breaker.get_status()}")

        program = build_program(code, context)
        try:
            # The E2B SDK is synchronous
            stdout = await asyncio.to_thread(self._run_sync, program, timeout)
        except CodeExecutionError:
            # The sandbox worked, the user's code did not
            sandbox_circuit_breaker.record_success()
            raise
        except SandboxError:
            sandbox_circuit_breaker.record_failure()
            raise

        sandbox_circuit_breaker.record_success()
        return parse_result(stdout)

    def _run_sync(self, program: str, timeout: int) -> str:
        from e2b import Sandbox

        create_kwargs = {"api_key": self.api_key, "timeout": 120}
        if self.template:
            create_kwargs["template"] = self.template

        sandbox = None
        try:
            sandbox = Sandbox.create(**create_kwargs)
            sandbox_id = getattr(sandbox, "sandbox_id", None) or getattr(sandbox, "id", "unknown")
            code_file = f"/tmp/chainly_code_{sandbox_id}.py"
            sandbox.files.write(code_file, program)

            logger.debug(f"Executing code in sandbox {sandbox_id} (timeout: {timeout}s)")
            execution = sandbox.commands.run(f"python3 {code_file}", timeout=timeout)

            if execution.exit_code != 0:
                stderr = execution.stderr or "Unknown error"
                raise CodeExecutionError(f"Code execution failed: {stderr}", error_details=stderr)
            return execution.stdout or ""

        except (CodeExecutionError, SandboxError):
            raise
        except TimeoutError as e:
            raise SandboxTimeoutError(f"Sandbox timeout after {timeout}s: {e}", timeout_seconds=timeout) from e
        except Exception as e:
            # e2b raises CommandExitException for non-zero exits in some SDK versions
            stderr = getattr(e, "stderr", None)
            if stderr is not None and getattr(e, "exit_code", None):
                raise CodeExecutionError(f"Code execution failed: {stderr}", error_details=stderr) from e
            if "timeout" in str(e).lower():
                raise SandboxTimeoutError(f"Sandbox timeout: {e}", timeout_seconds=timeout) from e
            raise SandboxError(f"Sandbox error: {e}") from e
        finally:
            if sandbox is not None:
                try:
                    sandbox.kill()
                except Exception as e:
                    logger.warning(f"Failed to kill sandbox: {e}")
