"""
Control-flow and data executors

These nodes only read the context and annotate it:
- CONDITIONAL: boolean result of an expression
- SWITCH: which case an expression's value matched
- LOOP: materialises an array and its length
- SET: builds an object from key/value fields
- WAIT: sleeps through the step runner
- ERROR_HANDLER: exposes error metadata left in the context

Branching nodes do not stop downstream nodes from running; they record the
winning branch so later nodes can read it.
"""

import logging
from datetime import datetime, timezone

from ..context import Context, resolve_path, strip_delimiters, with_variable, without_key
from ..exceptions import TemplateSyntaxError
from ..nodes import NodeType
from .base import NodeCall, NodeExecutor

logger = logging.getLogger(__name__)

ERROR_HANDLER_INFO_KEY = "_errorHandlerInfo"

TIME_UNITS = {
    "seconds": "s",
    "minutes": "m",
    "hours": "h",
    "days": "d",
}


class ConditionalExecutor(NodeExecutor):
    node_type = NodeType.CONDITIONAL
    label = "Conditional"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "condition", "Condition is required")

    async def run(self, call: NodeCall) -> Context:
        condition = call.config["condition"]

        def evaluate():
            try:
                return bool(self.templates.evaluate(condition, call.context))
            except TemplateSyntaxError as e:
                raise self.config_error(call, f'Failed to evaluate condition "{condition}". {e.message}') from e

        passed = await call.step.run(self.step_name("evaluate-condition", call), evaluate)
        return with_variable(call.context, call.config["variableName"], {
            "result": passed,
            "condition": condition,
        })


class SwitchExecutor(NodeExecutor):
    node_type = NodeType.SWITCH
    label = "Switch"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "expression", "Expression is required")
        if not call.config.get("cases"):
            raise self.config_error(call, "At least one case is required")

    @staticmethod
    def _as_case_string(value) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    async def run(self, call: NodeCall) -> Context:
        expression = call.config["expression"]
        cases = call.config["cases"]
        has_default = call.config.get("hasDefault")
        has_default = True if has_default is None else bool(has_default)

        def evaluate():
            try:
                value = self.templates.evaluate(expression, call.context)
            except TemplateSyntaxError as e:
                raise self.config_error(call, f'Failed to evaluate expression "{expression}". {e.message}') from e

            value_str = self._as_case_string(value)
            matched_index = next(
                (i for i, case in enumerate(cases) if str(case.get("value")) == value_str),
                None,
            )
            if matched_index is not None:
                selected_output = f"case-{matched_index}"
            elif has_default:
                selected_output = "default"
            else:
                selected_output = None

            return {
                "value": value,
                "matchedCase": cases[matched_index].get("label") if matched_index is not None else None,
                "matchedIndex": matched_index,
                "isDefault": matched_index is None,
                "selectedOutput": selected_output,
            }

        outcome = await call.step.run(self.step_name("evaluate-switch", call), evaluate)
        return with_variable(call.context, call.config["variableName"], outcome)


class LoopExecutor(NodeExecutor):
    """
    Resolves ``arrayPath`` to a list and exposes it with its length.

    Items are not executed one by one; downstream nodes see the whole list.
    """

    node_type = NodeType.LOOP
    label = "Loop"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "arrayPath", "Array path is required")

    async def run(self, call: NodeCall) -> Context:
        array_path = call.config["arrayPath"]
        item_variable_name = call.config.get("itemVariableName") or "item"
        resolved_path = strip_delimiters(array_path)
        items = resolve_path(call.context, resolved_path)

        if not isinstance(items, list):
            keys = ", ".join(call.context.keys()) or "none"
            raise self.config_error(
                call,
                f'Path "{array_path}" (resolved: "{resolved_path}") does not resolve to an array. '
                f"Got: {type(items).__name__}. Available top-level keys: {keys}",
            )

        if not items:
            value = {"items": [], "count": 0, "results": []}
        else:
            value = {
                "items": items,
                "count": len(items),
                "_loopMetadata": {
                    "nodeId": call.node_id,
                    "itemVariableName": item_variable_name,
                    "arrayLength": len(items),
                },
            }
        return with_variable(call.context, call.config["variableName"], value)


class SetExecutor(NodeExecutor):
    node_type = NodeType.SET
    label = "Set"

    def validate(self, call: NodeCall) -> None:
        fields = call.config.get("fields") or []
        if not fields:
            raise self.config_error(call, "At least one field is required")
        for field in fields:
            if not field.get("key"):
                raise self.config_error(call, "Field key cannot be empty")

    async def run(self, call: NodeCall) -> Context:
        variable_name = call.config.get("variableName") or "data"

        def evaluate():
            evaluated = {}
            for field in call.config["fields"]:
                try:
                    evaluated[field["key"]] = self.templates.evaluate_value(field.get("value", ""), call.context)
                except TemplateSyntaxError as e:
                    raise self.config_error(call, f'Failed to evaluate field "{field["key"]}". {e.message}') from e
            return evaluated

        fields = await call.step.run(self.step_name("evaluate-fields", call), evaluate)
        return with_variable(call.context, variable_name, fields)


class WaitExecutor(NodeExecutor):
    """Suspends the run through the step runner's timed sleep. No approval involved."""

    node_type = NodeType.WAIT
    label = "Wait"

    def validate(self, call: NodeCall) -> None:
        unit = call.config.get("unit") or "seconds"
        if unit not in TIME_UNITS:
            raise self.config_error(call, f"Unsupported unit '{unit}'")
        try:
            duration = float(call.config.get("duration") or 5)
        except (TypeError, ValueError):
            raise self.config_error(call, "Duration must be a number")
        if duration < 0:
            raise self.config_error(call, "Duration cannot be negative")

    @staticmethod
    def format_duration(duration, unit: str) -> str:
        return f"{duration} {unit[:-1]}" if duration == 1 else f"{duration} {unit}"

    async def run(self, call: NodeCall) -> Context:
        duration = call.config.get("duration") or 5
        if isinstance(duration, str):
            duration = float(duration)
        if isinstance(duration, float) and duration.is_integer():
            duration = int(duration)
        unit = call.config.get("unit") or "seconds"

        await call.step.sleep(self.step_name("wait", call), f"{duration}{TIME_UNITS[unit]}")

        completed_at = await call.step.run(
            self.step_name("wait-completed", call),
            lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )
        return with_variable(call.context, "_lastWait", {
            "duration": duration,
            "unit": unit,
            "formatted": self.format_duration(duration, unit),
            "completedAt": completed_at,
        })


class ErrorHandlerExecutor(NodeExecutor):
    """
    Publishes error metadata left under ``_errorHandlerInfo`` as a regular
    variable and strips the internal key.

    The run loop stops at the first failing node and never writes
    ``_errorHandlerInfo`` itself, so inside a normal run this node reports
    ``hasError: False``. The key is only present when a caller seeds it in
    the initial data (for example a follow-up run started after a failure).
    """

    node_type = NodeType.ERROR_HANDLER
    label = "Error Handler"

    async def run(self, call: NodeCall) -> Context:
        variable_name = call.config.get("variableName") or "errorHandler"
        error_info = call.context.get(ERROR_HANDLER_INFO_KEY) or {
            "hasError": False,
            "error": None,
            "errorStack": None,
            "failedNodeId": None,
            "failedNodeIds": [],
        }
        return with_variable(without_key(call.context, ERROR_HANDLER_INFO_KEY), variable_name, error_info)
