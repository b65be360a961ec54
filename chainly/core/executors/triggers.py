"""
Trigger executors

Triggers start a run. Their payload (webhook body, form answers, ...) is
already in the seed context, so most of them pass the context through.
The schedule trigger records when it fired.
"""

from datetime import datetime, timezone

from ..context import Context, with_variable
from ..nodes import NodeType
from .base import NodeCall, NodeExecutor, PassThroughExecutor


class InitialExecutor(PassThroughExecutor):
    """Placeholder node of a freshly created workflow."""

    node_type = NodeType.INITIAL
    label = "Initial"


class ManualTriggerExecutor(PassThroughExecutor):
    node_type = NodeType.MANUAL_TRIGGER
    label = "Manual Trigger"


class WebhookTriggerExecutor(PassThroughExecutor):
    node_type = NodeType.WEBHOOK_TRIGGER
    label = "Webhook Trigger"


class GoogleFormTriggerExecutor(PassThroughExecutor):
    node_type = NodeType.GOOGLE_FORM_TRIGGER
    label = "Google Form Trigger"


class GithubTriggerExecutor(PassThroughExecutor):
    node_type = NodeType.GITHUB_TRIGGER
    label = "GitHub Trigger"


class ScheduleTriggerExecutor(NodeExecutor):
    node_type = NodeType.SCHEDULE_TRIGGER
    label = "Schedule Trigger"

    async def run(self, call: NodeCall) -> Context:
        variable_name = call.config.get("variableName") or "schedule"

        def fired_at():
            now = datetime.now(timezone.utc)
            return {
                "triggeredAt": now.isoformat().replace("+00:00", "Z"),
                "timestamp": int(now.timestamp() * 1000),
                "date": now.strftime("%Y-%m-%d"),
                "time": now.strftime("%H:%M:%S"),
            }

        # Memoised so a replay reports the original firing time
        schedule = await call.step.run(self.step_name("schedule-trigger", call), fired_at)
        return with_variable(call.context, variable_name, schedule)
