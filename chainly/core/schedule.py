"""
Schedule checker

Called once a minute (Celery beat). Scans every SCHEDULE_TRIGGER node,
decides whether it is due and, if so, starts its workflow from that
trigger and records ``lastExecution`` in the node's data.

Modes (node data ``scheduleMode``):
- cron: 5-field expression in ``cronExpression`` (minute hour day month weekday)
- interval: every ``intervalValue`` ``intervalUnit`` (minutes|hours|days)
- datetime: once, within a minute after ``datetime``
"""

import croniter
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .nodes import NodeType
from .store import ExecutionStore

logger = logging.getLogger(__name__)

INTERVAL_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}
DATETIME_WINDOW = timedelta(seconds=60)


def matches_cron(expression: str, now: datetime) -> bool:
    """
    True when ``now`` matches the 5-field cron ``expression``.

    Supports lists, ranges, steps (``5/15``), month and day names
    (``MON-FRI``) and both 0 and 7 for Sunday. Malformed expressions never
    match.
    """
    expression = (expression or "").strip()
    if len(expression.split()) != 5 or not croniter.croniter.is_valid(expression):
        logger.warning(f"Invalid cron expression: {expression!r}")
        return False
    return croniter.croniter.match(expression, now)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Invalid datetime in schedule: {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def should_fire(data: Dict[str, Any], now: datetime) -> bool:
    """Decide whether a schedule node with configuration ``data`` is due at ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    mode = data.get("scheduleMode") or "cron"
    last_execution = _parse_datetime(data.get("lastExecution"))

    if mode == "cron":
        if not data.get("cronExpression") or not matches_cron(data["cronExpression"], now):
            return False
        # Already fired in this minute
        return last_execution is None or last_execution.replace(second=0, microsecond=0) != now.replace(
            second=0, microsecond=0
        )

    if mode == "interval":
        unit = INTERVAL_UNITS.get(data.get("intervalUnit"))
        try:
            value = float(data.get("intervalValue") or 0)
        except (TypeError, ValueError):
            return False
        if unit is None or value <= 0:
            return False
        return last_execution is None or now >= last_execution + unit * value

    if mode == "datetime":
        scheduled = _parse_datetime(data.get("datetime"))
        if scheduled is None:
            return False
        return (
            scheduled <= now < scheduled + DATETIME_WINDOW
            and (last_execution is None or last_execution < scheduled)
        )

    logger.warning(f"Unknown schedule mode: {mode!r}")
    return False


def check_schedules(
    db_session: Session,
    dispatch: Callable[..., Any],
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Start every due schedule trigger.

    Args:
        db_session: Database session
        dispatch: Called as ``dispatch(workflow_id=..., trigger_node_id=...)``
        now: Current time (default: utcnow)

    Returns:
        Ids of the nodes that fired
    """
    now = now or datetime.now(timezone.utc)
    store = ExecutionStore(db_session)
    fired = []

    for node in store.list_nodes_by_type(NodeType.SCHEDULE_TRIGGER.value):
        data = dict(node.data or {})
        if not should_fire(data, now):
            continue

        logger.info(f"Schedule node {node.id} fired, starting workflow {node.workflow_id}")
        dispatch(workflow_id=node.workflow_id, trigger_node_id=node.id)

        data["lastExecution"] = now.isoformat().replace("+00:00", "Z")
        store.update_node_data(node.id, data)
        fired.append(node.id)

    return fired
