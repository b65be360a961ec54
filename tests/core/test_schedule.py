"""
Unit Tests for the schedule checker

Tests cover:
- Cron matching (lists, ranges, steps, day names, Sunday as 0 or 7)
- Cron, interval and one-off datetime modes
- check_schedules dispatching and lastExecution bookkeeping
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from chainly.core.nodes import NodeType
from chainly.core.schedule import check_schedules, matches_cron, should_fire
from chainly.models.workflow import Node

UTC = timezone.utc

# 2026-01-05 is a Monday
MONDAY_9AM = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
SUNDAY_9AM = datetime(2026, 1, 4, 9, 0, tzinfo=UTC)
THURSDAY_9AM = datetime(2026, 1, 8, 9, 0, tzinfo=UTC)


# ============================================================================
# CRON MATCHING
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("expression, now, expected", [
    ("* * * * *", MONDAY_9AM, True),
    ("0 9 * * *", MONDAY_9AM, True),
    ("30 9 * * *", MONDAY_9AM, False),
    ("0 9 * * 1-5", MONDAY_9AM, True),
    ("0 9 * * 1-5", SUNDAY_9AM, False),
    ("0 9 * * 0", SUNDAY_9AM, True),
    ("*/15 * * * *", MONDAY_9AM.replace(minute=45), True),
    ("*/15 * * * *", MONDAY_9AM.replace(minute=50), False),
    ("0 8,9,10 5 1 *", MONDAY_9AM, True),
    ("0-30/10 9 * * *", MONDAY_9AM.replace(minute=20), True),
    ("0-30/10 9 * * *", MONDAY_9AM.replace(minute=25), False),
    ("5/15 * * * *", MONDAY_9AM.replace(minute=20), True),
    ("5/15 * * * *", MONDAY_9AM.replace(minute=15), False),
    ("* * * * MON-FRI", THURSDAY_9AM, True),
    ("* * * * MON-FRI", SUNDAY_9AM, False),
    ("0 9 * * 7", SUNDAY_9AM, True),
    ("0 9 * JAN *", MONDAY_9AM, True),
    ("* * * * *", MONDAY_9AM.replace(second=40), True),
])
def test_matches_cron(expression, now, expected):
    assert matches_cron(expression, now) is expected


@pytest.mark.unit
@pytest.mark.parametrize("expression", ["", "* * * *", "a b c d e", "61 * * * *", "0 9 * * 1 2026"])
def test_malformed_cron_never_matches(expression):
    assert matches_cron(expression, MONDAY_9AM) is False


# ============================================================================
# SHOULD FIRE
# ============================================================================

@pytest.mark.unit
def test_cron_mode_is_default():
    assert should_fire({"cronExpression": "0 9 * * *"}, MONDAY_9AM) is True


@pytest.mark.unit
def test_cron_mode_fires_once_per_minute():
    data = {"scheduleMode": "cron", "cronExpression": "0 9 * * *", "lastExecution": "2026-01-05T09:00:12Z"}

    assert should_fire(data, MONDAY_9AM.replace(second=40)) is False


@pytest.mark.unit
def test_cron_mode_without_expression():
    assert should_fire({"scheduleMode": "cron"}, MONDAY_9AM) is False


@pytest.mark.unit
def test_interval_mode():
    data = {
        "scheduleMode": "interval",
        "intervalValue": 2,
        "intervalUnit": "hours",
        "lastExecution": "2026-01-05T08:00:00Z",
    }

    assert should_fire(data, datetime(2026, 1, 5, 9, 59, tzinfo=UTC)) is False
    assert should_fire(data, datetime(2026, 1, 5, 10, 0, tzinfo=UTC)) is True


@pytest.mark.unit
def test_interval_mode_fires_first_time():
    assert should_fire({"scheduleMode": "interval", "intervalValue": "5", "intervalUnit": "minutes"}, MONDAY_9AM)


@pytest.mark.unit
@pytest.mark.parametrize("data", [
    {"scheduleMode": "interval", "intervalValue": 0, "intervalUnit": "minutes"},
    {"scheduleMode": "interval", "intervalValue": 5, "intervalUnit": "weeks"},
    {"scheduleMode": "interval", "intervalValue": "often", "intervalUnit": "minutes"},
])
def test_interval_mode_invalid_configuration(data):
    assert should_fire(data, MONDAY_9AM) is False


@pytest.mark.unit
def test_datetime_mode_fires_within_window():
    data = {"scheduleMode": "datetime", "datetime": "2026-01-05T09:00:00Z"}

    assert should_fire(data, MONDAY_9AM.replace(second=30)) is True
    assert should_fire(data, MONDAY_9AM.replace(minute=1)) is False
    assert should_fire(data, datetime(2026, 1, 5, 8, 59, tzinfo=UTC)) is False


@pytest.mark.unit
def test_datetime_mode_fires_only_once():
    data = {
        "scheduleMode": "datetime",
        "datetime": "2026-01-05T09:00:00Z",
        "lastExecution": "2026-01-05T09:00:05Z",
    }

    assert should_fire(data, MONDAY_9AM.replace(second=30)) is False


@pytest.mark.unit
def test_naive_datetimes_are_utc():
    data = {"scheduleMode": "datetime", "datetime": "2026-01-05T09:00:00"}

    assert should_fire(data, datetime(2026, 1, 5, 9, 0, 10)) is True


@pytest.mark.unit
def test_unknown_mode():
    assert should_fire({"scheduleMode": "lunar"}, MONDAY_9AM) is False


# ============================================================================
# CHECK SCHEDULES
# ============================================================================

@pytest.fixture
def scheduled_workflow(make_workflow):
    return make_workflow(
        nodes=[
            ("sched", NodeType.SCHEDULE_TRIGGER, {"scheduleMode": "cron", "cronExpression": "0 9 * * 1-5"}),
            ("notify", NodeType.SET, {"fields": [{"key": "ok", "value": "true"}]}),
        ],
        connections=[("sched", "notify")],
    )


@pytest.mark.unit
def test_check_schedules_dispatches_due_triggers(db_session, scheduled_workflow):
    dispatch = Mock()

    fired = check_schedules(db_session, dispatch, now=MONDAY_9AM)

    assert fired == ["sched"]
    dispatch.assert_called_once_with(workflow_id=scheduled_workflow.id, trigger_node_id="sched")
    node = db_session.query(Node).filter_by(id="sched").one()
    assert node.data["lastExecution"] == "2026-01-05T09:00:00Z"
    assert node.data["cronExpression"] == "0 9 * * 1-5"


@pytest.mark.unit
def test_check_schedules_does_not_fire_twice_in_a_minute(db_session, scheduled_workflow):
    dispatch = Mock()

    check_schedules(db_session, dispatch, now=MONDAY_9AM)
    fired = check_schedules(db_session, dispatch, now=MONDAY_9AM.replace(second=30))

    assert fired == []
    assert dispatch.call_count == 1


@pytest.mark.unit
def test_check_schedules_skips_triggers_not_due(db_session, scheduled_workflow):
    dispatch = Mock()

    assert check_schedules(db_session, dispatch, now=SUNDAY_9AM) == []
    dispatch.assert_not_called()
