"""
Celery Application Configuration for Chainly

Workflow runs, resumes and the schedule checker execute on Celery workers.

Architecture:
- Message Broker: Redis
- Result Backend: Redis
- Beat: check_schedules_task every SCHEDULE_CHECK_INTERVAL seconds (default 60)

Key Features:
- Retry only on retriable failures (see execute_workflow_task)
- Task timeout protection (10 minutes max)
- Result expiration (24 hours)
- JSON serialization
"""

import os
import logging
from celery import Celery
from celery.schedules import schedule
from kombu import Queue, Exchange
from ..core.logging_config import setup_logging

# Initialize structured logging for Celery workers
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "true").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise ValueError(
        "REDIS_URL environment variable not set. "
        "Required for Celery message broker and result backend."
    )

celery_app = Celery("chainly")

celery_app.conf.update(
    # ============================================================================
    # BROKER & BACKEND
    # ============================================================================
    broker_url=REDIS_URL,
    result_backend=REDIS_URL,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,

    # ============================================================================
    # SERIALIZATION
    # ============================================================================
    # Run contexts are JSON already
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    timezone="UTC",
    enable_utc=True,

    # ============================================================================
    # TASK EXECUTION
    # ============================================================================
    task_track_started=True,

    # Acknowledge tasks AFTER execution; a crashed worker's run is redelivered
    # and replays its memoised steps
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_time_limit=600,
    task_soft_time_limit=540,

    result_expires=86400,
    result_extended=True,

    # ============================================================================
    # TASK ROUTING
    # ============================================================================
    task_default_queue="workflows",
    task_default_exchange="workflows",
    task_default_routing_key="workflow.execute",
    task_queues=(
        Queue(
            "workflows",
            Exchange("workflows"),
            routing_key="workflow.execute",
            priority=5,
        ),
        Queue(
            "schedules",
            Exchange("workflows"),
            routing_key="workflow.schedule",
            priority=1,
        ),
    ),
    task_routes={
        "execute_workflow_task": {
            "queue": "workflows",
            "routing_key": "workflow.execute",
        },
        "check_schedules_task": {
            "queue": "schedules",
            "routing_key": "workflow.schedule",
        },
    },

    # ============================================================================
    # WORKER CONFIGURATION
    # ============================================================================
    worker_pool="prefork",
    worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "2")),
    worker_max_tasks_per_child=1000,
    worker_send_task_events=True,
    task_send_sent_event=True,
    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
)

# ============================================================================
# BEAT SCHEDULE
# ============================================================================
celery_app.conf.beat_schedule = {
    "check-schedules": {
        "task": "check_schedules_task",
        "schedule": schedule(run_every=float(os.getenv("SCHEDULE_CHECK_INTERVAL", "60"))),
    },
}

logger.info("Celery app configured successfully")
logger.info(f"Broker: {REDIS_URL.split('@')[1] if '@' in REDIS_URL else 'configured'}")

# This import MUST come AFTER celery_app is configured
from . import tasks  # noqa: F401, E402
