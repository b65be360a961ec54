"""
Node Status Publisher

Executors announce ``{nodeId, status}`` events (loading, success, error) on a
per-node-type channel so editors and dashboards can light up nodes while a
run progresses.

Publication is fire-and-forget: a transport failure is logged and never
fails the run.

Implementations:
- RedisStatusPublisher: JSON messages over Redis pub/sub
- LoggingStatusPublisher: log lines only (default without REDIS_URL)
- InMemoryStatusPublisher: records events (tests)
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

LOADING = "loading"
SUCCESS = "success"
ERROR = "error"


class StatusPublisher(ABC):
    """Base class for status publishers."""

    @abstractmethod
    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        """Send one event. May raise; callers go through publish_status."""
        pass

    async def publish_status(self, channel: str, node_id: str, status: str) -> None:
        """Publish a node status, swallowing and logging transport errors."""
        try:
            await self.publish(channel, {"nodeId": node_id, "status": status})
        except Exception as e:
            logger.warning(f"Failed to publish status '{status}' for node {node_id} on {channel}: {e}")


class RedisStatusPublisher(StatusPublisher):
    """
    Redis pub/sub publisher.

    Environment Variables:
        REDIS_URL: Redis connection URL
        STATUS_CHANNEL_PREFIX: prefix for channel names (default: "chainly:status:")
    """

    def __init__(self, redis_url: Optional[str] = None, prefix: Optional[str] = None):
        self.redis_url = redis_url or os.getenv("REDIS_URL")
        if not self.redis_url:
            raise ValueError("REDIS_URL environment variable not set. Required for status publishing.")
        self.prefix = prefix if prefix is not None else os.getenv("STATUS_CHANNEL_PREFIX", "chainly:status:")
        self.client = aioredis.from_url(self.redis_url)

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        await self.client.publish(f"{self.prefix}{channel}", json.dumps({"topic": "status", **payload}))

    async def close(self) -> None:
        await self.client.aclose()


class LoggingStatusPublisher(StatusPublisher):
    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"[{channel}] node {payload.get('nodeId')} -> {payload.get('status')}")


class InMemoryStatusPublisher(StatusPublisher):
    """Keeps every event as ``(channel, payload)``."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        self.events.append((channel, dict(payload)))

    def statuses(self, node_id: str) -> List[str]:
        return [payload["status"] for _, payload in self.events if payload.get("nodeId") == node_id]


def create_status_publisher() -> StatusPublisher:
    """Redis publisher when REDIS_URL is configured, logging publisher otherwise."""
    if os.getenv("REDIS_URL"):
        return RedisStatusPublisher()
    logger.info("REDIS_URL not set, node status events will only be logged")
    return LoggingStatusPublisher()
