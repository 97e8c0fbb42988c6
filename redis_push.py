"""
Dashboard push channel over Redis pub/sub

Publishes fire-and-forget notifications (new orders, connection status) for the
operator dashboard. The latest connection status is also kept under a plain key
so a dashboard that connects later can read the current state. After a failed
connect the channel stays quiet for REDIS_RETRY_SECONDS instead of paying the
socket timeouts on every event.

Environment Variables:
- REDIS_URL: Redis connection URL (push channel disabled when empty)
- DASHBOARD_CHANNEL: pub/sub channel name
"""

import json
import logging
import time
from datetime import datetime
from typing import Dict, Any, Optional
import redis

from utils import REDIS_URL, DASHBOARD_CHANNEL

logger = logging.getLogger(__name__)

STATUS_KEY = "dashboard:connection_status"

# Seconds to wait after a failed connect before trying again
REDIS_RETRY_SECONDS = 30.0

# Redis connection (initialized on first use)
_redis_client = None
_last_failure: Optional[float] = None


def get_redis_client():
    """Get or create Redis client instance."""
    global _redis_client, _last_failure

    if _redis_client is None:
        if not REDIS_URL:
            logger.warning("REDIS_URL not set - dashboard push disabled")
            return None
        if _last_failure is not None and time.monotonic() - _last_failure < REDIS_RETRY_SECONDS:
            return None

        try:
            _redis_client = redis.Redis.from_url(
                REDIS_URL,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5
            )
            _redis_client.ping()
            _last_failure = None
            logger.info("✅ Redis connection established")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis, next try in {REDIS_RETRY_SECONDS:.0f}s: {e}")
            _redis_client = None
            _last_failure = time.monotonic()

    return _redis_client


def reset_redis_client() -> None:
    """Drop a client whose connection failed; the next use reconnects after the cool-off."""
    global _redis_client, _last_failure
    _redis_client = None
    _last_failure = time.monotonic()


def serialize_event(event: str, payload: Dict[str, Any]) -> str:
    """Serialize an event envelope, converting datetime values to ISO strings."""
    data = {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in payload.items()
    }
    return json.dumps({"event": event, "data": data}, ensure_ascii=False)


class DashboardNotifier:
    """Push channel to connected dashboard observers. No acknowledgement is expected."""

    def __init__(self, client_factory=get_redis_client, channel: str = DASHBOARD_CHANNEL, on_failure=reset_redis_client):
        self._client_factory = client_factory
        self._on_failure = on_failure
        self.channel = channel

    def emit(self, event: str, payload: Dict[str, Any]) -> bool:
        client = self._client_factory()
        if not client:
            return False

        message = serialize_event(event, payload)
        try:
            client.publish(self.channel, message)
            if event == "connection_status":
                client.set(STATUS_KEY, message)
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event} to dashboard: {e}")
            self._on_failure()
            return False

    def last_status(self) -> Optional[Dict[str, Any]]:
        """Connection status most recently pushed, for observers that join late."""
        client = self._client_factory()
        if not client:
            return None

        try:
            data = client.get(STATUS_KEY)
        except redis.RedisError as e:
            logger.error(f"Failed to read connection status from Redis: {e}")
            self._on_failure()
            return None
        return json.loads(data)["data"] if data else None
