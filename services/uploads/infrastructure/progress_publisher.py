"""Publishing upload progress updates."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from services.uploads.application.interfaces import ProgressPublisher
from services.uploads.config import UploadConfig

LOGGER = logging.getLogger(__name__)


class LoggingProgressPublisher(ProgressPublisher):
    def publish(
        self,
        session_id: str,
        status: str,
        *,
        progress: float | None = None,
        message: str | None = None,
    ) -> None:
        LOGGER.info(
            {
                "event": "upload_progress",
                "session_id": session_id,
                "status": status,
                "progress": progress,
                "message": message,
            }
        )


class RedisProgressPublisher(ProgressPublisher):
    """Keeps the latest status in a hash and broadcasts it on a channel."""

    def __init__(self, client: Redis, *, ttl_seconds: int = 3600) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"upload:{session_id}:progress"

    def publish(
        self,
        session_id: str,
        status: str,
        *,
        progress: float | None = None,
        message: str | None = None,
    ) -> None:
        key = self._key(session_id)
        status_data = {"status": status}
        if message:
            status_data["message"] = message
        if progress is not None:
            status_data["progress"] = f"{progress:.2f}"

        payload: dict[str, Any] = {
            "type": "upload_progress",
            "sessionId": session_id,
            "status": status,
            "message": message,
            "progress": progress,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._redis.hset(key, mapping=status_data)
            self._redis.expire(key, self._ttl)
            self._redis.publish(key, json.dumps(payload))
        except RedisError as exc:
            LOGGER.error("Failed to publish progress for %s: %s", session_id, exc)


def create_progress_publisher(config: UploadConfig) -> ProgressPublisher:
    if not config.publish_progress:
        return LoggingProgressPublisher()
    client = Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        decode_responses=True,
    )
    return RedisProgressPublisher(client)
