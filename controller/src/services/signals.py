"""
Worker heartbeats and cancel requests, kept in Redis.

The reconciler reads heartbeats to tell a slow build from a dead worker.
Cancel flags let an API process reach a coordinator running elsewhere.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import redis

from controller.src.config import get_settings

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "paastel:heartbeat:{kind}:{id}"
CANCEL_KEY = "paastel:cancel:{kind}:{id}"

class Signals:
    def __init__(self, client: redis.Redis, ttl: int = 3600):
        self.client = client
        self.ttl = ttl

    def beat(self, kind: str, entity_id: int):
        now = datetime.now(timezone.utc).isoformat()
        self.client.set(HEARTBEAT_KEY.format(kind=kind, id=entity_id), now, ex=self.ttl)

    def last_beat(self, kind: str, entity_id: int) -> Optional[datetime]:
        value = self.client.get(HEARTBEAT_KEY.format(kind=kind, id=entity_id))
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return datetime.fromisoformat(value)

    def clear(self, kind: str, entity_id: int):
        self.client.delete(
            HEARTBEAT_KEY.format(kind=kind, id=entity_id),
            CANCEL_KEY.format(kind=kind, id=entity_id),
        )

    def request_cancel(self, kind: str, entity_id: int):
        self.client.set(CANCEL_KEY.format(kind=kind, id=entity_id), "1", ex=self.ttl)

    def cancel_requested(self, kind: str, entity_id: int) -> bool:
        return bool(self.client.exists(CANCEL_KEY.format(kind=kind, id=entity_id)))

    @contextmanager
    def heartbeat(self, kind: str, entity_id: int, interval: float):
        """Beat every `interval` seconds for as long as the block runs."""
        stop = threading.Event()

        def pump():
            while not stop.is_set():
                try:
                    self.beat(kind, entity_id)
                except redis.RedisError as e:
                    logger.warning(f"Heartbeat for {kind} {entity_id} failed: {e}")
                stop.wait(interval)

        thread = threading.Thread(
            target=pump, name=f"heartbeat-{kind}-{entity_id}", daemon=True
        )
        thread.start()
        try:
            yield
        finally:
            stop.set()
            thread.join(timeout=interval)

@lru_cache()
def get_signals() -> Signals:
    settings = get_settings()
    client = redis.from_url(settings.redis_url, decode_responses=True)
    return Signals(client, ttl=max(settings.orphan_timeout * 2, 60))
