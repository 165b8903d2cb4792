from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from .storage import Storage

logger = logging.getLogger('animalitos')


def now_ms() -> int:
    return int(time.time() * 1000)


class TimedCache:
    """Per-lottery JSON object with a freshness window, stored as ``{timestamp, data}``."""

    def __init__(self, storage: Storage, namespace: str, ttl: int, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.namespace = namespace
        self.ttl_ms = ttl * 1000
        self.clock = clock

    def build_key(self, lottery_id: str) -> str:
        return f"{self.namespace}:{lottery_id}"

    def get(self, lottery_id: str) -> Optional[dict]:
        raw = self.storage.get(self.build_key(lottery_id))
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            timestamp = int(payload['timestamp'])
            data = payload['data']
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning('Discarding unreadable %s cache for %s: %s', self.namespace, lottery_id, exc)
            return None
        if not isinstance(data, dict):
            logger.warning('Discarding unreadable %s cache for %s: data is not an object', self.namespace, lottery_id)
            return None
        if self.clock() - timestamp > self.ttl_ms:
            return None
        return data

    def set(self, lottery_id: str, value: dict) -> None:
        payload = json.dumps({'timestamp': self.clock(), 'data': value}, default=str)
        self.storage.set(self.build_key(lottery_id), payload)
        logger.debug('Cached %s for %s', self.namespace, lottery_id)

    def get_or_set(self, lottery_id: str, factory: Callable[[], dict]) -> dict:
        cached = self.get(lottery_id)
        if cached is not None:
            return cached
        value = factory()
        self.set(lottery_id, value)
        return value

    def invalidate(self, lottery_id: str | None = None) -> None:
        if lottery_id is not None:
            self.storage.remove(self.build_key(lottery_id))
            return
        for key in self.storage.keys(f"{self.namespace}:"):
            self.storage.remove(key)
