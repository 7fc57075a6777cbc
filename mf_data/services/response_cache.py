import json
import logging
from typing import Any, Optional

import redis

from mf_data.core.config import Settings

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Redis-backed cache for raw provider JSON, keyed by request URL.

    Redis is an optimisation only: connection or serialisation problems
    are logged and treated as a miss.
    """

    KEY_PREFIX = "mfapi:"

    def __init__(self, redis_client: "redis.Redis", expire_seconds: int = 3600):
        self.redis_client = redis_client
        self.expire_seconds = expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["ResponseCache"]:
        if not settings.REDIS_URL:
            return None
        client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return cls(client, expire_seconds=settings.REDIS_EXPIRE_TIME)

    def get(self, key: str) -> Optional[Any]:
        try:
            cached = self.redis_client.get(self.KEY_PREFIX + key)
            if cached:
                return json.loads(cached)
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Cache read failed for {key}: {e}")
        return None

    def set(self, key: str, data: Any) -> None:
        try:
            self.redis_client.setex(self.KEY_PREFIX + key, self.expire_seconds, json.dumps(data, default=str))
        except (redis.RedisError, TypeError) as e:
            logger.warning(f"Cache write failed for {key}: {e}")
