"""
Redis Store - Redis backend for mastery and mistake-pattern documents.

Key Structure:
    mastery:{student_id}  -> String (JSON mastery document)
    mistakes:{student_id} -> String (JSON mistake-pattern document)

Connection and command failures surface as StorageUnavailable, and values
that are not UTF-8 as DataCorruption, so callers degrade to "no data yet"
instead of erroring.
"""

from typing import List, Optional

import redis

from analytics.config import Settings, get_settings
from analytics.storage import DataCorruption, KeyValueStore, StorageUnavailable


class RedisStore(KeyValueStore):
    def __init__(self, client: Optional[redis.Redis] = None, settings: Optional[Settings] = None):
        """Connect to Redis using environment settings unless a client is given."""
        if client is None:
            settings = settings or get_settings()
            client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                password=settings.redis_password,
                db=settings.redis_db,
                decode_responses=True  # Return strings instead of bytes
            )
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except UnicodeDecodeError as e:
            raise DataCorruption(f"GET {key}: value is not UTF-8: {e}") from e
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"GET {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"SET {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"DEL {key}: {e}") from e

    def keys(self, prefix: str) -> List[str]:
        """All keys starting with prefix, via SCAN so large keyspaces don't block."""
        try:
            return sorted(self.client.scan_iter(match=f"{prefix}*"))
        except redis.exceptions.RedisError as e:
            raise StorageUnavailable(f"SCAN {prefix}*: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.exceptions.RedisError:
            return False
