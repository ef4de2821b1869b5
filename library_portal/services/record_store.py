import json
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from library_portal.config.settings import settings
from library_portal.utils.errors import UpstreamError
from library_portal.utils.logging import get_logger

logger = get_logger()

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RecordStore(ABC):
    """Prefix-scannable key-value store holding JSON values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def scan_by_prefix(self, prefix: str) -> List[Any]: ...

    @abstractmethod
    async def write_batch(
        self, set_items: Dict[str, Any], delete_keys: Iterable[str] = ()
    ) -> None:
        """Apply all writes and deletes together or not at all."""

    async def set_many(self, items: Dict[str, Any]) -> None:
        await self.write_batch(items)

    async def delete_many(self, keys: Iterable[str]) -> None:
        await self.write_batch({}, keys)

    async def close(self) -> None:
        return None


class RedisRecordStore(RecordStore):
    """RecordStore backed by Redis; batches run as MULTI/EXEC pipelines."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_settings(cls) -> "RedisRecordStore":
        client = Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            decode_responses=True,
        )
        return cls(client)

    @staticmethod
    def _encode(value: Any) -> str:
        return json.dumps(value)

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        return json.loads(raw)

    async def get(self, key: str) -> Optional[Any]:
        try:
            return self._decode(await self.client.get(key))
        except RedisError as e:
            raise UpstreamError(f"Redis GET {key} failed: {e}", "RECORD_STORE_ERROR")

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.set(key, self._encode(value))
        except RedisError as e:
            raise UpstreamError(f"Redis SET {key} failed: {e}", "RECORD_STORE_ERROR")

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise UpstreamError(f"Redis DEL {key} failed: {e}", "RECORD_STORE_ERROR")

    async def scan_by_prefix(self, prefix: str) -> List[Any]:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            keys = [key async for key in self.client.scan_iter(match=pattern, count=500)]
            if not keys:
                return []
            raw_values = await self.client.mget(keys)
        except RedisError as e:
            raise UpstreamError(
                f"Redis SCAN {pattern} failed: {e}", "RECORD_STORE_ERROR"
            )

        # A key may vanish between SCAN and MGET
        return [self._decode(raw) for raw in raw_values if raw is not None]

    async def write_batch(
        self, set_items: Dict[str, Any], delete_keys: Iterable[str] = ()
    ) -> None:
        delete_keys = list(delete_keys)
        if not set_items and not delete_keys:
            return
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for key in delete_keys:
                    pipe.delete(key)
                for key, value in set_items.items():
                    pipe.set(key, self._encode(value))
                await pipe.execute()
        except RedisError as e:
            raise UpstreamError(f"Redis batch write failed: {e}", "RECORD_STORE_ERROR")

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Record store connection closed")


@lru_cache
def get_record_store() -> RecordStore:
    """Dependency to get the shared record store"""
    return RedisRecordStore.from_settings()
