"""Infraction store backed by Redis lists."""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from jailer.core.exceptions import StoreOperationError, StoreUnreachableError

logger = logging.getLogger(__name__)


class InfractionStore:
    """
    Thin wrapper over the Redis list commands the jail relies on.

    Every command is atomic on the server side; no client-side locking is
    done here. The underlying client is safe for concurrent use by many
    coroutines of the same process.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    async def connect(cls, url: str) -> "InfractionStore":
        store = cls(redis.from_url(url, decode_responses=True))
        try:
            await store.ping()
        except StoreOperationError as exc:
            await store.close()
            raise StoreUnreachableError(url, str(exc.__cause__ or exc)) from exc
        logger.info("Redis connected")
        return store

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise StoreOperationError("ping", None, str(exc)) from exc

    async def append(self, key: str, value: str) -> int:
        try:
            return int(await self._client.rpush(key, value))
        except RedisError as exc:
            raise StoreOperationError("append", key, str(exc)) from exc

    async def length(self, key: str) -> int:
        try:
            return int(await self._client.llen(key))
        except RedisError as exc:
            raise StoreOperationError("length", key, str(exc)) from exc

    async def read_all(self, key: str) -> list[str]:
        try:
            return list(await self._client.lrange(key, 0, -1))
        except RedisError as exc:
            raise StoreOperationError("read", key, str(exc)) from exc

    async def trim_keep_suffix(self, key: str, drop_count: int) -> None:
        """Discard the first ``drop_count`` entries of the list."""
        try:
            await self._client.ltrim(key, drop_count, -1)
        except RedisError as exc:
            raise StoreOperationError("trim", key, str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise StoreOperationError("delete", key, str(exc)) from exc

    async def set_ttl(self, key: str, seconds: int) -> None:
        try:
            await self._client.expire(key, seconds)
        except RedisError as exc:
            raise StoreOperationError("expire", key, str(exc)) from exc

    async def scan_keys(self, cursor: int, pattern: str, batch_size: int) -> tuple[list[str], int]:
        """Return one page of matching keys and the next cursor (0 when exhausted)."""
        try:
            next_cursor, keys = await self._client.scan(cursor=cursor, match=pattern, count=batch_size)
        except RedisError as exc:
            raise StoreOperationError("scan", pattern, str(exc)) from exc
        return list(keys), int(next_cursor)

    async def close(self) -> None:
        await self._client.aclose()
