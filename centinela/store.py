#=======================================
# file:  centinela/store.py
#=======================================
"""
Handle explícito al key/value store (Redis).

Se construye una vez al arrancar el proceso y se inyecta en registry, cola y
dispatcher. Sólo expone las operaciones string/list que usa el pipeline;
cualquier fallo de Redis sale como StoreError.
"""
from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from .errors import StoreError


class Store:
    def __init__(self, url: str, password: Optional[str] = None):
        self._url = url
        self._password = password or None
        self._client: aioredis.Redis | None = None

    async def connect(self) -> None:
        """Abre el cliente y hace PING. Si falla aquí el arranque es fatal."""
        self._client = aioredis.from_url(self._url, password=self._password, decode_responses=True)
        try:
            await self._client.ping()
        except RedisError as e:
            await self.close()
            raise StoreError(f"cannot reach store at {self._url}: {e!s}") from e
        logger.info(f"[store] conectado {self._url}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _c(self) -> aioredis.Redis:
        if self._client is None:
            raise StoreError("store client not connected")
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self._c().ping())
        except RedisError as e:
            raise StoreError(f"PING failed: {e!s}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._c().get(key)
        except RedisError as e:
            raise StoreError(f"GET {key} failed: {e!s}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self._c().set(key, value)
        except RedisError as e:
            raise StoreError(f"SET {key} failed: {e!s}") from e

    async def lpush(self, key: str, value: str) -> int:
        try:
            return int(await self._c().lpush(key, value))
        except RedisError as e:
            raise StoreError(f"LPUSH {key} failed: {e!s}") from e

    async def rpop(self, key: str) -> Optional[str]:
        try:
            return await self._c().rpop(key)
        except RedisError as e:
            raise StoreError(f"RPOP {key} failed: {e!s}") from e

    async def llen(self, key: str) -> int:
        try:
            return int(await self._c().llen(key))
        except RedisError as e:
            raise StoreError(f"LLEN {key} failed: {e!s}") from e
