"""
Key-value storage for OAuth state.

Authorization codes, access tokens and client registrations share one flat
key-value namespace. The typed repositories at the bottom of this module own
the key prefixes and TTL rules so callers never build keys by hand.
"""

import time
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from models import AccessToken, AuthorizationCode, ClientRegistration

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the storage backend fails"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class KeyValueStore(ABC):
    """Minimal async key-value capability: get, put with optional TTL, delete"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def take(self, key: str) -> Optional[str]:
        """Read a key and delete it.

        The default is a plain get followed by a delete, so two concurrent
        callers can both read the value before either deletes it. Backends
        with an atomic read-and-delete override this.
        """
        value = await self.get(key)
        if value is not None:
            await self.delete(key)
        return value

    async def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    """In-process store with per-key expiry, used when no Redis is configured"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _read(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._read(key)

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def take(self, key: str) -> Optional[str]:
        # No await between read and delete: atomic on the event loop
        value = self._read(key)
        self._data.pop(key, None)
        return value

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return self._read(key) is not None


class RedisStore(KeyValueStore):
    """Redis-backed store; TTLs are enforced by Redis itself"""

    def __init__(self, redis: Redis):
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise StorageError(f"Failed to read {key.split(':', 1)[0]} record", e) from e

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl)
        except RedisError as e:
            raise StorageError(f"Failed to write {key.split(':', 1)[0]} record", e) from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise StorageError(f"Failed to delete {key.split(':', 1)[0]} record", e) from e

    async def take(self, key: str) -> Optional[str]:
        # GETDEL makes code redemption single-use even under concurrency
        try:
            return await self._redis.getdel(key)
        except RedisError as e:
            raise StorageError(f"Failed to redeem {key.split(':', 1)[0]} record", e) from e

    async def close(self) -> None:
        await self._redis.aclose()


def create_store(redis_url: Optional[str]) -> KeyValueStore:
    """Pick the storage backend from configuration"""
    if redis_url:
        logger.info("Using Redis store for OAuth state")
        return RedisStore.from_url(redis_url)
    logger.info("Using in-memory store for OAuth state")
    return MemoryStore()


# Typed repositories
class CodeStore:
    """Single-use authorization codes with a mandatory TTL"""

    PREFIX = "code:"

    def __init__(self, store: KeyValueStore, ttl: int):
        if ttl <= 0:
            raise ValueError("Authorization codes require a positive TTL")
        self.store = store
        self.ttl = ttl

    async def save(self, code: str, data: AuthorizationCode) -> None:
        await self.store.put(self.PREFIX + code, data.model_dump_json(by_alias=True), ttl=self.ttl)

    async def redeem(self, code: str) -> Optional[AuthorizationCode]:
        """Remove the code and return its record; None if it is absent"""
        raw = await self.store.take(self.PREFIX + code)
        if raw is None:
            return None
        try:
            return AuthorizationCode.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding malformed authorization code record: {e}")
            return None


class TokenStore:
    """Access tokens with a mandatory TTL"""

    PREFIX = "token:"

    def __init__(self, store: KeyValueStore, ttl: int):
        if ttl <= 0:
            raise ValueError("Access tokens require a positive TTL")
        self.store = store
        self.ttl = ttl

    async def save(self, data: AccessToken) -> None:
        await self.store.put(self.PREFIX + data.access_token, data.model_dump_json(by_alias=True), ttl=self.ttl)

    async def get(self, token: str) -> Optional[AccessToken]:
        raw = await self.store.get(self.PREFIX + token)
        if raw is None:
            return None
        try:
            return AccessToken.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding malformed access token record: {e}")
            return None

    async def delete(self, token: str) -> None:
        await self.store.delete(self.PREFIX + token)


class ClientStore:
    """Client registrations; stored without expiry"""

    PREFIX = "client:"

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def save(self, client: ClientRegistration) -> None:
        await self.store.put(self.PREFIX + client.client_id, client.model_dump_json(exclude_none=True))

    async def get(self, client_id: str) -> Optional[ClientRegistration]:
        """Read a registration back. The OAuth flow does not look clients up yet."""
        raw = await self.store.get(self.PREFIX + client_id)
        if raw is None:
            return None
        return ClientRegistration.model_validate_json(raw)
