"""Unit tests for the key-value stores and typed OAuth repositories."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from models import AccessToken, AuthorizationCode, ClientRegistration
from storage import (
    ClientStore,
    CodeStore,
    MemoryStore,
    RedisStore,
    StorageError,
    TokenStore,
    create_store,
)


def make_code(expires_at: int = 1_700_000_600_000) -> AuthorizationCode:
    return AuthorizationCode(
        client_id="client_abc",
        redirect_uri="https://example.com/callback",
        code_challenge="challenge",
        expires_at=expires_at,
    )


class TestMemoryStore:
    """Tests for the in-process store."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, store):
        """Values round-trip and disappear on delete."""
        await store.put("k", "v")
        assert await store.get("k") == "v"

        await store.delete("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, store, clock):
        """Reads at or after the TTL find nothing and evict the entry."""
        await store.put("k", "v", ttl=10)

        clock.advance(9)
        assert await store.get("k") == "v"

        clock.advance(1)
        assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_entry_without_ttl_persists(self, store, clock):
        """No TTL means no expiry."""
        await store.put("k", "v")
        clock.advance(10 ** 9)
        assert "k" in store

    @pytest.mark.asyncio
    async def test_take_removes_value(self, store):
        """take returns the value once."""
        await store.put("k", "v", ttl=60)

        assert await store.take("k") == "v"
        assert await store.take("k") is None

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_noop(self, store):
        await store.delete("missing")


class TestRepositories:
    """Tests for the typed repositories over the flat namespace."""

    @pytest.mark.asyncio
    async def test_code_store_uses_prefix_and_camel_case_record(self, store):
        """Codes are stored under code:<code> with camelCase fields."""
        codes = CodeStore(store, ttl=600)
        await codes.save("abc", make_code())

        raw = await store.get("code:abc")
        record = json.loads(raw)
        assert record["clientId"] == "client_abc"
        assert record["codeChallengeMethod"] == "S256"
        assert record["expiresAt"] == 1_700_000_600_000

    @pytest.mark.asyncio
    async def test_code_store_redeem_is_single_use(self, store):
        codes = CodeStore(store, ttl=600)
        await codes.save("abc", make_code())

        first = await codes.redeem("abc")
        second = await codes.redeem("abc")

        assert first.client_id == "client_abc"
        assert second is None

    @pytest.mark.asyncio
    async def test_code_store_expires_with_ttl(self, store, clock):
        codes = CodeStore(store, ttl=600)
        await codes.save("abc", make_code())

        clock.advance(600)
        assert await codes.redeem("abc") is None

    @pytest.mark.asyncio
    async def test_malformed_code_record_is_discarded(self, store):
        """A record that does not parse behaves like a missing code."""
        await store.put("code:bad", "{not json", ttl=600)

        assert await CodeStore(store, ttl=600).redeem("bad") is None
        assert "code:bad" not in store

    def test_code_and_token_stores_require_positive_ttl(self, store):
        with pytest.raises(ValueError):
            CodeStore(store, ttl=0)
        with pytest.raises(ValueError):
            TokenStore(store, ttl=-1)

    @pytest.mark.asyncio
    async def test_token_store_round_trip(self, store, clock):
        tokens = TokenStore(store, ttl=3600)
        token = AccessToken(access_token="tok", client_id="client_abc", scope="mcp:read", expires_at=1)
        await tokens.save(token)

        assert "token:tok" in store
        assert (await tokens.get("tok")).client_id == "client_abc"

        await tokens.delete("tok")
        assert await tokens.get("tok") is None

    @pytest.mark.asyncio
    async def test_client_store_has_no_expiry(self, store, clock):
        """Client registrations outlive any code or token TTL."""
        clients = ClientStore(store)
        await clients.save(ClientRegistration(
            client_id="client_abc",
            redirect_uris=["https://example.com/callback"],
            grant_types=["authorization_code"],
            response_types=["code"],
            token_endpoint_auth_method="none",
            client_id_issued_at=1_700_000_000,
        ))

        clock.advance(10 ** 7)
        client = await clients.get("client_abc")
        assert client.redirect_uris == ["https://example.com/callback"]
        assert "client_name" not in json.loads(await store.get("client:client_abc"))


class TestRedisStore:
    """Tests for the Redis backend against a mocked client."""

    @pytest.mark.asyncio
    async def test_put_passes_ttl_as_ex(self):
        redis = AsyncMock()
        await RedisStore(redis).put("code:abc", "{}", ttl=600)
        redis.set.assert_awaited_once_with("code:abc", "{}", ex=600)

    @pytest.mark.asyncio
    async def test_take_uses_getdel(self):
        redis = AsyncMock()
        redis.getdel.return_value = "value"

        assert await RedisStore(redis).take("code:abc") == "value"
        redis.getdel.assert_awaited_once_with("code:abc")
        redis.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_redis_errors_become_storage_errors(self):
        redis = AsyncMock()
        redis.get.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StorageError) as exc_info:
            await RedisStore(redis).get("token:abc")

        assert "token" in str(exc_info.value)
        assert isinstance(exc_info.value.original_error, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        redis = AsyncMock()
        await RedisStore(redis).close()
        redis.aclose.assert_awaited_once()


class TestCreateStore:
    def test_memory_store_without_redis_url(self):
        assert isinstance(create_store(None), MemoryStore)

    def test_redis_store_with_redis_url(self):
        """Building the client does not connect."""
        assert isinstance(create_store("redis://localhost:6379/0"), RedisStore)
