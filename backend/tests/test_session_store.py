"""Tests for the session store implementations."""

from datetime import datetime, timedelta, timezone

import pytest

from backoffice_api.models.domain.role import UserRole
from backoffice_api.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionRecord,
    SessionStore,
    TokenKind,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Minimal async stand-in for the redis client commands the store uses."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.sets: dict[str, set[str]] = {}
        self.closed = False

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            elif self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key: str, *members: str) -> int:
        self.sets.get(key, set()).difference_update(members)
        return len(members)

    async def smembers(self, key: str) -> "set[str]":
        return set(self.sets.get(key, set()))

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self.values or key in self.sets)

    async def ttl(self, key: str) -> int:
        if not await self.exists(key):
            return -2
        return self.ttls.get(key, -1)

    async def expire(self, key: str, seconds: int) -> bool:
        if not await self.exists(key):
            return False
        self.ttls[key] = seconds
        return True

    async def scan_iter(self, match: str | None = None):
        prefix = match.rstrip("*") if match else ""
        for key in list(self.values) + list(self.sets):
            if key.startswith(prefix):
                yield key

    def expire_now(self, key: str) -> None:
        """Simulate Redis dropping a key whose TTL ran out."""
        self.values.pop(key, None)
        self.ttls.pop(key, None)

    async def aclose(self) -> None:
        self.closed = True


def make_record(
    jti: str,
    user_id: int = 1,
    kind: TokenKind = TokenKind.ACCESS,
    lifetime: timedelta = timedelta(minutes=15),
) -> SessionRecord:
    return SessionRecord(
        jti=jti,
        kind=kind,
        user_id=user_id,
        role=UserRole.USER,
        issued_at=NOW,
        expires_at=NOW + lifetime,
    )


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest) -> SessionStore:
    if request.param == "memory":
        return InMemorySessionStore()
    return RedisSessionStore(FakeRedis())


class TestSessionStoreContract:
    """Behaviour shared by every store."""

    @pytest.mark.asyncio
    async def test_add_get_remove(self, store: SessionStore) -> None:
        record = make_record("a")
        await store.add(record)

        assert await store.get(TokenKind.ACCESS, "a") == record
        assert await store.get(TokenKind.REFRESH, "a") is None

        assert await store.remove(TokenKind.ACCESS, "a") is True
        assert await store.get(TokenKind.ACCESS, "a") is None
        assert await store.remove(TokenKind.ACCESS, "a") is False

    @pytest.mark.asyncio
    async def test_remove_all_for_user(self, store: SessionStore) -> None:
        await store.add(make_record("a1", user_id=1))
        await store.add(make_record("r1", user_id=1, kind=TokenKind.REFRESH))
        await store.add(make_record("b1", user_id=2))

        assert await store.remove_all_for_user(1) == 2
        assert await store.get(TokenKind.ACCESS, "a1") is None
        assert await store.get(TokenKind.REFRESH, "r1") is None
        assert await store.get(TokenKind.ACCESS, "b1") is not None


class TestInMemorySessionStore:
    """Expiry sweeping, which Redis delegates to key TTLs."""

    @pytest.mark.asyncio
    async def test_purge_expired(self) -> None:
        store = InMemorySessionStore()
        await store.add(make_record("short", lifetime=timedelta(minutes=1)))
        await store.add(make_record("long", lifetime=timedelta(days=7)))

        assert await store.purge_expired(NOW + timedelta(minutes=5)) == 1
        assert store.count() == 1
        assert await store.get(TokenKind.ACCESS, "long") is not None


class TestRedisSessionStore:
    """Redis key layout."""

    @pytest.mark.asyncio
    async def test_keys_and_ttl(self) -> None:
        client = FakeRedis()
        store = RedisSessionStore(client)
        await store.add(make_record("abc", user_id=7))

        assert "session:access:abc" in client.values
        assert client.ttls["session:access:abc"] >= 1
        assert client.sets["session:user:7"] == {"session:access:abc"}

    @pytest.mark.asyncio
    async def test_user_index_has_ttl(self) -> None:
        client = FakeRedis()
        store = RedisSessionStore(client)
        await store.add(make_record("abc", user_id=7))

        assert client.ttls["session:user:7"] >= 1

    @pytest.mark.asyncio
    async def test_purge_prunes_expired_index_entries(self) -> None:
        client = FakeRedis()
        store = RedisSessionStore(client)
        for i in range(50):
            await store.add(make_record(f"old{i}", user_id=1))
        await store.add(make_record("live", user_id=1))
        for i in range(50):
            client.expire_now(f"session:access:old{i}")

        assert await store.purge_expired(NOW) == 50
        assert client.sets["session:user:1"] == {"session:access:live"}
        assert await store.purge_expired(NOW) == 0

    @pytest.mark.asyncio
    async def test_malformed_record_discarded(self) -> None:
        client = FakeRedis()
        store = RedisSessionStore(client)
        client.values["session:access:bad"] = "{not json"

        assert await store.get(TokenKind.ACCESS, "bad") is None
        assert "session:access:bad" not in client.values

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        client = FakeRedis()
        await RedisSessionStore(client).close()
        assert client.closed
