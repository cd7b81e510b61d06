"""Server-side session token storage.

Signed tokens are only honoured while their ``jti`` is present here, which
is what makes logout and "revoke all" immediate.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

import redis.asyncio as redis

from backoffice_api.config import get_settings
from backoffice_api.models.domain.role import UserRole

logger = logging.getLogger(__name__)


class TokenKind(StrEnum):
    """Kinds of session tokens."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class SessionRecord:
    """Stored state of one issued token."""

    jti: str
    kind: TokenKind
    user_id: int
    role: UserRole
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "jti": self.jti,
            "kind": self.kind.value,
            "user_id": self.user_id,
            "role": self.role.value,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionRecord":
        return cls(
            jti=data["jti"],
            kind=TokenKind(data["kind"]),
            user_id=int(data["user_id"]),
            role=UserRole(data["role"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class SessionStore(ABC):
    """Storage for issued session tokens, keyed by kind and ``jti``."""

    @abstractmethod
    async def add(self, record: SessionRecord) -> None:
        """Store a newly issued token."""

    @abstractmethod
    async def get(self, kind: TokenKind, jti: str) -> SessionRecord | None:
        """Look up a token; None when unknown or revoked."""

    @abstractmethod
    async def remove(self, kind: TokenKind, jti: str) -> bool:
        """Remove a token. Returns True if it was present."""

    @abstractmethod
    async def remove_all_for_user(self, user_id: int) -> int:
        """Remove every token of a user. Returns the number removed."""

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Remove tokens whose expiry has passed. Returns the number removed."""

    async def close(self) -> None:
        """Release connections held by the store."""


class InMemorySessionStore(SessionStore):
    """Process-local store for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._records: dict[TokenKind, dict[str, SessionRecord]] = {
            kind: {} for kind in TokenKind
        }
        self._lock = threading.Lock()

    async def add(self, record: SessionRecord) -> None:
        with self._lock:
            self._records[record.kind][record.jti] = record

    async def get(self, kind: TokenKind, jti: str) -> SessionRecord | None:
        with self._lock:
            return self._records[kind].get(jti)

    async def remove(self, kind: TokenKind, jti: str) -> bool:
        with self._lock:
            return self._records[kind].pop(jti, None) is not None

    async def remove_all_for_user(self, user_id: int) -> int:
        removed = 0
        with self._lock:
            for records in self._records.values():
                for jti in [j for j, r in records.items() if r.user_id == user_id]:
                    del records[jti]
                    removed += 1
        return removed

    async def purge_expired(self, now: datetime) -> int:
        removed = 0
        with self._lock:
            for records in self._records.values():
                for jti in [j for j, r in records.items() if r.is_expired(now)]:
                    del records[jti]
                    removed += 1
        return removed

    def count(self, kind: TokenKind | None = None) -> int:
        """Number of stored tokens, optionally of one kind."""
        with self._lock:
            if kind is not None:
                return len(self._records[kind])
            return sum(len(records) for records in self._records.values())


class RedisSessionStore(SessionStore):
    """Shared store for multi-instance deployments.

    Each token is a key with a TTL matching its lifetime; a per-user set
    indexes the keys for bulk revocation. The set lives as long as the
    longest token it indexes, and ``purge_expired`` drops members whose
    token key has already expired.
    """

    KEY_PREFIX = "session"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionStore":
        return cls(redis.from_url(url, decode_responses=True))

    def _token_key(self, kind: TokenKind, jti: str) -> str:
        return f"{self.KEY_PREFIX}:{kind.value}:{jti}"

    def _user_key(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}:user:{user_id}"

    async def add(self, record: SessionRecord) -> None:
        ttl = int((record.expires_at - datetime.now(timezone.utc)).total_seconds())
        key = self._token_key(record.kind, record.jti)
        ttl = max(ttl, 1)
        user_key = self._user_key(record.user_id)
        await self._client.set(key, json.dumps(record.to_dict()), ex=ttl)
        await self._client.sadd(user_key, key)
        # -1 means no expiry yet
        if await self._client.ttl(user_key) < ttl:
            await self._client.expire(user_key, ttl)

    async def get(self, kind: TokenKind, jti: str) -> SessionRecord | None:
        raw = await self._client.get(self._token_key(kind, jti))
        if raw is None:
            return None
        try:
            return SessionRecord.from_dict(json.loads(raw))
        except (KeyError, ValueError) as e:
            logger.warning(f"Discarding malformed session record: {e}")
            await self._client.delete(self._token_key(kind, jti))
            return None

    async def remove(self, kind: TokenKind, jti: str) -> bool:
        key = self._token_key(kind, jti)
        raw = await self._client.get(key)
        deleted = await self._client.delete(key)
        if raw is not None:
            try:
                user_id = int(json.loads(raw)["user_id"])
                await self._client.srem(self._user_key(user_id), key)
            except (KeyError, ValueError):
                pass
        return bool(deleted)

    async def remove_all_for_user(self, user_id: int) -> int:
        user_key = self._user_key(user_id)
        keys = await self._client.smembers(user_key)
        removed = 0
        if keys:
            removed = await self._client.delete(*keys)
        await self._client.delete(user_key)
        return int(removed)

    async def purge_expired(self, now: datetime) -> int:
        # Token keys expire through their TTLs; only the user index needs pruning
        removed = 0
        async for user_key in self._client.scan_iter(match=f"{self.KEY_PREFIX}:user:*"):
            members = await self._client.smembers(user_key)
            stale = [key for key in members if not await self._client.exists(key)]
            if stale:
                await self._client.srem(user_key, *stale)
                removed += len(stale)
        return removed

    async def close(self) -> None:
        await self._client.aclose()


def create_session_store() -> SessionStore:
    """Create the session store selected by ``SESSION_STORE``."""
    settings = get_settings()
    if settings.session_store == "redis":
        logger.info("Using Redis session store")
        return RedisSessionStore.from_url(settings.redis_url)
    return InMemorySessionStore()
