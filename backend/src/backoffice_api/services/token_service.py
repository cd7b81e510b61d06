"""Session token issuance, verification and revocation.

Tokens are HS256 JWTs carrying ``sub``, ``jti``, ``iat``, ``exp`` and
``type`` (plus ``role`` for access tokens). Every issued ``jti`` is also
recorded in a :class:`SessionStore`; a token is only valid while that record
exists and has not expired, so revocation takes effect immediately.
"""

import logging
import secrets
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from backoffice_api.config import get_settings
from backoffice_api.models.domain.role import UserRole
from backoffice_api.models.domain.user import CurrentUser, PublicUser, UserCredentials
from backoffice_api.services.session_store import (
    SessionRecord,
    SessionStore,
    TokenKind,
    create_session_store,
)
from backoffice_api.utils.security_events import SecurityEventType, log_security_event

logger = logging.getLogger(__name__)

TWO_FACTOR_CHALLENGE_TYPE = "2fa_challenge"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies revocable session tokens."""

    def __init__(
        self,
        store: SessionStore,
        secret: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize token service.

        Args:
            store: Session store holding issued token ids
            secret: HMAC signing secret (defaults to JWT_SECRET)
            clock: Source of the current time, timezone-aware
        """
        settings = get_settings()
        if secret is None:
            secret = settings.jwt_secret
        if not secret:
            logger.warning("JWT_SECRET not configured, generating an ephemeral signing secret")
            secret = secrets.token_urlsafe(64)

        self.store = store
        self._secret = secret
        self._algorithm = settings.jwt_algorithm
        self._clock = clock
        self.access_token_lifetime = timedelta(minutes=settings.access_token_minutes)
        self.refresh_token_lifetime = timedelta(days=settings.refresh_token_days)
        self.challenge_lifetime = timedelta(minutes=settings.two_factor_challenge_minutes)
        # Used challenge ids until their expiry
        self._used_challenges: dict[str, int] = {}
        self._challenge_lock = threading.Lock()

    def _encode(self, claims: dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str) -> dict[str, Any] | None:
        """Verify the signature and return the claims.

        Expiry is not checked here; the stored record (or the caller) decides.
        """
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None

    async def _issue(
        self,
        kind: TokenKind,
        user_id: int,
        role: UserRole,
        email: str | None = None,
        name: str | None = None,
    ) -> str:
        now = self._clock()
        lifetime = (
            self.access_token_lifetime if kind == TokenKind.ACCESS else self.refresh_token_lifetime
        )
        expires_at = now + lifetime
        jti = str(uuid.uuid4())

        await self.store.add(
            SessionRecord(
                jti=jti,
                kind=kind,
                user_id=user_id,
                role=role,
                issued_at=now,
                expires_at=expires_at,
            )
        )

        claims: dict[str, Any] = {
            "sub": str(user_id),
            "jti": jti,
            "type": kind.value,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if kind == TokenKind.ACCESS:
            claims["role"] = role.value
            claims["email"] = email
            claims["name"] = name
        return self._encode(claims)

    async def issue_access_token(self, user: UserCredentials | PublicUser) -> str:
        """Issue a short-lived access token."""
        return await self._issue(
            TokenKind.ACCESS, user.id, user.role, email=user.email, name=user.name
        )

    async def issue_refresh_token(self, user: UserCredentials | PublicUser) -> str:
        """Issue a long-lived refresh token."""
        return await self._issue(TokenKind.REFRESH, user.id, user.role)

    async def verify_token(self, token: str, kind: TokenKind) -> CurrentUser | None:
        """Verify a token of the given kind.

        Args:
            token: Encoded JWT
            kind: Expected token kind

        Returns:
            Verified identity, or None for any failure. Callers must not
            reveal which check failed.
        """
        claims = self._decode(token)
        if claims is None:
            return None

        if claims.get("type") != kind.value:
            logger.debug(f"Token rejected: expected {kind.value} token")
            return None

        jti = claims.get("jti")
        if not isinstance(jti, str):
            logger.debug("Token rejected: missing jti")
            return None

        record = await self.store.get(kind, jti)
        if record is None:
            logger.debug("Token rejected: not in session store")
            return None

        if record.is_expired(self._clock()):
            await self.store.remove(kind, jti)
            logger.debug("Token rejected: expired, evicted from session store")
            return None

        if str(record.user_id) != claims.get("sub"):
            logger.warning("Token rejected: subject does not match session record")
            return None

        return CurrentUser(user_id=record.user_id, role=record.role, email=claims.get("email"))

    async def refresh_access_token(
        self, refresh_token: str, user: UserCredentials | PublicUser | None = None
    ) -> str | None:
        """Issue a new access token from a valid refresh token.

        The refresh token itself stays valid until it expires or is revoked.

        Args:
            refresh_token: Encoded refresh token
            user: Current user record, used to embed fresh profile claims

        Returns:
            New access token, or None if the refresh token is invalid
        """
        identity = await self.verify_token(refresh_token, TokenKind.REFRESH)
        if identity is None:
            return None

        if user is not None and user.id == identity.user_id:
            return await self.issue_access_token(user)
        return await self._issue(TokenKind.ACCESS, identity.user_id, identity.role)

    async def revoke_token(self, token: str, kind: TokenKind) -> bool:
        """Revoke a token.

        The signature must verify, but an expired token can still be revoked.

        Returns:
            True if a stored token was removed
        """
        claims = self._decode(token)
        if claims is None or claims.get("type") != kind.value:
            return False

        jti = claims.get("jti")
        if not isinstance(jti, str):
            return False

        removed = await self.store.remove(kind, jti)
        if removed:
            user_id = int(claims["sub"]) if str(claims.get("sub", "")).isdigit() else None
            log_security_event(
                SecurityEventType.LOGOUT,
                user_id=user_id,
                details={"token_kind": kind.value},
            )
        return removed

    async def revoke_all_tokens_for_user(self, user_id: int) -> int:
        """Revoke every access and refresh token of a user.

        Returns:
            Number of tokens removed
        """
        removed = await self.store.remove_all_for_user(user_id)
        log_security_event(
            SecurityEventType.LOGOUT,
            user_id=user_id,
            details={"action": "revoke_all_tokens", "revoked": removed},
        )
        return removed

    async def purge_expired(self) -> int:
        """Drop expired tokens from the store."""
        self._prune_used_challenges()
        removed = await self.store.purge_expired(self._clock())
        if removed:
            logger.info(f"Purged {removed} expired session token(s)")
        return removed

    def issue_two_factor_challenge(self, user: UserCredentials | PublicUser) -> str:
        """Issue a short-lived token proving the password step succeeded."""
        now = self._clock()
        claims = {
            "sub": str(user.id),
            "jti": str(uuid.uuid4()),
            "type": TWO_FACTOR_CHALLENGE_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + self.challenge_lifetime).timestamp()),
        }
        return self._encode(claims)

    def _challenge_claims(self, token: str) -> dict[str, Any] | None:
        claims = self._decode(token)
        if claims is None or claims.get("type") != TWO_FACTOR_CHALLENGE_TYPE:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, int) or self._clock().timestamp() >= exp:
            logger.debug("Two-factor challenge expired")
            return None
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub.isdigit() or not claims.get("jti"):
            return None
        with self._challenge_lock:
            if claims["jti"] in self._used_challenges:
                logger.debug("Two-factor challenge already used")
                return None
        return claims

    def verify_two_factor_challenge(self, token: str) -> int | None:
        """Verify a challenge token without using it up.

        Returns:
            The user id, or None if invalid, expired or already used
        """
        claims = self._challenge_claims(token)
        return int(claims["sub"]) if claims else None

    def consume_two_factor_challenge(self, token: str) -> bool:
        """Mark a valid challenge token as used.

        Returns:
            True for the first caller, False if the token is invalid or
            was already used
        """
        claims = self._challenge_claims(token)
        if claims is None:
            return False
        with self._challenge_lock:
            if claims["jti"] in self._used_challenges:
                return False
            self._used_challenges[claims["jti"]] = claims["exp"]
        return True

    def _prune_used_challenges(self) -> None:
        now = self._clock().timestamp()
        with self._challenge_lock:
            for jti in [j for j, exp in self._used_challenges.items() if exp <= now]:
                del self._used_challenges[jti]


# Global instance
_token_service: TokenService | None = None


def get_token_service() -> TokenService:
    """Get or create the token service singleton."""
    global _token_service
    if _token_service is None:
        _token_service = TokenService(store=create_session_store())
    return _token_service


def reset_token_service() -> None:
    """Reset the token service singleton (for testing)."""
    global _token_service
    _token_service = None
