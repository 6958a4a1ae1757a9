"""
Admin credentials and session tokens.

Two token policies share the same interface: an opaque token kept in memory
(at most one live session) and a self-contained signed JWT that needs no
server-side state.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol

import jwt

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def secrets_match(expected: str, given: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8"))


@dataclass(frozen=True)
class AdminIdentity:
    username: str
    password: str


@dataclass(frozen=True)
class AdminSession:
    token: str
    username: str
    issued_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CredentialChecker:
    """Matches login attempts against the fixed admin list."""

    def __init__(self, admins: Iterable[AdminIdentity]):
        self.admins = tuple(admins)

    def authenticate(
        self, username: Optional[str], password: Optional[str]
    ) -> Optional[AdminIdentity]:
        if not password:
            return None
        if not username:
            # Password-only logins from single-admin deployments.
            for admin in self.admins:
                if secrets_match(admin.password, password):
                    return admin
            return None
        for admin in self.admins:
            if admin.username == username and secrets_match(
                admin.password, password
            ):
                return admin
        return None


class TokenStore(Protocol):
    """Issues and checks admin session tokens."""

    def issue(self, identity: AdminIdentity) -> str:
        ...

    def validate(self, token: Optional[str]) -> bool:
        ...

    def resolve(self, token: Optional[str]) -> Optional[AdminIdentity]:
        ...

    def revoke(self) -> None:
        ...


class SessionTokenStore:
    """
    Keeps a single opaque admin token in process memory.

    Issuing a token replaces the previous session. Expired sessions are
    dropped lazily, the first time an expired token is validated.
    """

    def __init__(self, ttl: Optional[timedelta] = None, clock: Clock = utcnow):
        self.ttl = ttl
        self.clock = clock
        self.session: Optional[AdminSession] = None

    def issue(self, identity: AdminIdentity) -> str:
        now = self.clock()
        self.session = AdminSession(
            token=secrets.token_hex(32),
            username=identity.username,
            issued_at=now,
            expires_at=now + self.ttl if self.ttl else None,
        )
        logger.info("Admin session issued for %s", identity.username)
        return self.session.token

    def resolve(self, token: Optional[str]) -> Optional[AdminIdentity]:
        session = self.session
        if not token or session is None:
            return None
        if not secrets_match(session.token, token):
            return None
        if session.is_expired(self.clock()):
            logger.info("Admin session for %s expired", session.username)
            self.session = None
            return None
        return AdminIdentity(username=session.username, password="")

    def validate(self, token: Optional[str]) -> bool:
        return self.resolve(token) is not None

    def revoke(self) -> None:
        if self.session is not None:
            logger.info("Admin session for %s revoked", self.session.username)
        self.session = None


class SignedTokenStore:
    """
    Stateless admin tokens signed with a shared secret (JWT).

    Expiry is checked against the injected clock rather than the wall clock
    so both token policies follow the same "valid strictly before expiry"
    rule.
    """

    def __init__(
        self,
        secret: str,
        ttl: Optional[timedelta] = None,
        algorithm: str = "HS256",
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("A signing secret is required for signed tokens")
        self.secret = secret
        self.ttl = ttl
        self.algorithm = algorithm
        self.clock = clock

    def issue(self, identity: AdminIdentity) -> str:
        now = self.clock()
        payload = {
            "role": ADMIN_ROLE,
            "username": identity.username,
            "iat": int(now.timestamp()),
        }
        if self.ttl:
            # Fractional seconds keep the expiry instant exact.
            payload["exp"] = (now + self.ttl).timestamp()
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        logger.info("Admin token signed for %s", identity.username)
        return token

    def resolve(self, token: Optional[str]) -> Optional[AdminIdentity]:
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.warning("Rejected admin token: %s", exc)
            return None
        if claims.get("role") != ADMIN_ROLE:
            return None
        exp = claims.get("exp")
        if exp is not None and self.clock().timestamp() >= exp:
            logger.info("Admin token for %s expired", claims.get("username"))
            return None
        return AdminIdentity(username=claims.get("username") or "admin", password="")

    def validate(self, token: Optional[str]) -> bool:
        return self.resolve(token) is not None

    def revoke(self) -> None:
        # Nothing is stored server-side.
        logger.info("Admin logged out (signed token left to expire)")
