"""
auth/tokens.py -- Password hashing and the bearer-token credential engine.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry iss, upn (username), nickname,
       roles (ordered), iat and exp. verify_token() raises UnauthorizedError on
       any failure -- there is no soft "None" variant, so a caller can never
       forget to check the result.

  Passwords: bcrypt used directly. Bcrypt's cost factor makes brute-force of
       low-entropy secrets expensive, and checkpw() compares in constant time.
       _DUMMY_HASH enables timing equalization in authenticate_user() so the
       response time does not reveal whether a username exists.

  Signing secret: read from the Settings value passed to CredentialEngine and
       copied once at construction. The engine never re-reads configuration,
       so there is no rotation path short of a restart.

  Neither plaintext passwords, hashes, nor token strings are ever logged.

Layer rule: no imports from api/ or challenges/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims
from core.errors import NotFoundError, UnauthorizedError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("huntgate.auth")

ISSUER = "scavenger-hunt-game"
TOKEN_TYPE = "Bearer"

MISSING_TOKEN = "request did not include token"
WRONG_TOKEN = "request carries the wrong token"

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt rejects input longer than 72 bytes (ValueError). The API layer
    validates the UTF-8 byte length before calling this (api/models.py).
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("huntgate_timing_dummy")


# ---------------------------------------------------------------------------
# Credential engine
# ---------------------------------------------------------------------------


class CredentialEngine:
    """Issues and verifies signed bearer tokens.

    Constructed once at startup from Settings and stored on app.state. The
    secret and default lifetime are captured here; later changes to the
    Settings object do not affect an existing engine.

    Token states: Issued -> Valid (until exp) -> Expired. Any signature or
    structure failure makes a token Invalid. There is no revocation state:
    closing a User blocks future logins, not tokens already handed out.
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.secret_key
        self._lifetime = settings.token_expire_seconds

    @property
    def token_lifetime(self) -> int:
        """Default token lifetime in seconds (reported to clients as expires_in)."""
        return self._lifetime

    def issue_token(self, username: str, roles: Sequence[str], nickname: str, lifetime: int | None = None) -> str:
        """Encode a signed JWT for a verified identity.

        Args:
            username: Stored as the upn claim.
            roles:    Ordered role list, copied verbatim into the roles claim.
            nickname: Display name, stored as the nickname claim.
            lifetime: Seconds until expiry. None uses the configured default.
                      A negative value produces an already-expired token, which
                      is only useful in tests.

        Signing faults propagate unchanged: they are internal errors, not
        credential problems, and must not be reported to the caller as 401.
        """
        duration = self._lifetime if lifetime is None else lifetime
        now = datetime.now(timezone.utc)
        payload = {
            "iss": ISSUER,
            "upn": username,
            "nickname": nickname,
            "roles": list(roles),
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify_token(self, token: str | None) -> TokenClaims:
        """Verify signature, issuer and expiry; return the decoded identity.

        Raises:
            UnauthorizedError(MISSING_TOKEN) -- no token presented.
            UnauthorizedError(WRONG_TOKEN)   -- bad signature, malformed,
                expired, missing exp or iat, wrong issuer, or claims of
                the wrong shape.
        """
        if not token:
            raise UnauthorizedError(MISSING_TOKEN)
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=ISSUER,
                options={"require_exp": True, "require_iat": True},
            )
        except JWTError as exc:
            logger.info("Rejected bearer token (%s)", type(exc).__name__)
            raise UnauthorizedError(WRONG_TOKEN) from exc

        username = payload.get("upn")
        nickname = payload.get("nickname")
        roles = payload.get("roles")
        if (
            not isinstance(username, str)
            or not username
            or not isinstance(nickname, str)
            or not isinstance(roles, list)
            or not all(isinstance(r, str) for r in roles)
        ):
            logger.info("Rejected bearer token (malformed claims)")
            raise UnauthorizedError(WRONG_TOKEN)
        return TokenClaims(username=username, nickname=nickname, roles=tuple(roles))


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User:
    """Authenticate a username/password pair against the active user version.

    Always runs bcrypt whether or not the user exists:
    - Unknown or closed username: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Raises:
        NotFoundError("User not found")         -- no active version
        UnauthorizedError("Invalid credentials") -- password mismatch
    """
    user = store.find_active(username)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        raise NotFoundError("User not found")
    if not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", user.username)
        raise UnauthorizedError("Invalid credentials")
    return user
