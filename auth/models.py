"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Mirrors challenges/models.py --
dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/ or challenges/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """One version of a user account.

    username is the natural key (stored lower-cased). entity_id is the stable
    identity shared by every version of the same account; row_id identifies
    this particular version. valid_until is None for the active version.

    password_hash is a bcrypt hash and must never leave the auth layer --
    api/models.UserResponse deliberately has no field for it.
    """

    username: str
    nickname: str
    roles: list[str] = field(default_factory=list)  # e.g. ["game.admin"], ["game.player"]
    password_hash: str = ""
    entity_id: str | None = None
    row_id: int | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.valid_until is None


@dataclass(frozen=True)
class TokenClaims:
    """Identity decoded from a verified bearer token.

    Only ever constructed by CredentialEngine.verify_token(), so holding a
    TokenClaims means the signature, issuer and expiry have been checked.
    """

    username: str
    nickname: str
    roles: tuple[str, ...]
