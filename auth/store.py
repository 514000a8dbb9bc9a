"""
auth/store.py -- SQLAlchemy Core persistence for versioned user accounts.

Pattern: Repository + Data Mapper on top of core.temporal.TemporalStore.
UserStore is the repository; _row_to_entity is the mapper. Route code never
touches SQL directly.

Every username is lower-cased before it reaches SQL, so "Alice@Hunt.Test"
and "alice@hunt.test" are the same natural key.

Removing a user closes the active version (tombstone). The username becomes
free again: a later registration creates a brand-new entity_id.

Layer rule: no imports from api/ or challenges/.
"""

from __future__ import annotations

import logging

from sqlalchemy import JSON, Column, MetaData, String

from auth.models import User
from core.errors import ConflictError
from core.temporal import TemporalStore, temporal_fields, temporal_table

logger = logging.getLogger("huntgate.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = temporal_table(
    "users",
    _metadata,
    [Column("username", String(255), nullable=False)],
    Column("password_hash", String(255), nullable=False),
    Column("nickname", String(255), nullable=False),
    Column("roles", JSON, nullable=False),  # ordered list of role strings
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore(TemporalStore):
    """Repository for versioned User records.

    Usage:
        store = UserStore(create_store_engine(url))
        store.insert_version(User(username="a@b.io", nickname="a", roles=["game.player"], password_hash=h))
        store.supersede("a@b.io", nickname="ace")
        store.history("a@b.io")  # two versions, oldest first
    """

    table = _users
    key_columns = ("username",)
    entity_name = "User"

    def _normalize_key(self, key) -> tuple:
        return (key.lower(),)

    def _entity_values(self, user: User) -> dict:
        return {
            "entity_id": user.entity_id,
            "username": user.username.lower(),
            "password_hash": user.password_hash,
            "nickname": user.nickname,
            "roles": list(user.roles),
        }

    def _payload_values(self, changes: dict) -> dict:
        if "roles" in changes:
            changes = {**changes, "roles": list(changes["roles"])}
        return changes

    def _row_to_entity(self, row) -> User:
        return User(
            username=row.username,
            nickname=row.nickname,
            roles=list(row.roles or []),
            password_hash=row.password_hash,
            **temporal_fields(row),
        )

    def list_active(self, role: str | None = None, **filters) -> list[User]:
        """Return active users ordered by username, optionally only those holding `role`.

        roles is a JSON array column; membership is checked here rather than
        in SQL because JSON containment operators differ per backend.
        """
        users = super().list_active(**filters)
        if role is None:
            return users
        return [u for u in users if role in u.roles]

    def ensure_user(self, user: User) -> bool:
        """Insert `user` unless an active version already exists. Returns True if inserted.

        Used to seed the default admin at startup; an existing active account
        is left untouched even if its roles or password differ.
        """
        if self.find_active(user.username) is not None:
            return False
        try:
            self.insert_version(user)
        except ConflictError:
            # Another process seeded the same username between the check and the insert.
            return False
        logger.info("Seeded user %s", user.username.lower())
        return True
