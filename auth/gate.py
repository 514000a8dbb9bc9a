"""
auth/gate.py -- Role gate for role-protected operations.

The gate is a pure function over roles that were decoded from an already
verified token. It never touches storage and never sees a raw token, so it
cannot be run "before" verification by construction: the only way to obtain
a TokenClaims is CredentialEngine.verify_token().

Role checks are literal membership tests. There is no hierarchy and no
wildcard: "game.admin" does not imply "game.player", and "admin" does not
match "game.admin".
"""

from __future__ import annotations

from collections.abc import Collection

from core.errors import ForbiddenError

ADMIN_ROLE = "game.admin"
PLAYER_ROLE = "game.player"
VIEWER_ROLE = "viewer"

KNOWN_ROLES = (ADMIN_ROLE, PLAYER_ROLE, VIEWER_ROLE)

INSUFFICIENT_PERMISSIONS = "insufficient permissions"


def require_role(roles: Collection[str], required_role: str) -> None:
    """Raise ForbiddenError unless `required_role` is literally present in `roles`."""
    if required_role not in roles:
        raise ForbiddenError(INSUFFICIENT_PERMISSIONS, detail={"required_role": required_role})
