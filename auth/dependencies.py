"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two transports are accepted for the bearer token, checked in order:
  1. user-auth-token header -- the name the login response uses for the token.
  2. Authorization: Bearer <token> header -- standard HTTP clients.

get_current_identity() verifies the token and returns TokenClaims, raising
UnauthorizedError (401) otherwise. require_role_dependency(role) chains the
role gate after it, raising ForbiddenError (403). Neither touches storage, so
a forbidden request is rejected before any repository is consulted.

Layer rule: no imports from api/ or challenges/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.gate import ADMIN_ROLE, require_role
from auth.models import TokenClaims
from auth.tokens import CredentialEngine

TOKEN_HEADER = "user-auth-token"


def extract_token(request: Request) -> str | None:
    """Return the raw bearer token from the request headers, or None."""
    token = request.headers.get(TOKEN_HEADER)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_current_identity(request: Request) -> TokenClaims:
    """Require a valid bearer token. Raises UnauthorizedError if absent or invalid.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: TokenClaims = Depends(get_current_identity)): ...
    """
    credentials: CredentialEngine = request.app.state.credentials
    return credentials.verify_token(extract_token(request))


def require_role_dependency(role: str) -> Callable[..., TokenClaims]:
    """Build a dependency that verifies the token, then requires `role`.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(identity: TokenClaims = Depends(require_role_dependency("game.admin"))): ...
    """

    def dependency(identity: TokenClaims = Depends(get_current_identity)) -> TokenClaims:
        require_role(identity.roles, role)
        return identity

    dependency.__name__ = f"require_{role.replace('.', '_')}"
    return dependency


require_admin = require_role_dependency(ADMIN_ROLE)
