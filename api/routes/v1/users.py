"""
api/routes/v1/users.py -- User account management over the versioned user store.

Routes:
  GET    /api/v1/users                      -- list active users (admin only)
  GET    /api/v1/users/{username}           -- active version of one user (requires auth)
  POST   /api/v1/users                      -- create user (admin only)
  PUT    /api/v1/users/{username}           -- replace nickname/roles/password (admin only)
  DELETE /api/v1/users/{username}           -- close the active version (admin only)
  GET    /api/v1/users/{username}/history   -- every version, oldest first (admin only)

Every update supersedes: the current version is closed and a new one is
inserted, so the history endpoint shows each role and profile change.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import UserCreate, UserCreatedResponse, UserResponse, UserUpdate
from auth.dependencies import get_current_identity, require_admin
from auth.models import TokenClaims, User
from auth.store import UserStore
from auth.tokens import hash_password, verify_password
from core.errors import ConflictError, NotFoundError, ValidationError

router = APIRouter()


def _user_store(request: Request) -> UserStore:
    return request.app.state.user_store


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    role: Optional[str] = None,
    _admin: TokenClaims = Depends(require_admin),
) -> list[UserResponse]:
    """List active users, optionally only those holding `role`. Admin only."""
    return [UserResponse.from_user(u) for u in _user_store(request).list_active(role=role)]


@router.get("/users/{username}", response_model=UserResponse)
def get_user(
    request: Request,
    username: str,
    _identity: TokenClaims = Depends(get_current_identity),
) -> UserResponse:
    user = _user_store(request).find_active(username)
    if user is None:
        raise NotFoundError("User not found", detail={"username": username.lower()})
    return UserResponse.from_user(user)


@router.post("/users", response_model=UserCreatedResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    _admin: TokenClaims = Depends(require_admin),
) -> UserCreatedResponse:
    """Create an account with explicit roles. Admin only."""
    try:
        created = _user_store(request).insert_version(
            User(
                username=body.username,
                nickname=body.nickname,
                roles=list(body.roles),
                password_hash=hash_password(body.password),
            )
        )
    except ConflictError as exc:
        raise ConflictError("User already exists", detail={"username": body.username}) from exc
    return UserCreatedResponse(user_id=created.entity_id, username=created.username)


@router.put("/users/{username}", response_model=UserCreatedResponse)
def update_user(
    request: Request,
    username: str,
    body: UserUpdate,
    _admin: TokenClaims = Depends(require_admin),
) -> UserCreatedResponse:
    """Supersede a user's active version. Admin only.

    The username in the path must match the body (usernames are natural keys
    and cannot be renamed). A request that changes nothing is rejected so the
    history does not fill with identical versions.
    """
    if username.lower() != body.username:
        raise ValidationError("URL username must match body username")

    store = _user_store(request)
    current = store.find_active(username)
    if current is None:
        raise NotFoundError("User not found", detail={"username": username.lower()})

    changes: dict = {}
    if body.nickname != current.nickname:
        changes["nickname"] = body.nickname
    if list(body.roles) != current.roles:
        changes["roles"] = list(body.roles)
    if body.password is not None and not verify_password(body.password, current.password_hash):
        changes["password_hash"] = hash_password(body.password)
    if not changes:
        raise ValidationError("No change required")

    updated = store.supersede(username, **changes)
    return UserCreatedResponse(user_id=updated.entity_id, username=updated.username)


@router.delete("/users/{username}", status_code=204)
def delete_user(
    request: Request,
    username: str,
    _admin: TokenClaims = Depends(require_admin),
) -> Response:
    """Close the user's active version. Tokens already issued stay valid until they expire."""
    _user_store(request).close(username)
    return Response(status_code=204)


@router.get("/users/{username}/history", response_model=list[UserResponse])
def user_history(
    request: Request,
    username: str,
    _admin: TokenClaims = Depends(require_admin),
) -> list[UserResponse]:
    versions = _user_store(request).history(username)
    if not versions:
        raise NotFoundError("User not found", detail={"username": username.lower()})
    return [UserResponse.from_user(u) for u in versions]
