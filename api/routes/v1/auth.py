"""
api/routes/v1/auth.py -- Login, self-service registration and identity endpoints.

Routes:
  POST /api/v1/auth/login     -- password login; returns the bearer token
  POST /api/v1/auth/register  -- self-service account creation (game.player)
  GET  /api/v1/auth/me        -- claims of the presented token (requires auth)

Security:
  POST /login is rate-limited per client IP (Settings.login_rate_limit).
  authenticate_user() provides timing equalization -- use it, never inline
  find_active() + verify_password().
  Cache-Control: no-store on login responses.
  Self-registration can never grant a role other than game.player.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, MeResponse, RegisterRequest, UserCreatedResponse
from auth.dependencies import get_current_identity
from auth.gate import PLAYER_ROLE
from auth.models import TokenClaims, User
from auth.store import UserStore
from auth.tokens import TOKEN_TYPE, CredentialEngine, authenticate_user, hash_password
from core.errors import ConflictError, ForbiddenError

logger = logging.getLogger("huntgate.api")

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/register:  public, unless SELF_REGISTRATION_ENABLED=false
# - GET  /api/v1/auth/me:        requires auth (get_current_identity)
router = APIRouter()


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a signed bearer token.

    Unknown usernames raise NotFoundError (404); a wrong password raises
    UnauthorizedError (401) with a message that says nothing about which
    part was wrong. Both outcomes are mapped by the HuntError handler in
    api/main.py.
    """
    user_store: UserStore = request.app.state.user_store
    credentials: CredentialEngine = request.app.state.credentials

    user = authenticate_user(user_store, body.username, body.password)
    token = credentials.issue_token(user.username, user.roles, user.nickname)
    logger.info("Login succeeded for %s", user.username)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user_auth_token=token,
            expires_in=credentials.token_lifetime,
            token_type=TOKEN_TYPE,
        ).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=UserCreatedResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserCreatedResponse:
    """Create a player account without an admin.

    Disabled when Settings.self_registration_enabled is false. A username
    with an active account is a ConflictError (409); a previously removed
    username may be registered again and gets a new user id.
    """
    if not request.app.state.settings.self_registration_enabled:
        raise ForbiddenError("self-registration is disabled")

    user_store: UserStore = request.app.state.user_store
    try:
        created = user_store.insert_version(
            User(
                username=body.username,
                nickname=body.nickname,
                roles=[PLAYER_ROLE],
                password_hash=hash_password(body.password),
            )
        )
    except ConflictError as exc:
        raise ConflictError("User already exists", detail={"username": body.username}) from exc
    return UserCreatedResponse(user_id=created.entity_id, username=created.username)


@router.get("/auth/me", response_model=MeResponse)
def me(identity: TokenClaims = Depends(get_current_identity)) -> MeResponse:
    """Return the identity carried by the presented token."""
    return MeResponse(username=identity.username, nickname=identity.nickname, roles=list(identity.roles))
