"""
API request and response models for HuntGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
challenges/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models are the validation collaborator: malformed input is rejected
here (422) before any auth/ or challenges/ code runs.
"""

import re
from datetime import datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from challenges.models import Challenge, ChallengeParticipant, RegistryEntry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

RoleName = Literal["game.admin", "game.player", "viewer"]
ParticipantState = Literal["PENDING", "INVITED", "ACCEPTED", "REJECTED"]


def _normalize_username(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Must be a valid email address")
    return value


def _check_password(value: str) -> str:
    if len(value.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes when UTF-8 encoded")
    if not re.search(r"[a-zA-Z]", value):
        raise ValueError("Password must contain at least one letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one number")
    return value


# Annotated types reused by every body that carries a username or new password.
Username = Annotated[str, Field(max_length=255), AfterValidator(_normalize_username)]
Password = Annotated[str, Field(min_length=8, max_length=64), AfterValidator(_check_password)]


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Password is compared exactly as sent; only the username is normalized."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=64)

    @field_validator("username")
    @classmethod
    def lower_username(cls, value: str) -> str:
        return value.strip().lower()


class LoginResponse(BaseModel):
    """Successful login payload. The token field name contains dashes on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    user_auth_token: str = Field(alias="user-auth-token")
    expires_in: int  # seconds
    token_type: str = "Bearer"


class RegisterRequest(BaseModel):
    """Self-service registration. Roles are not accepted; new players get game.player."""

    username: Username
    password: Password
    nickname: str = Field(min_length=1, max_length=255)

    @field_validator("nickname")
    @classmethod
    def strip_nickname(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Nickname is required")
        return value


class MeResponse(BaseModel):
    username: str
    nickname: str
    roles: list[str]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(RegisterRequest):
    """Admin-created account; roles are chosen explicitly."""

    roles: list[RoleName] = Field(min_length=1)


class UserUpdate(BaseModel):
    """Full replacement of a user's mutable fields. password is optional (keep current)."""

    username: Username
    password: Optional[Password] = None
    nickname: str = Field(min_length=1, max_length=255)
    roles: list[RoleName] = Field(min_length=1)


class UserCreatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="user-id")
    username: str


class UserResponse(BaseModel):
    """One user version. Never includes the password hash."""

    user_id: str
    username: str
    nickname: str
    roles: list[str]
    valid_from: datetime
    valid_until: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.entity_id,
            username=user.username,
            nickname=user.nickname,
            roles=user.roles,
            valid_from=user.valid_from,
            valid_until=user.valid_until,
        )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class ChallengeCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_name: str = Field(min_length=1, max_length=60)
    challenge_desc: str = Field(default="", max_length=4000)
    waypoints_ref: str = Field(default="", max_length=255)
    start_time: datetime
    duration: int = Field(default=90, gt=0, le=24 * 60)


class ChallengeUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_name: Optional[str] = Field(default=None, min_length=1, max_length=60)
    challenge_desc: Optional[str] = Field(default=None, max_length=4000)
    waypoints_ref: Optional[str] = Field(default=None, max_length=255)
    start_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, gt=0, le=24 * 60)


class ChallengeResponse(BaseModel):
    challenge_id: str
    challenge_name: str
    challenge_desc: str
    waypoints_ref: str
    start_time: datetime
    duration: int
    valid_from: datetime
    valid_until: Optional[datetime] = None

    @classmethod
    def from_challenge(cls, challenge: Challenge) -> "ChallengeResponse":
        return cls(
            challenge_id=challenge.challenge_id,
            challenge_name=challenge.challenge_name,
            challenge_desc=challenge.challenge_desc,
            waypoints_ref=challenge.waypoints_ref,
            start_time=challenge.start_time,
            duration=challenge.duration,
            valid_from=challenge.valid_from,
            valid_until=challenge.valid_until,
        )


class ScheduleEntryResponse(BaseModel):
    challenge_id: str
    start_time: datetime

    @classmethod
    def from_entry(cls, entry: RegistryEntry) -> "ScheduleEntryResponse":
        return cls(challenge_id=entry.challenge_id, start_time=entry.start_time)


class ScheduleFlushResponse(BaseModel):
    entries: int


class ParticipantsInvite(BaseModel):
    usernames: list[str] = Field(min_length=1, max_length=100)

    @field_validator("usernames")
    @classmethod
    def normalize_usernames(cls, values: list[str]) -> list[str]:
        """Validate and deduplicate usernames while preserving original order."""
        seen: set[str] = set()
        result: list[str] = []
        for v in values:
            normalized = _normalize_username(v)
            if normalized not in seen:
                seen.add(normalized)
                result.append(normalized)
        return result


class ParticipantPatch(BaseModel):
    state: Optional[ParticipantState] = None
    participant_name: Optional[str] = Field(default=None, max_length=60)


class ParticipantResponse(BaseModel):
    participant_id: str
    challenge_id: str
    username: str
    participant_name: str
    state: str
    valid_from: datetime
    valid_until: Optional[datetime] = None

    @classmethod
    def from_participant(cls, participant: ChallengeParticipant) -> "ParticipantResponse":
        return cls(
            participant_id=participant.entity_id,
            challenge_id=participant.challenge_id,
            username=participant.username,
            participant_name=participant.participant_name,
            state=participant.state,
            valid_from=participant.valid_from,
            valid_until=participant.valid_until,
        )
