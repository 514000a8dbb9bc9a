"""
api/routes/v1/challenges.py -- Challenge lifecycle, schedule and participant endpoints.

Routes:
  GET    /api/v1/challenges                                        -- active challenges (requires auth)
  GET    /api/v1/challenges/schedule[?within=N]                    -- registry contents, optionally next N minutes (requires auth)
  POST   /api/v1/challenges/schedule/flush                         -- force registry resync (admin only)
  GET    /api/v1/challenges/{challenge_id}                         -- one challenge (requires auth)
  POST   /api/v1/challenges                                        -- create (admin only)
  PUT    /api/v1/challenges/{challenge_id}                         -- supersede (admin only)
  DELETE /api/v1/challenges/{challenge_id}                         -- close (admin only)
  POST   /api/v1/challenges/{challenge_id}/participants            -- invite users (admin only)
  GET    /api/v1/challenges/{challenge_id}/participants            -- active participants (requires auth)
  PATCH  /api/v1/challenges/{challenge_id}/participants/{username} -- change state/name (self or admin)

Registry upkeep: every successful create/update upserts the challenge's
start time into app.state.registry and every delete removes it, so the
registry stays warm between full load_all() passes. The store is always
written first; the registry only mirrors what storage accepted.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    ChallengeCreate,
    ChallengeResponse,
    ChallengeUpdate,
    ParticipantPatch,
    ParticipantResponse,
    ParticipantsInvite,
    ScheduleEntryResponse,
    ScheduleFlushResponse,
)
from auth.dependencies import get_current_identity, require_admin
from auth.gate import ADMIN_ROLE, INSUFFICIENT_PERMISSIONS
from auth.models import TokenClaims
from auth.store import UserStore
from challenges.models import Challenge
from challenges.registry import ChallengeRegistry
from challenges.store import ChallengeStore, ParticipantStore
from core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

router = APIRouter()


def _challenge_store(request: Request) -> ChallengeStore:
    return request.app.state.challenge_store


def _participant_store(request: Request) -> ParticipantStore:
    return request.app.state.participant_store


def _registry(request: Request) -> ChallengeRegistry:
    return request.app.state.registry


def _require_challenge(request: Request, challenge_id: str) -> Challenge:
    challenge = _challenge_store(request).find_active(challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found", detail={"challenge_id": challenge_id})
    return challenge


# ---------------------------------------------------------------------------
# Schedule (registry) -- declared before /challenges/{challenge_id}
# ---------------------------------------------------------------------------


@router.get("/challenges/schedule", response_model=list[ScheduleEntryResponse])
def schedule(
    request: Request,
    within: Optional[int] = Query(default=None, gt=0, description="Only challenges starting in the next N minutes"),
    _identity: TokenClaims = Depends(get_current_identity),
) -> list[ScheduleEntryResponse]:
    """Return cached start times, soonest first. Served from memory only.

    With ?within=N only challenges starting between now and N minutes from
    now are returned.
    """
    registry = _registry(request)
    if within is not None:
        entries = registry.starting_within(timedelta(minutes=within))
    else:
        entries = sorted(registry.list_all(), key=lambda e: e.start_time)
    return [ScheduleEntryResponse.from_entry(e) for e in entries]


@router.post("/challenges/schedule/flush", response_model=ScheduleFlushResponse)
def flush_schedule(
    request: Request,
    _admin: TokenClaims = Depends(require_admin),
) -> ScheduleFlushResponse:
    """Drop the registry and rebuild it from storage. Admin only."""
    return ScheduleFlushResponse(entries=_registry(request).flush_all())


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@router.get("/challenges", response_model=list[ChallengeResponse])
def list_challenges(
    request: Request,
    _identity: TokenClaims = Depends(get_current_identity),
) -> list[ChallengeResponse]:
    return [ChallengeResponse.from_challenge(c) for c in _challenge_store(request).list_active()]


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
def get_challenge(
    request: Request,
    challenge_id: str,
    _identity: TokenClaims = Depends(get_current_identity),
) -> ChallengeResponse:
    return ChallengeResponse.from_challenge(_require_challenge(request, challenge_id))


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
def create_challenge(
    request: Request,
    body: ChallengeCreate,
    _admin: TokenClaims = Depends(require_admin),
) -> ChallengeResponse:
    """Create a challenge and register its start time. Admin only."""
    try:
        created = _challenge_store(request).insert_version(Challenge(**body.model_dump()))
    except ConflictError as exc:
        raise ConflictError(
            "Challenge already exists", detail={"challenge_name": body.challenge_name}
        ) from exc
    _registry(request).upsert(created.challenge_id, created.start_time)
    return ChallengeResponse.from_challenge(created)


@router.put("/challenges/{challenge_id}", response_model=ChallengeResponse)
def update_challenge(
    request: Request,
    challenge_id: str,
    body: ChallengeUpdate,
    _admin: TokenClaims = Depends(require_admin),
) -> ChallengeResponse:
    """Supersede the active challenge version with the supplied fields. Admin only."""
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No change required")
    store = _challenge_store(request)
    try:
        updated = store.supersede(challenge_id, **changes)
    except ConflictError as exc:
        name = changes.get("challenge_name")
        if name is not None and any(c.challenge_id != challenge_id for c in store.list_active(challenge_name=name)):
            raise ConflictError("Challenge already exists", detail={"challenge_name": name}) from exc
        raise
    _registry(request).upsert(updated.challenge_id, updated.start_time)
    return ChallengeResponse.from_challenge(updated)


@router.delete("/challenges/{challenge_id}", status_code=204)
def delete_challenge(
    request: Request,
    challenge_id: str,
    _admin: TokenClaims = Depends(require_admin),
) -> Response:
    """Close the challenge and its active participations, then drop it from the registry."""
    _challenge_store(request).close(challenge_id)
    _participant_store(request).close_for_challenge(challenge_id)
    _registry(request).delete(challenge_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


@router.post(
    "/challenges/{challenge_id}/participants",
    response_model=list[ParticipantResponse],
    status_code=201,
)
def invite_participants(
    request: Request,
    challenge_id: str,
    body: ParticipantsInvite,
    _admin: TokenClaims = Depends(require_admin),
) -> list[ParticipantResponse]:
    """Invite active users to a challenge; each starts in PENDING. Admin only.

    All-or-nothing: one unknown user (404) or one existing participation
    (409) rejects the whole batch.
    """
    _require_challenge(request, challenge_id)
    user_store: UserStore = request.app.state.user_store
    missing = [u for u in body.usernames if user_store.find_active(u) is None]
    if missing:
        raise NotFoundError("User not found", detail={"usernames": missing})
    try:
        created = _participant_store(request).invite(challenge_id, body.usernames)
    except ConflictError as exc:
        raise ConflictError("Participant already exists", detail={"challenge_id": challenge_id}) from exc
    return [ParticipantResponse.from_participant(p) for p in created]


@router.get("/challenges/{challenge_id}/participants", response_model=list[ParticipantResponse])
def list_participants(
    request: Request,
    challenge_id: str,
    _identity: TokenClaims = Depends(get_current_identity),
) -> list[ParticipantResponse]:
    participants = _participant_store(request).list_active(challenge_id=challenge_id)
    return [ParticipantResponse.from_participant(p) for p in participants]


@router.patch("/challenges/{challenge_id}/participants/{username}", response_model=ParticipantResponse)
def update_participant(
    request: Request,
    challenge_id: str,
    username: str,
    body: ParticipantPatch,
    identity: TokenClaims = Depends(get_current_identity),
) -> ParticipantResponse:
    """Change a participant's state or display name.

    Players may only change their own participation; game.admin may change
    anyone's.
    """
    if username.lower() != identity.username.lower() and ADMIN_ROLE not in identity.roles:
        raise ForbiddenError(INSUFFICIENT_PERMISSIONS)
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No change required")
    updated = _participant_store(request).supersede((challenge_id, username), **changes)
    return ParticipantResponse.from_participant(updated)
