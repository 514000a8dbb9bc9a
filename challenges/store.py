"""
challenges/store.py -- SQLAlchemy Core persistence for challenges and participants.

Pattern: Repository + Data Mapper (same as auth/store.py), both stores built
on core.temporal.TemporalStore so they share the close-then-insert update
rule and the active-row uniqueness constraint.

Natural keys:
  challenges              challenge_id                  (+ challenge_name unique among active rows)
  challenge_participants  (challenge_id, username)

ChallengeStore.list_active() is the query ChallengeRegistry.load_all()
rebuilds from.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, Index, Integer, MetaData, String, Text

from challenges.models import PARTICIPANT_STATES, Challenge, ChallengeParticipant
from core.temporal import TemporalStore, from_iso, temporal_fields, temporal_table, to_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_challenges = temporal_table(
    "challenges",
    _metadata,
    [Column("challenge_id", String(36), nullable=False)],
    Column("challenge_name", String(60), nullable=False),
    Column("challenge_desc", Text, nullable=False, server_default=""),
    Column("waypoints_ref", String(255), nullable=False, server_default=""),
    Column("start_time", String(32), nullable=False),  # ISO 8601 UTC, same format as valid_from
    Column("duration", Integer, nullable=False, server_default="90"),
)

Index(
    "idx_challenges_name_active",
    _challenges.c.challenge_name,
    unique=True,
    sqlite_where=_challenges.c.valid_until.is_(None),
    postgresql_where=_challenges.c.valid_until.is_(None),
)

_participants = temporal_table(
    "challenge_participants",
    _metadata,
    [
        Column("challenge_id", String(36), nullable=False),
        Column("username", String(255), nullable=False),
    ],
    Column("participant_name", String(60), nullable=False, server_default=""),
    Column("state", String(16), nullable=False),
)


def _check_state(state: str) -> None:
    if state not in PARTICIPANT_STATES:
        raise ValueError(f"Unknown participant state {state!r}; expected one of {PARTICIPANT_STATES}")


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class ChallengeStore(TemporalStore):
    """Repository for versioned Challenge records."""

    table = _challenges
    key_columns = ("challenge_id",)
    entity_name = "Challenge"

    def _entity_values(self, challenge: Challenge) -> dict:
        challenge_id = challenge.challenge_id or str(uuid.uuid4())
        return {
            "entity_id": challenge_id,
            "challenge_id": challenge_id,
            "challenge_name": challenge.challenge_name,
            "challenge_desc": challenge.challenge_desc,
            "waypoints_ref": challenge.waypoints_ref,
            "start_time": to_iso(challenge.start_time),
            "duration": challenge.duration,
        }

    def _payload_values(self, changes: dict) -> dict:
        if changes.get("start_time") is not None:
            changes = {**changes, "start_time": to_iso(changes["start_time"])}
        return changes

    def _row_to_entity(self, row) -> Challenge:
        return Challenge(
            challenge_id=row.challenge_id,
            challenge_name=row.challenge_name,
            challenge_desc=row.challenge_desc,
            waypoints_ref=row.waypoints_ref,
            start_time=from_iso(row.start_time),
            duration=row.duration,
            **temporal_fields(row),
        )


class ParticipantStore(TemporalStore):
    """Repository for versioned ChallengeParticipant records.

    Keys are (challenge_id, username) tuples; the username half is lower-cased
    to match auth.store.UserStore.
    """

    table = _participants
    key_columns = ("challenge_id", "username")
    entity_name = "Participant"

    def _normalize_key(self, key) -> tuple:
        challenge_id, username = key
        return (challenge_id, username.lower())

    def _entity_values(self, participant: ChallengeParticipant) -> dict:
        _check_state(participant.state)
        return {
            "entity_id": participant.entity_id,
            "challenge_id": participant.challenge_id,
            "username": participant.username.lower(),
            "participant_name": participant.participant_name,
            "state": participant.state,
        }

    def _payload_values(self, changes: dict) -> dict:
        if "state" in changes:
            _check_state(changes["state"])
        return changes

    def _row_to_entity(self, row) -> ChallengeParticipant:
        return ChallengeParticipant(
            challenge_id=row.challenge_id,
            username=row.username,
            state=row.state,
            participant_name=row.participant_name,
            **temporal_fields(row),
        )

    def invite(self, challenge_id: str, usernames: list[str]) -> list[ChallengeParticipant]:
        """Create PENDING participations for every username in one transaction.

        Raises ConflictError (and writes nothing) if any of them is already an
        active participant of the challenge.
        """
        return self.insert_versions([ChallengeParticipant(challenge_id=challenge_id, username=u) for u in usernames])

    def close_for_challenge(self, challenge_id: str) -> int:
        """Close every active participation of a challenge. Returns the number closed."""
        return self.close_where(challenge_id=challenge_id)
