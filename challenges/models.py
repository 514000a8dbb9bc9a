"""
challenges/models.py -- Domain dataclasses for challenges and their participants.

These are pure data containers. The versioning rules live in
core/temporal.py; the stores in challenges/store.py map rows to these types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

PARTICIPANT_STATES = ("PENDING", "INVITED", "ACCEPTED", "REJECTED")


@dataclass
class Challenge:
    """One version of a challenge.

    challenge_id is the natural key and doubles as entity_id. It is None
    before the first insert; ChallengeStore generates it.
    start_time is always timezone-aware UTC once read back from the store.
    """

    challenge_name: str
    start_time: datetime
    challenge_desc: str = ""
    waypoints_ref: str = ""
    duration: int = 90  # minutes
    challenge_id: Optional[str] = None
    entity_id: Optional[str] = None
    row_id: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


@dataclass
class ChallengeParticipant:
    """One version of a user's participation in a challenge.

    Natural key: (challenge_id, username). A fresh invitation starts in
    PENDING with an empty participant_name.
    """

    challenge_id: str
    username: str
    state: str = "PENDING"  # one of PARTICIPANT_STATES
    participant_name: str = ""
    entity_id: Optional[str] = None
    row_id: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


@dataclass(frozen=True)
class RegistryEntry:
    """A (challenge_id, start_time) pair handed out by ChallengeRegistry.

    start_time is a private copy; the registry keeps its own.
    """

    challenge_id: str
    start_time: datetime
