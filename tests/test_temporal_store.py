"""
tests/test_temporal_store.py -- Versioned storage behaviour of UserStore,
ChallengeStore and ParticipantStore.

Covers:
  - insert: new entity id, conflict on a second active row for the same key
  - supersede: N updates leave N+1 versions, exactly one active, entity id kept
  - close: tombstone, key becomes free again with a new entity id
  - find_as_of: half-open validity intervals
  - list_active: equality filters, role filter, unknown filter rejected
  - concurrent inserts of the same key: exactly one winner
  - concurrent supersedes: losers conflict, one active version remains
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import User
from auth.store import UserStore
from challenges.models import Challenge
from core.database import create_store_engine
from core.errors import ConflictError, NotFoundError
from core.temporal import from_iso, to_iso


def _user(username: str = "alice@hunt.test", roles: list[str] | None = None) -> User:
    return User(
        username=username,
        nickname="alice",
        roles=roles or ["game.player"],
        password_hash="$2b$12$notarealhashnotarealhashnotarealhashnotarealhashnot",
    )


class TestIsoTimestamps:
    def test_naive_datetime_is_treated_as_utc(self) -> None:
        naive = datetime(2024, 5, 1, 12, 0, 0)
        assert from_iso(to_iso(naive)) == naive.replace(tzinfo=timezone.utc)

    def test_fixed_width_strings_sort_chronologically(self) -> None:
        early = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        late = early + timedelta(microseconds=1)
        assert to_iso(early) < to_iso(late)
        assert len(to_iso(early)) == len(to_iso(late))

    def test_none_round_trips_to_none(self) -> None:
        assert from_iso(None) is None


class TestInsert:
    def test_insert_assigns_entity_id_and_opens_version(self, user_store) -> None:
        created = user_store.insert_version(_user())
        assert created.entity_id
        assert created.valid_until is None
        assert created.is_active
        assert created.valid_from.tzinfo is not None

    def test_username_is_lower_cased(self, user_store) -> None:
        user_store.insert_version(_user("Alice@Hunt.Test"))
        assert user_store.find_active("ALICE@hunt.test").username == "alice@hunt.test"

    def test_second_active_row_for_same_key_conflicts(self, user_store) -> None:
        user_store.insert_version(_user())
        with pytest.raises(ConflictError):
            user_store.insert_version(_user())
        assert len(user_store.history("alice@hunt.test")) == 1

    def test_batch_insert_is_all_or_nothing(self, participant_store) -> None:
        participant_store.invite("c1", ["bob@hunt.test"])
        with pytest.raises(ConflictError):
            participant_store.invite("c1", ["carol@hunt.test", "bob@hunt.test"])
        assert participant_store.find_active(("c1", "carol@hunt.test")) is None

    def test_find_active_unknown_key_returns_none(self, user_store) -> None:
        assert user_store.find_active("nobody@hunt.test") is None


class TestSupersede:
    def test_n_updates_leave_n_plus_one_versions(self, user_store) -> None:
        created = user_store.insert_version(_user())
        for i in range(3):
            user_store.supersede("alice@hunt.test", nickname=f"alice-{i}")

        versions = user_store.history("alice@hunt.test")
        assert len(versions) == 4
        assert [v.is_active for v in versions] == [False, False, False, True]
        assert all(v.entity_id == created.entity_id for v in versions)
        assert [v.valid_from for v in versions] == sorted(v.valid_from for v in versions)
        assert versions[-1].nickname == "alice-2"

    def test_closed_version_ends_where_successor_begins(self, user_store) -> None:
        user_store.insert_version(_user())
        user_store.supersede("alice@hunt.test", roles=["game.admin"])
        old, new = user_store.history("alice@hunt.test")
        assert old.valid_until == new.valid_from
        assert old.roles == ["game.player"]
        assert new.roles == ["game.admin"]

    def test_unchanged_columns_are_copied(self, user_store) -> None:
        original = user_store.insert_version(_user())
        updated = user_store.supersede("alice@hunt.test", nickname="ace")
        assert updated.password_hash == original.password_hash
        assert updated.roles == original.roles

    def test_missing_active_version_raises_not_found(self, user_store) -> None:
        with pytest.raises(NotFoundError):
            user_store.supersede("ghost@hunt.test", nickname="x")

    def test_key_column_cannot_change(self, user_store) -> None:
        user_store.insert_version(_user())
        with pytest.raises(ValueError):
            user_store.supersede("alice@hunt.test", username="eve@hunt.test")

    def test_unknown_field_rejected(self, user_store) -> None:
        user_store.insert_version(_user())
        with pytest.raises(ValueError):
            user_store.supersede("alice@hunt.test", favourite_colour="red")

    def test_participant_state_is_validated(self, participant_store) -> None:
        participant_store.invite("c1", ["bob@hunt.test"])
        with pytest.raises(ValueError):
            participant_store.supersede(("c1", "bob@hunt.test"), state="LOST")
        updated = participant_store.supersede(("c1", "BOB@hunt.test"), state="ACCEPTED")
        assert updated.state == "ACCEPTED"


class TestClose:
    def test_close_leaves_no_active_version(self, user_store) -> None:
        user_store.insert_version(_user())
        user_store.close("alice@hunt.test")
        assert user_store.find_active("alice@hunt.test") is None
        assert len(user_store.history("alice@hunt.test")) == 1

    def test_close_without_active_version_raises(self, user_store) -> None:
        with pytest.raises(NotFoundError):
            user_store.close("ghost@hunt.test")

    def test_closed_key_can_be_reused_with_new_entity_id(self, user_store) -> None:
        first = user_store.insert_version(_user())
        user_store.close("alice@hunt.test")
        second = user_store.insert_version(_user())
        assert second.entity_id != first.entity_id
        assert len(user_store.history("alice@hunt.test")) == 2

    def test_close_for_challenge_closes_only_that_challenge(self, participant_store) -> None:
        participant_store.invite("c1", ["a@hunt.test", "b@hunt.test"])
        participant_store.invite("c2", ["a@hunt.test"])
        assert participant_store.close_for_challenge("c1") == 2
        assert participant_store.list_active(challenge_id="c1") == []
        assert len(participant_store.list_active(challenge_id="c2")) == 1


class TestAsOf:
    def test_as_of_returns_version_covering_instant(self, user_store) -> None:
        user_store.insert_version(_user())
        time.sleep(0.002)  # keep the first version's interval non-empty
        user_store.supersede("alice@hunt.test", nickname="ace")
        old, new = user_store.history("alice@hunt.test")

        assert user_store.find_as_of("alice@hunt.test", old.valid_from).nickname == "alice"
        # valid_until is exclusive: the boundary instant belongs to the successor
        assert user_store.find_as_of("alice@hunt.test", old.valid_until).nickname == "ace"
        assert user_store.find_as_of("alice@hunt.test", old.valid_from - timedelta(seconds=1)) is None

    def test_as_of_after_close_is_none(self, user_store) -> None:
        user_store.insert_version(_user())
        user_store.close("alice@hunt.test")
        (closed,) = user_store.history("alice@hunt.test")
        assert user_store.find_as_of("alice@hunt.test", closed.valid_until + timedelta(seconds=1)) is None


class TestListActive:
    def test_role_filter(self, user_store) -> None:
        user_store.insert_version(_user("a@hunt.test", ["game.player"]))
        user_store.insert_version(_user("b@hunt.test", ["game.admin", "game.player"]))
        user_store.insert_version(_user("c@hunt.test", ["viewer"]))

        assert [u.username for u in user_store.list_active()] == ["a@hunt.test", "b@hunt.test", "c@hunt.test"]
        assert [u.username for u in user_store.list_active(role="game.player")] == ["a@hunt.test", "b@hunt.test"]
        assert [u.username for u in user_store.list_active(role="game.admin")] == ["b@hunt.test"]

    def test_closed_versions_are_excluded(self, user_store) -> None:
        user_store.insert_version(_user("a@hunt.test"))
        user_store.supersede("a@hunt.test", nickname="again")
        assert len(user_store.list_active()) == 1

    def test_unknown_filter_rejected(self, user_store) -> None:
        with pytest.raises(ValueError):
            user_store.list_active(shoe_size=42)

    def test_challenge_name_unique_among_active(self, challenge_store) -> None:
        start = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
        first = challenge_store.insert_version(Challenge(challenge_name="Old Town", start_time=start))
        with pytest.raises(ConflictError):
            challenge_store.insert_version(Challenge(challenge_name="Old Town", start_time=start))
        challenge_store.close(first.challenge_id)
        challenge_store.insert_version(Challenge(challenge_name="Old Town", start_time=start))


class TestConcurrentInsert:
    def test_only_one_concurrent_insert_wins(self, tmp_path) -> None:
        store = UserStore(create_store_engine(f"sqlite:///{tmp_path / 'race.db'}"))
        barrier = threading.Barrier(4)
        outcomes: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            try:
                store.insert_version(_user("race@hunt.test"))
                result = "ok"
            except ConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]
        assert len(store.history("race@hunt.test")) == 1
        store.engine.dispose()


class TestConcurrentSupersede:
    def test_losers_conflict_and_one_version_stays_active(self, tmp_path) -> None:
        store = UserStore(create_store_engine(f"sqlite:///{tmp_path / 'supersede.db'}"))
        store.insert_version(_user("race@hunt.test"))
        barrier = threading.Barrier(4)
        outcomes: list[str] = []
        lock = threading.Lock()

        def worker(n: int) -> None:
            barrier.wait()
            try:
                store.supersede("race@hunt.test", nickname=f"racer-{n}")
                result = "ok"
            except ConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # A writer that starts after the winner committed supersedes the new
        # version instead of conflicting, so only the shape is fixed.
        assert len(outcomes) == 4
        assert set(outcomes) <= {"ok", "conflict"}
        assert "ok" in outcomes
        history = store.history("race@hunt.test")
        assert len(history) == 1 + outcomes.count("ok")
        assert [v.is_active for v in history].count(True) == 1
        assert len(store.list_active()) == 1
        store.engine.dispose()
