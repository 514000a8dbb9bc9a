"""
core/temporal.py -- Bitemporal (append-only, versioned) repository base.

Pattern: Repository + Data Mapper, shared by UserStore, ChallengeStore and
ParticipantStore. Subclasses declare their Table, natural key columns and
row mapper; this module owns every SQL statement that touches the temporal
columns, so the lifecycle rules live in exactly one place.

Row shape (built by temporal_table()):
  row_id       INTEGER PK      -- one per version, never reused
  entity_id    VARCHAR(36)     -- stable identity, carried through versions
  <natural key columns>
  <payload columns>
  valid_from   VARCHAR(32)     -- ISO 8601 UTC, microsecond precision
  valid_until  VARCHAR(32)     -- NULL while the version is active

Invariants:
  - At most one active row per natural key. Enforced by a partial UNIQUE
    index (WHERE valid_until IS NULL), which is also the only concurrency
    control: two writers racing on the same key collide in the database and
    the loser gets ConflictError. There is no application-level lock.
  - Updates never touch payload in place. supersede() closes the active row
    (valid_until = now) and inserts the replacement (valid_from = now) inside
    one transaction.
  - Rows are never deleted here. close() ends a version with no successor.

Timestamps are stored as fixed-width ISO strings (always six fractional
digits, always +00:00) so string comparison in SQL is chronological
comparison on every backend.

Layer rule: core/ is the kernel. No imports from api/, auth/, or challenges/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, and_, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.errors import ConflictError, NotFoundError

logger = logging.getLogger("huntgate.store")

_TEMPORAL_COLUMNS = ("row_id", "entity_id", "valid_from", "valid_until")

# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime to the fixed-width UTC form used in every temporal column.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Schema builder
# ---------------------------------------------------------------------------


def temporal_table(name: str, metadata: MetaData, key_columns: list[Column], *payload: Column) -> Table:
    """Build a versioned table with the active-row and history indexes.

    idx_<name>_active   UNIQUE (natural key) WHERE valid_until IS NULL
    idx_<name>_entity   UNIQUE (entity_id)   WHERE valid_until IS NULL
    idx_<name>_temporal (natural key, valid_from, valid_until) -- history and
                        point-in-time lookups
    """
    table = Table(
        name,
        metadata,
        Column("row_id", Integer, primary_key=True, autoincrement=True),
        Column("entity_id", String(36), nullable=False),
        *key_columns,
        *payload,
        Column("valid_from", String(32), nullable=False),
        Column("valid_until", String(32)),
    )
    keys = [table.c[col.name] for col in key_columns]
    active = table.c.valid_until.is_(None)
    Index(f"idx_{name}_active", *keys, unique=True, sqlite_where=active, postgresql_where=active)
    Index(f"idx_{name}_entity", table.c.entity_id, unique=True, sqlite_where=active, postgresql_where=active)
    Index(f"idx_{name}_temporal", *keys, table.c.valid_from, table.c.valid_until)
    return table


# ---------------------------------------------------------------------------
# Repository base
# ---------------------------------------------------------------------------


class TemporalStore:
    """Generic bitemporal repository.

    Subclasses set:
        table        -- built with temporal_table()
        key_columns  -- natural key column names, in key-tuple order
        entity_name  -- used in error messages ("User not found")

    and implement _row_to_entity() / _entity_values(). A natural key is passed
    as a plain value for single-column keys or as a tuple for composite keys.
    """

    table: Table
    key_columns: tuple[str, ...]
    entity_name: str = "Record"

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.table.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _row_to_entity(self, row) -> Any:
        raise NotImplementedError

    def _entity_values(self, entity) -> dict:
        """Return natural key + payload column values for a new entity."""
        raise NotImplementedError

    def _payload_values(self, changes: dict) -> dict:
        """Convert supersede() keyword changes into column values."""
        return changes

    def _normalize_key(self, key) -> tuple:
        return key if isinstance(key, tuple) else (key,)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _match(self, key):
        values = self._normalize_key(key)
        if len(values) != len(self.key_columns):
            raise ValueError(f"{self.entity_name} key needs {len(self.key_columns)} part(s), got {values!r}")
        return and_(*(self.table.c[name] == value for name, value in zip(self.key_columns, values)))

    def _active(self):
        return self.table.c.valid_until.is_(None)

    def _describe(self, key) -> dict:
        return dict(zip(self.key_columns, self._normalize_key(key)))

    def _get_rows(self, conn, row_ids: list[int]) -> list:
        rows = conn.execute(
            self.table.select().where(self.table.c.row_id.in_(row_ids)).order_by(self.table.c.row_id)
        ).fetchall()
        return [self._row_to_entity(r) for r in rows]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_active(self, key):
        """Return the single active version for a natural key, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(self.table.select().where(self._match(key), self._active())).fetchone()
        return self._row_to_entity(row) if row is not None else None

    def find_as_of(self, key, at: datetime):
        """Return the version that was active at instant `at`, or None.

        A version covers the half-open interval [valid_from, valid_until).
        """
        at_iso = to_iso(at)
        c = self.table.c
        with self.engine.connect() as conn:
            row = conn.execute(
                self.table.select()
                .where(
                    self._match(key),
                    c.valid_from <= at_iso,
                    or_(c.valid_until.is_(None), c.valid_until > at_iso),
                )
                .order_by(c.valid_from.desc(), c.row_id.desc())
                .limit(1)
            ).fetchone()
        return self._row_to_entity(row) if row is not None else None

    def list_active(self, **filters) -> list:
        """Return all active versions, optionally filtered by column equality.

        Unknown filter names raise ValueError rather than being ignored.
        """
        unknown = set(filters) - set(self.table.c.keys())
        if unknown:
            raise ValueError(f"Unknown {self.entity_name} filter(s): {sorted(unknown)!r}")
        clauses = [self.table.c[name] == value for name, value in filters.items()]
        order = [self.table.c[name] for name in self.key_columns]
        with self.engine.connect() as conn:
            rows = conn.execute(self.table.select().where(self._active(), *clauses).order_by(*order)).fetchall()
        return [self._row_to_entity(r) for r in rows]

    def history(self, key) -> list:
        """Return every version of a natural key, oldest first.

        Ties on valid_from (two writes inside one clock tick) fall back to
        insertion order via row_id.
        """
        c = self.table.c
        with self.engine.connect() as conn:
            rows = conn.execute(
                self.table.select().where(self._match(key)).order_by(c.valid_from, c.row_id)
            ).fetchall()
        return [self._row_to_entity(r) for r in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_versions(self, entities: list) -> list:
        """Insert new active versions in one transaction.

        Raises ConflictError if any natural key already has an active row --
        including the case where a concurrent writer created it between our
        caller's existence check and this insert. Nothing is written on
        conflict.
        """
        now = to_iso(utcnow())
        rows = []
        for entity in entities:
            values = self._entity_values(entity)
            values["entity_id"] = values.get("entity_id") or str(uuid.uuid4())
            values["valid_from"] = now
            values["valid_until"] = None
            rows.append(values)
        try:
            with self.engine.begin() as conn:
                row_ids = []
                for values in rows:
                    row_ids.append(conn.execute(self.table.insert().values(**values)).inserted_primary_key[0])
                created = self._get_rows(conn, row_ids)
        except IntegrityError as exc:
            raise ConflictError(f"{self.entity_name} already exists") from exc
        logger.info("Inserted %d %s version(s)", len(created), self.entity_name)
        return created

    def insert_version(self, entity):
        """Insert one new active version. See insert_versions()."""
        return self.insert_versions([entity])[0]

    def supersede(self, key, **changes):
        """Close the active version and insert a replacement carrying `changes`.

        Columns not named in `changes` are copied from the closed version, so
        entity_id and the natural key are preserved. Both steps share one
        transaction: either the old row is closed AND the new row exists, or
        nothing changed.

        Raises NotFoundError if there is no active version, ConflictError if a
        concurrent writer closed or replaced it first.
        """
        protected = set(self.key_columns) | set(_TEMPORAL_COLUMNS)
        bad = set(changes) & protected
        if bad:
            raise ValueError(f"Cannot change {sorted(bad)!r} on {self.entity_name}")
        payload = self._payload_values(changes)
        unknown = set(payload) - set(self.table.c.keys())
        if unknown:
            raise ValueError(f"Unknown {self.entity_name} field(s): {sorted(unknown)!r}")

        now = to_iso(utcnow())
        c = self.table.c
        try:
            with self.engine.begin() as conn:
                current = conn.execute(self.table.select().where(self._match(key), self._active())).fetchone()
                if current is None:
                    raise NotFoundError(f"{self.entity_name} not found", detail=self._describe(key))
                closed = conn.execute(
                    self.table.update()
                    .where(c.row_id == current.row_id, c.valid_until.is_(None))
                    .values(valid_until=now)
                )
                if closed.rowcount != 1:
                    raise ConflictError(
                        f"{self.entity_name} was modified concurrently", detail=self._describe(key)
                    )
                values = {name: getattr(current, name) for name in c.keys() if name != "row_id"}
                values.update(payload)
                values["valid_from"] = now
                values["valid_until"] = None
                row_id = conn.execute(self.table.insert().values(**values)).inserted_primary_key[0]
                replacement = self._get_rows(conn, [row_id])[0]
        except IntegrityError as exc:
            raise ConflictError(
                f"{self.entity_name} was modified concurrently", detail=self._describe(key)
            ) from exc
        logger.info("Superseded %s %s", self.entity_name, self._describe(key))
        return replacement

    def close(self, key) -> None:
        """End the active version without a successor (soft delete).

        Raises NotFoundError if there is no active version.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                self.table.update().where(self._match(key), self._active()).values(valid_until=to_iso(utcnow()))
            )
        if result.rowcount == 0:
            raise NotFoundError(f"{self.entity_name} not found", detail=self._describe(key))
        logger.info("Closed %s %s", self.entity_name, self._describe(key))

    def close_where(self, **filters) -> int:
        """Close every active version matching column equality filters. Returns the count."""
        clauses = [self.table.c[name] == value for name, value in filters.items()]
        with self.engine.begin() as conn:
            result = conn.execute(
                self.table.update().where(self._active(), *clauses).values(valid_until=to_iso(utcnow()))
            )
        return result.rowcount


def temporal_fields(row) -> dict:
    """Map the shared temporal columns of a row to entity keyword arguments."""
    return {
        "row_id": row.row_id,
        "entity_id": row.entity_id,
        "valid_from": from_iso(row.valid_from),
        "valid_until": from_iso(row.valid_until),
    }
