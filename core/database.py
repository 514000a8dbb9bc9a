"""
core/database.py -- Engine construction shared by every store.

One Engine per process, created in the API lifespan (or the CLI) and passed
to UserStore, ChallengeStore and ParticipantStore. Each store owns its own
MetaData and calls create_all() on construction, so the schema exists as soon
as the first store is built.

Layer rule: core/ is the kernel. No imports from api/, auth/, or challenges/.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while a writer holds the lock. Set per-connection
    because SQLite PRAGMAs are not inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Build the Engine used by all repositories.

    check_same_thread=False is required for SQLite because FastAPI runs sync
    route handlers in a worker thread pool; connections are handed between
    threads by the pool, never used by two threads at once.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
