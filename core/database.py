"""
core/database.py -- Process-wide SQLAlchemy engine registry.

Every store asks this module for its Engine instead of calling create_engine()
itself. The first call for a URL builds the engine; later calls return the
same one, so "connecting" is idempotent and all stores on one database share
a single connection pool.

The registry is guarded by a lock: concurrent first requests (FastAPI runs
sync handlers in a thread pool) must not race to build two engines.

Layer rule: core/ may not import from api/, web/, auth/ or market/.
"""

import logging
import threading

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

logger = logging.getLogger("autozonex.database")

_engines: dict[str, Engine] = {}
_lock = threading.Lock()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on each new SQLite connection.

    PRAGMAs are per-connection in SQLite; pooled connections do not inherit
    them, so this runs from the engine's "connect" event.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_url: str) -> Engine:
    """Return the shared Engine for db_url, creating it on first use."""
    engine = _engines.get(db_url)
    if engine is not None:
        return engine
    with _lock:
        # Re-check under the lock: another thread may have won the race.
        engine = _engines.get(db_url)
        if engine is None:
            connect_args: dict = {}
            if db_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
            if db_url.startswith("sqlite"):
                event.listen(engine, "connect", _set_sqlite_pragmas)
            _engines[db_url] = engine
            logger.info("Database engine created (%s)", engine.url.render_as_string(hide_password=True))
    return engine


def dispose_engine(db_url: str) -> None:
    """Dispose and forget the engine for db_url. A later get_engine() rebuilds it."""
    with _lock:
        engine = _engines.pop(db_url, None)
    if engine is not None:
        engine.dispose()


def ping(engine: Engine) -> bool:
    """Return True if a trivial query succeeds. Used by the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database ping failed", exc_info=True)
        return False
