"""Opening SQLite connections and running atomic units of work."""

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger


def open_connection(db_path: Path | str, *, read_only: bool = False) -> sqlite3.Connection:
    """Open a connection with foreign keys enforced and explicit transactions.

    The writer switches the database to WAL so read-only connections in other
    threads see the last committed state while a mutation is in progress.
    """
    if read_only:
        conn = sqlite3.connect(
            f"{Path(db_path).resolve().as_uri()}?mode=ro",
            uri=True,
            isolation_level=None,
            check_same_thread=False,
        )
    else:
        conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")
    logger.debug("Opened {} connection to {}", "read-only" if read_only else "write", db_path)
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the block atomically: commit on success, roll back on any error.

    Nested use inside an open transaction becomes a savepoint, so an inner
    failure undoes only the inner block when the caller handles it.
    """
    if conn.in_transaction:
        name = f"sp_{uuid.uuid4().hex}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
