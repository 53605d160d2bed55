"""Backup of a whole library database as a plain SQL script.

The script holds the schema and every row. Importing it replaces the current
contents in a single transaction, so a broken script leaves the database as
it was.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Dict, Union

from database import TABLES, Database
from errors import ConnectivityError, ConstraintViolation, ValidationError

logger = logging.getLogger(__name__)

# iterdump wraps its output in its own transaction; import supplies one instead.
_DUMP_TRANSACTION_LINES = {"BEGIN TRANSACTION;", "COMMIT;"}


def export_database(db: Database, path: Union[str, Path]) -> int:
    """Write the schema and all rows to ``path``. Returns the number of statements written."""
    path = Path(path)
    count = 0
    try:
        f = open(path, "w", encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"Cannot write backup to {path}: {e}") from e
    with f, db.connection() as conn:
        for statement in conn.iterdump():
            f.write(f"{statement}\n")
            count += 1
    logger.info("Database %s exported to %s (%d statements)", db.path, path, count)
    return count


def import_database(db: Database, path: Union[str, Path]) -> None:
    """Replace the contents of ``db`` with the SQL script at ``path``."""
    path = Path(path)
    try:
        script = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"Cannot read backup {path}: {e}") from e
    body = "\n".join(line for line in script.splitlines() if line.strip() not in _DUMP_TRANSACTION_LINES)
    drops = "".join(f"DROP TABLE IF EXISTS {table};\n" for table in TABLES)

    conn = db.get_db_connection()
    try:
        # Rows are inserted table by table in name order; check references once at the end.
        conn.execute("PRAGMA foreign_keys = OFF;")
        conn.executescript("BEGIN;\n" + drops + body)
        violations = conn.execute("PRAGMA foreign_key_check").fetchall()
        if violations:
            conn.execute("ROLLBACK")
            raise ConstraintViolation(
                f"Backup {path} has {len(violations)} rows with broken references; nothing was imported."
            )
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        if isinstance(e, sqlite3.IntegrityError):
            raise ConstraintViolation(f"Import of {path} failed: {e}") from e
        if "locked" in str(e):
            raise ConnectivityError(f"Import of {path} failed: {e}") from e
        raise ValidationError(f"{path} is not a valid backup script: {e}") from e
    finally:
        conn.close()

    # Older backups may lack tables or indexes added since.
    db.create_tables()
    logger.info("Database %s imported from %s", db.path, path)


def clear_database(db: Database) -> Dict[str, int]:
    """Delete every row from every table and restart the id counters."""
    removed: Dict[str, int] = {}
    with db.transaction() as conn:
        for table in TABLES:
            removed[table] = conn.execute(f"DELETE FROM {table}").rowcount
        conn.execute(
            "DELETE FROM sqlite_sequence WHERE name IN ({})".format(", ".join("?" for _ in TABLES)),
            TABLES
        )
    logger.warning("Database %s cleared: %s", db.path, removed)
    return removed
