import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings
from errors import ConnectivityError, ConstraintViolation, NotFound

logger = logging.getLogger(__name__)

# The fine is derived by the database at read time and can never be written.
SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        full_name TEXT NOT NULL,
        address TEXT CHECK (address IS NULL OR length(address) <= 255),
        phone TEXT NOT NULL,
        registration_date TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS books (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        publication_year INTEGER NOT NULL,
        copies_available INTEGER NOT NULL DEFAULT 0 CHECK (copies_available >= 0)
    );

    CREATE TABLE IF NOT EXISTS journals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        issue_number INTEGER NOT NULL CHECK (issue_number > 0),
        publication_year INTEGER NOT NULL,
        copies_available INTEGER NOT NULL DEFAULT 0 CHECK (copies_available >= 0)
    );

    CREATE TABLE IF NOT EXISTS checkouts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        book_id INTEGER REFERENCES books(id),
        journal_id INTEGER REFERENCES journals(id),
        checkout_date TEXT NOT NULL,
        due_date TEXT NOT NULL,
        return_date TEXT,
        overdue_fine INTEGER GENERATED ALWAYS AS (
            CASE
                WHEN return_date IS NOT NULL AND julianday(return_date) > julianday(due_date)
                THEN CAST(julianday(return_date) - julianday(due_date) AS INTEGER) * {fine_per_day}
                ELSE 0
            END
        ) VIRTUAL,
        CHECK ((book_id IS NULL) <> (journal_id IS NULL))
    );

    CREATE INDEX IF NOT EXISTS idx_checkouts_user_id ON checkouts(user_id);
    CREATE INDEX IF NOT EXISTS idx_checkouts_book_id ON checkouts(book_id);
    CREATE INDEX IF NOT EXISTS idx_checkouts_journal_id ON checkouts(journal_id);
    CREATE INDEX IF NOT EXISTS idx_checkouts_return_date ON checkouts(return_date);
"""

# Child table first so deletes never trip a foreign key.
TABLES = ("checkouts", "books", "journals", "users")

# Ids are SQLite INTEGERs; anything wider cannot name a row.
_OUT_OF_RANGE = "No record with that id: ids are 64-bit integers."


class Database:
    """Handle on one SQLite library database.

    A connection is opened per operation and closed on every exit path.
    Driver errors are translated into the library's own error types here and
    nowhere else.
    """

    def __init__(self, path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.path = path or settings.database_file
        self.timeout = settings.database_timeout if timeout is None else timeout

    def __repr__(self) -> str:  # pragma: no cover
        return f"Database({self.path!r})"

    def get_db_connection(self) -> sqlite3.Connection:
        """Open a new connection in autocommit mode; transactions are explicit."""
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None,
                                   check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.OperationalError as e:
            raise ConnectivityError(f"Cannot open database {self.path}: {e}") from e
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads and single statements."""
        conn = self.get_db_connection()
        try:
            yield conn
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e
        except sqlite3.OperationalError as e:
            raise ConnectivityError(str(e)) from e
        except OverflowError as e:
            raise NotFound(_OUT_OF_RANGE) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction: commit on normal exit, roll back on any error.

        BEGIN IMMEDIATE takes the write lock up front, so two writers that
        read-then-update the same row are serialized rather than interleaved.
        """
        conn = self.get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            self._rollback(conn)
            raise ConstraintViolation(str(e)) from e
        except sqlite3.OperationalError as e:
            self._rollback(conn)
            raise ConnectivityError(str(e)) from e
        except OverflowError as e:
            self._rollback(conn)
            raise NotFound(_OUT_OF_RANGE) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def create_tables(self) -> None:
        """Create the library tables if they do not exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA.format(fine_per_day=int(settings.fine_per_day)))

    def initialize_database(self) -> None:
        """Switch to WAL mode and make sure the schema exists."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
        self.create_tables()
        logger.debug("Database initialized at %s", self.path)

    def ping(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except ConnectivityError:
            return False
