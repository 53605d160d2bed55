"""Checkout ledger: issuing books and journals, returns, fines.

Issuing an item decrements its copies-available count and inserts an open
checkout in a single transaction. The count is re-read under the write lock,
so two issuances racing for the last copy cannot both succeed.

Returns set the return date only. Whether a return should put the copy back
on the shelf is still undecided, so restoring the count is opt-in
(``restore_copies_on_return``). The fine is derived by the database from the
due and return dates and is never written here.
"""

import logging
import sqlite3
from datetime import date
from typing import Callable, List, Optional, Union

from config import settings
from database import Database
from errors import AlreadyReturned, InsufficientCopies, NotFound, ValidationError
from models import Book, Checkout, ItemKind, Journal, parse_date

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# item kind -> (table, checkouts column)
ITEM_TABLES = {
    ItemKind.BOOK: ("books", "book_id"),
    ItemKind.JOURNAL: ("journals", "journal_id"),
}

CHECKOUT_SELECT = """
    SELECT c.id, c.user_id, c.book_id, c.journal_id,
           c.checkout_date, c.due_date, c.return_date, c.overdue_fine,
           u.full_name AS user_name,
           COALESCE(b.title, j.title) AS item_title
    FROM checkouts c
    LEFT JOIN users u ON u.id = c.user_id
    LEFT JOIN books b ON b.id = c.book_id
    LEFT JOIN journals j ON j.id = c.journal_id
"""


class CheckoutLedger:
    """Issues, returns, corrects and removes checkouts in one library database."""

    def __init__(self, db: Database, today: Callable[[], date] = date.today,
                 restore_copies_on_return: Optional[bool] = None) -> None:
        self.db = db
        self.today = today
        if restore_copies_on_return is None:
            restore_copies_on_return = settings.restore_copies_on_return
        self.restore_copies_on_return = restore_copies_on_return
        db.initialize_database()

    # ------------------------- Core operations ------------------------- #
    def issue_item(self, user_id: int, item_kind: Union[ItemKind, str], item_id: int,
                   due_date: Union[date, str]) -> Checkout:
        """Lend one copy of a book or journal to a user.

        Raises ValidationError for a bad kind or a due date in the past,
        NotFound for an unknown user or item and InsufficientCopies when no
        copy is left. Nothing is written unless every step succeeds.
        """
        kind = self._coerce_kind(item_kind)
        due = self._coerce_date(due_date, "Due date")
        today = self.today()
        if due < today:
            raise ValidationError("Due date cannot be earlier than today.")

        table, column = ITEM_TABLES[kind]
        with self.db.transaction() as conn:
            if not self._exists(conn, "users", user_id):
                logger.warning("Issue rejected: user %s not found", user_id)
                raise NotFound(f"User {user_id} not found.")

            row = conn.execute(f"SELECT copies_available FROM {table} WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                logger.warning("Issue rejected: %s %s not found", kind.value, item_id)
                raise NotFound(f"{kind.value.capitalize()} {item_id} not found.")
            if row["copies_available"] <= 0:
                logger.warning("Issue rejected: no copies of %s %s left", kind.value, item_id)
                raise InsufficientCopies(f"No copies of {kind.value} {item_id} are available.")

            cursor = conn.execute(
                f"UPDATE {table} SET copies_available = copies_available - 1 WHERE id = ? AND copies_available > 0",
                (item_id,)
            )
            if cursor.rowcount != 1:
                logger.warning("Issue rejected: no copies of %s %s left", kind.value, item_id)
                raise InsufficientCopies(f"No copies of {kind.value} {item_id} are available.")

            cursor = conn.execute(
                f"INSERT INTO checkouts (user_id, {column}, checkout_date, due_date, return_date) "
                "VALUES (?, ?, ?, ?, NULL)",
                (user_id, item_id, today.isoformat(), due.isoformat())
            )
            checkout = self._fetch(conn, cursor.lastrowid)

        logger.info("Checkout %s: %s %s issued to user %s, due %s",
                    checkout.id, kind.value, item_id, user_id, due.isoformat())
        return checkout

    def register_return(self, checkout_id: int) -> Checkout:
        """Mark a checkout as returned today and return it with its fine."""
        with self.db.transaction() as conn:
            checkout = self._fetch(conn, checkout_id)
            if checkout is None:
                raise NotFound(f"Checkout {checkout_id} not found.")
            if not checkout.is_open:
                logger.warning("Checkout %s was already returned on %s", checkout_id, checkout.return_date)
                raise AlreadyReturned(
                    f"Checkout {checkout_id} was already returned on {checkout.return_date.isoformat()}."
                )

            conn.execute(
                "UPDATE checkouts SET return_date = ? WHERE id = ? AND return_date IS NULL",
                (self.today().isoformat(), checkout_id)
            )
            if self.restore_copies_on_return:
                table, _ = ITEM_TABLES[checkout.item_kind]
                conn.execute(
                    f"UPDATE {table} SET copies_available = copies_available + 1 WHERE id = ?",
                    (checkout.item_id,)
                )
            checkout = self._fetch(conn, checkout_id)

        logger.info("Checkout %s returned, fine %s", checkout_id, checkout.overdue_fine)
        return checkout

    def edit_checkout(self, checkout_id: int, checkout_date: Union[date, str],
                      due_date: Union[date, str]) -> Checkout:
        """Correct the dates of an open checkout. Copy counts are not touched."""
        new_checkout_date = self._coerce_date(checkout_date, "Checkout date")
        new_due_date = self._coerce_date(due_date, "Due date")
        if new_due_date < new_checkout_date:
            raise ValidationError("Due date cannot be earlier than the checkout date.")

        with self.db.transaction() as conn:
            checkout = self._fetch(conn, checkout_id)
            if checkout is None:
                raise NotFound(f"Checkout {checkout_id} not found.")
            if not checkout.is_open:
                raise AlreadyReturned(f"Checkout {checkout_id} was already returned and cannot be edited.")
            conn.execute(
                "UPDATE checkouts SET checkout_date = ?, due_date = ? WHERE id = ?",
                (new_checkout_date.isoformat(), new_due_date.isoformat(), checkout_id)
            )
            checkout = self._fetch(conn, checkout_id)

        logger.info("Checkout %s edited: checkout %s, due %s",
                    checkout_id, new_checkout_date.isoformat(), new_due_date.isoformat())
        return checkout

    def delete_checkout(self, checkout_id: int) -> None:
        """Remove a checkout record. Copy counts are not adjusted."""
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM checkouts WHERE id = ?", (checkout_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Checkout {checkout_id} not found.")
        logger.info("Checkout %s deleted", checkout_id)

    # ------------------------- Queries ------------------------- #
    def get_checkout(self, checkout_id: int) -> Checkout:
        with self.db.connection() as conn:
            checkout = self._fetch(conn, checkout_id)
        if checkout is None:
            raise NotFound(f"Checkout {checkout_id} not found.")
        return checkout

    def list_checkouts(self, user_id: Optional[int] = None, open_only: bool = False) -> List[Checkout]:
        clauses: List[str] = []
        params: List[object] = []
        if user_id is not None:
            clauses.append("c.user_id = ?")
            params.append(user_id)
        if open_only:
            clauses.append("c.return_date IS NULL")
        query = CHECKOUT_SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY c.id"
        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Checkout.from_dict(dict(row)) for row in rows]

    def list_available_items(self, item_kind: Union[ItemKind, str]) -> List[Union[Book, Journal]]:
        """Books or journals that still have a copy to lend."""
        kind = self._coerce_kind(item_kind)
        with self.db.connection() as conn:
            if kind is ItemKind.BOOK:
                rows = conn.execute(
                    "SELECT id, title, author, publication_year, copies_available FROM books "
                    "WHERE copies_available > 0 ORDER BY title"
                ).fetchall()
                return [Book.from_dict(dict(row)) for row in rows]
            rows = conn.execute(
                "SELECT id, title, issue_number, publication_year, copies_available FROM journals "
                "WHERE copies_available > 0 ORDER BY title, issue_number"
            ).fetchall()
            return [Journal.from_dict(dict(row)) for row in rows]

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _fetch(conn: sqlite3.Connection, checkout_id: int) -> Optional[Checkout]:
        row = conn.execute(CHECKOUT_SELECT + " WHERE c.id = ?", (checkout_id,)).fetchone()
        return Checkout.from_dict(dict(row)) if row else None

    @staticmethod
    def _exists(conn: sqlite3.Connection, table: str, row_id: int) -> bool:
        return conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,)).fetchone() is not None

    @staticmethod
    def _coerce_kind(item_kind: Union[ItemKind, str]) -> ItemKind:
        try:
            return ItemKind(item_kind)
        except ValueError as e:
            raise ValidationError(f"Unknown item kind: {item_kind!r}. Use 'book' or 'journal'.") from e

    @staticmethod
    def _coerce_date(value: Union[date, str], label: str) -> date:
        try:
            parsed = parse_date(value)
        except ValueError as e:
            raise ValidationError(f"{label} must be a date in YYYY-MM-DD format.") from e
        if parsed is None:
            raise ValidationError(f"{label} is required.")
        return parsed
