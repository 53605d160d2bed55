import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from database import Database
from errors import NotFound, ValidationError
from models import Book, Journal, User
from utils.validators import (
    MAX_ADDRESS_LENGTH,
    MIN_BOOK_YEAR,
    MIN_JOURNAL_YEAR,
    NumberValidator,
    PhoneValidator,
    TextValidator,
)

logger = logging.getLogger(__name__)


class Library:
    """Manages the users, books and journals of one library database."""

    def __init__(self, db: Database, today: Callable[[], date] = date.today) -> None:
        self.db = db
        self.today = today
        db.initialize_database()  # Ensure DB and tables exist

    # ------------------------- Users ------------------------- #
    def add_user(self, user: User) -> User:
        """Register a new user. The registration date is always today."""
        self._validate_user(user)
        user.registration_date = self.today()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO users (full_name, address, phone, registration_date) VALUES (?, ?, ?, ?)",
                (user.full_name, user.address, user.phone, user.registration_date.isoformat())
            )
            user.id = cursor.lastrowid
        logger.info("User %s registered: %s", user.id, user.full_name)
        return user

    def update_user(self, user_id: int, *, full_name: Optional[str] = None, address: Optional[str] = None,
                    phone: Optional[str] = None) -> User:
        """Update name, address and/or phone. The registration date never changes."""
        if full_name is None and address is None and phone is None:
            raise ValidationError("Nothing to update. Provide full name, address and/or phone.")
        user = self.get_user(user_id)
        updated = User(
            id=user.id,
            full_name=full_name if full_name is not None else user.full_name,
            address=address if address is not None else user.address,
            phone=phone if phone is not None else user.phone,
            registration_date=user.registration_date,
        )
        self._validate_user(updated)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE users SET full_name = ?, address = ?, phone = ? WHERE id = ?",
                (updated.full_name, updated.address, updated.phone, user_id)
            )
        return updated

    def remove_user(self, user_id: int) -> bool:
        """Delete a user. Fails with ConstraintViolation while checkouts reference them."""
        return self._delete("users", user_id)

    def find_user(self, user_id: int) -> Optional[User]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT id, full_name, address, phone, registration_date FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def get_user(self, user_id: int) -> User:
        user = self.find_user(user_id)
        if not user:
            raise NotFound(f"User {user_id} not found.")
        return user

    def list_users(self) -> List[User]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, full_name, address, phone, registration_date FROM users ORDER BY full_name"
            ).fetchall()
        return [User.from_dict(dict(row)) for row in rows]

    def search_users(self, query: str) -> List[User]:
        """Search users by name or phone."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, full_name, address, phone, registration_date FROM users "
                "WHERE full_name LIKE ? OR phone LIKE ? ORDER BY full_name",
                (f"%{query}%", f"%{query}%")
            ).fetchall()
        return [User.from_dict(dict(row)) for row in rows]

    # ------------------------- Books ------------------------- #
    def add_book(self, book: Book) -> Book:
        self._validate_book(book)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO books (title, author, publication_year, copies_available) VALUES (?, ?, ?, ?)",
                (book.title, book.author, book.publication_year, book.copies_available)
            )
            book.id = cursor.lastrowid
        logger.info("Book %s added: %s", book.id, book.title)
        return book

    def update_book(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    publication_year: Optional[int] = None, copies_available: Optional[int] = None) -> Book:
        if title is None and author is None and publication_year is None and copies_available is None:
            raise ValidationError("Nothing to update. Provide title, author, year and/or copies.")
        book = self.get_book(book_id)
        updated = Book(
            id=book.id,
            title=title if title is not None else book.title,
            author=author if author is not None else book.author,
            publication_year=publication_year if publication_year is not None else book.publication_year,
            copies_available=copies_available if copies_available is not None else book.copies_available,
        )
        self._validate_book(updated)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE books SET title = ?, author = ?, publication_year = ?, copies_available = ? WHERE id = ?",
                (updated.title, updated.author, updated.publication_year, updated.copies_available, book_id)
            )
        return updated

    def remove_book(self, book_id: int) -> bool:
        return self._delete("books", book_id)

    def find_book(self, book_id: int) -> Optional[Book]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT id, title, author, publication_year, copies_available FROM books WHERE id = ?", (book_id,)
            ).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def get_book(self, book_id: int) -> Book:
        book = self.find_book(book_id)
        if not book:
            raise NotFound(f"Book {book_id} not found.")
        return book

    def list_books(self) -> List[Book]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, title, author, publication_year, copies_available FROM books ORDER BY title"
            ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def search_books(self, query: str) -> List[Book]:
        """Search for books by title or author."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, title, author, publication_year, copies_available FROM books "
                "WHERE title LIKE ? OR author LIKE ? ORDER BY title",
                (f"%{query}%", f"%{query}%")
            ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    # ------------------------- Journals ------------------------- #
    def add_journal(self, journal: Journal) -> Journal:
        self._validate_journal(journal)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO journals (title, issue_number, publication_year, copies_available) VALUES (?, ?, ?, ?)",
                (journal.title, journal.issue_number, journal.publication_year, journal.copies_available)
            )
            journal.id = cursor.lastrowid
        logger.info("Journal %s added: %s #%s", journal.id, journal.title, journal.issue_number)
        return journal

    def update_journal(self, journal_id: int, *, title: Optional[str] = None, issue_number: Optional[int] = None,
                       publication_year: Optional[int] = None, copies_available: Optional[int] = None) -> Journal:
        if title is None and issue_number is None and publication_year is None and copies_available is None:
            raise ValidationError("Nothing to update. Provide title, issue number, year and/or copies.")
        journal = self.get_journal(journal_id)
        updated = Journal(
            id=journal.id,
            title=title if title is not None else journal.title,
            issue_number=issue_number if issue_number is not None else journal.issue_number,
            publication_year=publication_year if publication_year is not None else journal.publication_year,
            copies_available=copies_available if copies_available is not None else journal.copies_available,
        )
        self._validate_journal(updated)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE journals SET title = ?, issue_number = ?, publication_year = ?, copies_available = ? "
                "WHERE id = ?",
                (updated.title, updated.issue_number, updated.publication_year, updated.copies_available, journal_id)
            )
        return updated

    def remove_journal(self, journal_id: int) -> bool:
        return self._delete("journals", journal_id)

    def find_journal(self, journal_id: int) -> Optional[Journal]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT id, title, issue_number, publication_year, copies_available FROM journals WHERE id = ?",
                (journal_id,)
            ).fetchone()
        return Journal.from_dict(dict(row)) if row else None

    def get_journal(self, journal_id: int) -> Journal:
        journal = self.find_journal(journal_id)
        if not journal:
            raise NotFound(f"Journal {journal_id} not found.")
        return journal

    def list_journals(self) -> List[Journal]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, title, issue_number, publication_year, copies_available FROM journals "
                "ORDER BY title, issue_number"
            ).fetchall()
        return [Journal.from_dict(dict(row)) for row in rows]

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        today = self.today().isoformat()
        with self.db.connection() as conn:
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            total_books = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            total_journals = conn.execute("SELECT COUNT(*) FROM journals").fetchone()[0]
            copies_available = conn.execute(
                "SELECT COALESCE((SELECT SUM(copies_available) FROM books), 0)"
                " + COALESCE((SELECT SUM(copies_available) FROM journals), 0)"
            ).fetchone()[0]
            open_checkouts = conn.execute(
                "SELECT COUNT(*) FROM checkouts WHERE return_date IS NULL"
            ).fetchone()[0]
            overdue_checkouts = conn.execute(
                "SELECT COUNT(*) FROM checkouts WHERE return_date IS NULL AND due_date < ?", (today,)
            ).fetchone()[0]
            total_fines = conn.execute("SELECT COALESCE(SUM(overdue_fine), 0) FROM checkouts").fetchone()[0]

        return {
            "total_users": total_users,
            "total_books": total_books,
            "total_journals": total_journals,
            "copies_available": copies_available,
            "open_checkouts": open_checkouts,
            "overdue_checkouts": overdue_checkouts,
            "total_fines": total_fines,
        }

    # ------------------------- Helpers ------------------------- #
    def _delete(self, table: str, row_id: int) -> bool:
        # table is always one of the fixed names above, never user input
        with self.db.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Removed %s row %s", table, row_id)
        return deleted

    def _validate_user(self, user: User) -> None:
        if not TextValidator.is_non_empty(user.full_name):
            raise ValidationError("Full name cannot be empty.")
        if not TextValidator.starts_with_uppercase(user.full_name):
            raise ValidationError("Full name must start with an uppercase letter.")
        if not TextValidator.fits_length(user.address, MAX_ADDRESS_LENGTH):
            raise ValidationError(f"Address cannot be longer than {MAX_ADDRESS_LENGTH} characters.")
        if not PhoneValidator.is_valid_phone(user.phone):
            raise ValidationError("Phone number must start with + and contain only digits.")

    def _validate_book(self, book: Book) -> None:
        if not TextValidator.is_non_empty(book.title):
            raise ValidationError("Book title cannot be empty.")
        if not TextValidator.is_non_empty(book.author):
            raise ValidationError("Book author cannot be empty.")
        current_year = self.today().year
        if not NumberValidator.is_valid_year(book.publication_year, MIN_BOOK_YEAR, current_year):
            raise ValidationError(f"Publication year must be between {MIN_BOOK_YEAR} and {current_year}.")
        if not NumberValidator.is_non_negative(book.copies_available):
            raise ValidationError("Copies available must be zero or a positive number.")

    def _validate_journal(self, journal: Journal) -> None:
        if not TextValidator.is_non_empty(journal.title):
            raise ValidationError("Journal title cannot be empty.")
        if not NumberValidator.is_positive(journal.issue_number):
            raise ValidationError("Issue number must be a positive number.")
        current_year = self.today().year
        if not NumberValidator.is_valid_year(journal.publication_year, MIN_JOURNAL_YEAR, current_year):
            raise ValidationError(f"Publication year must be between {MIN_JOURNAL_YEAR} and {current_year}.")
        if not NumberValidator.is_non_negative(journal.copies_available):
            raise ValidationError("Copies available must be zero or a positive number.")
