from __future__ import annotations

from datetime import date, datetime
from enum import Enum


class ItemKind(str, Enum):
    BOOK = "book"
    JOURNAL = "journal"


def parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def calculate_fine(due_date: date, return_date: date | None, per_day: int = 10) -> int:
    """Overdue fine for a checkout: ``per_day`` for every day past the due date.

    Mirrors the ``checkouts.overdue_fine`` generated column; an unreturned
    checkout has no fine yet.
    """
    if return_date is None:
        return 0
    return max(0, (return_date - due_date).days) * per_day


class User:
    """A registered library reader."""

    def __init__(self, full_name: str, phone: str, address: str | None = None,
                 registration_date: date | None = None, id: int | None = None) -> None:
        self.id = id
        self.full_name = full_name.strip()
        self.address = address.strip() if address else None
        self.phone = phone.strip()
        self.registration_date = parse_date(registration_date)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.full_name} ({self.phone})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "address": self.address,
            "phone": self.phone,
            "registration_date": _iso(self.registration_date),
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data.get("id"),
            full_name=data["full_name"],
            address=data.get("address"),
            phone=data["phone"],
            registration_date=data.get("registration_date"),
        )


class Book:
    """A book title and the number of copies on the shelf."""

    kind = ItemKind.BOOK

    def __init__(self, title: str, author: str, publication_year: int, copies_available: int = 0,
                 id: int | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.publication_year = publication_year
        self.copies_available = copies_available

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.publication_year})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "publication_year": self.publication_year,
            "copies_available": self.copies_available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            publication_year=data["publication_year"],
            copies_available=data.get("copies_available") or 0,
        )


class Journal:
    """A single journal issue and the number of copies on the shelf."""

    kind = ItemKind.JOURNAL

    def __init__(self, title: str, issue_number: int, publication_year: int, copies_available: int = 0,
                 id: int | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.issue_number = issue_number
        self.publication_year = publication_year
        self.copies_available = copies_available

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} #{self.issue_number} ({self.publication_year})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "issue_number": self.issue_number,
            "publication_year": self.publication_year,
            "copies_available": self.copies_available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Journal":
        return Journal(
            id=data.get("id"),
            title=data["title"],
            issue_number=data["issue_number"],
            publication_year=data["publication_year"],
            copies_available=data.get("copies_available") or 0,
        )


class Checkout:
    """One loan of a book or a journal to a user.

    ``overdue_fine`` is read back from the database, where it is derived from
    the due and return dates; it is never written by the application.
    """

    def __init__(self, user_id: int, checkout_date: date, due_date: date,
                 book_id: int | None = None, journal_id: int | None = None,
                 return_date: date | None = None, overdue_fine: int | None = None,
                 id: int | None = None,
                 # Joined display fields
                 user_name: str | None = None, item_title: str | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.journal_id = journal_id
        self.checkout_date = parse_date(checkout_date)
        self.due_date = parse_date(due_date)
        self.return_date = parse_date(return_date)
        self.overdue_fine = overdue_fine if overdue_fine is not None else calculate_fine(self.due_date, self.return_date)
        self.user_name = user_name
        self.item_title = item_title

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind.BOOK if self.book_id is not None else ItemKind.JOURNAL

    @property
    def item_id(self) -> int | None:
        return self.book_id if self.book_id is not None else self.journal_id

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    @property
    def status(self) -> str:
        return "open" if self.is_open else "returned"

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"Checkout #{self.id}: {self.item_kind.value} {self.item_id} -> user {self.user_id} ({self.status})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "item_kind": self.item_kind.value,
            "book_id": self.book_id,
            "journal_id": self.journal_id,
            "item_title": self.item_title,
            "checkout_date": _iso(self.checkout_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "overdue_fine": self.overdue_fine,
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict) -> "Checkout":
        return Checkout(
            id=data.get("id"),
            user_id=data["user_id"],
            book_id=data.get("book_id"),
            journal_id=data.get("journal_id"),
            checkout_date=data["checkout_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            overdue_fine=data.get("overdue_fine"),
            user_name=data.get("user_name"),
            item_title=data.get("item_title"),
        )
