import threading
from datetime import date

import pytest

from errors import AlreadyReturned, InsufficientCopies, NotFound, ValidationError
from ledger import CheckoutLedger
from models import Book, ItemKind, Journal, User


@pytest.fixture
def reader(lib):
    return lib.add_user(User("Ada Lovelace", "+15551234567"))


@pytest.fixture
def book(lib):
    return lib.add_book(Book("Ulysses", "James Joyce", 1922, copies_available=2))


def test_issue_decrements_copies_by_one(lib, ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    assert lib.get_book(book.id).copies_available == 1
    assert checkout.user_id == reader.id
    assert checkout.book_id == book.id
    assert checkout.journal_id is None
    assert checkout.checkout_date == date(2024, 1, 1)
    assert checkout.due_date == date(2024, 1, 15)
    assert checkout.return_date is None
    assert checkout.overdue_fine == 0
    assert checkout.user_name == "Ada Lovelace"
    assert checkout.item_title == "Ulysses"
    assert checkout.status == "open"


def test_issue_journal(lib, ledger, reader):
    journal = lib.add_journal(Journal("Nature", 7990, 2023, copies_available=1))

    checkout = ledger.issue_item(reader.id, "journal", journal.id, date(2024, 1, 8))

    assert checkout.item_kind is ItemKind.JOURNAL
    assert checkout.item_id == journal.id
    assert lib.get_journal(journal.id).copies_available == 0


def test_issue_without_copies_leaves_nothing_behind(lib, ledger, reader):
    book = lib.add_book(Book("Emma", "Jane Austen", 1815, copies_available=0))

    with pytest.raises(InsufficientCopies):
        ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    assert ledger.list_checkouts() == []
    assert lib.get_book(book.id).copies_available == 0


def test_issue_last_copy_then_run_out(lib, ledger, reader, book):
    ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    with pytest.raises(InsufficientCopies):
        ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    assert lib.get_book(book.id).copies_available == 0
    assert len(ledger.list_checkouts()) == 2


def test_issue_unknown_user_or_item(lib, ledger, reader, book):
    with pytest.raises(NotFound, match="User 99"):
        ledger.issue_item(99, ItemKind.BOOK, book.id, "2024-01-15")
    with pytest.raises(NotFound, match="Book 99"):
        ledger.issue_item(reader.id, ItemKind.BOOK, 99, "2024-01-15")
    with pytest.raises(NotFound, match="Journal 99"):
        ledger.issue_item(reader.id, ItemKind.JOURNAL, 99, "2024-01-15")

    assert lib.get_book(book.id).copies_available == 2
    assert ledger.list_checkouts() == []


@pytest.mark.parametrize("kind, due", [
    ("magazine", "2024-01-15"),
    (ItemKind.BOOK, "2023-12-31"),
    (ItemKind.BOOK, "15/01/2024"),
    (ItemKind.BOOK, "2024-01-15 garbage"),
    (ItemKind.BOOK, None),
])
def test_issue_rejects_bad_input(lib, ledger, reader, book, kind, due):
    with pytest.raises(ValidationError):
        ledger.issue_item(reader.id, kind, book.id, due)
    assert lib.get_book(book.id).copies_available == 2


def test_due_today_is_allowed(ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-01")
    assert checkout.due_date == checkout.checkout_date


def test_late_return_fine(ledger, reader, book, clock):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-01")
    clock.advance(10)

    returned = ledger.register_return(checkout.id)

    assert returned.return_date == date(2024, 1, 11)
    assert returned.overdue_fine == 100
    assert returned.status == "returned"


def test_on_time_return_has_no_fine(ledger, reader, book, clock):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    clock.advance(14)

    assert ledger.register_return(checkout.id).overdue_fine == 0


def test_open_checkout_has_no_fine_yet(ledger, reader, book, clock):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-01")
    clock.advance(30)
    assert ledger.get_checkout(checkout.id).overdue_fine == 0


def test_second_return_is_rejected(ledger, reader, book, clock):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    clock.advance(3)
    ledger.register_return(checkout.id)
    clock.advance(3)

    with pytest.raises(AlreadyReturned):
        ledger.register_return(checkout.id)

    assert ledger.get_checkout(checkout.id).return_date == date(2024, 1, 4)


def test_return_does_not_restore_copies_by_default(lib, ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    ledger.register_return(checkout.id)
    assert lib.get_book(book.id).copies_available == 1


def test_return_restores_copies_when_enabled(lib, db, clock, reader, book):
    ledger = CheckoutLedger(db, today=clock, restore_copies_on_return=True)
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    assert lib.get_book(book.id).copies_available == 1

    ledger.register_return(checkout.id)

    assert lib.get_book(book.id).copies_available == 2


def test_return_missing_checkout(ledger):
    with pytest.raises(NotFound):
        ledger.register_return(404)


def test_edit_checkout(lib, ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    edited = ledger.edit_checkout(checkout.id, "2023-12-20", "2024-01-03")

    assert edited.checkout_date == date(2023, 12, 20)
    assert edited.due_date == date(2024, 1, 3)
    assert lib.get_book(book.id).copies_available == 1


def test_edit_checkout_rejects_due_before_checkout(ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    with pytest.raises(ValidationError):
        ledger.edit_checkout(checkout.id, "2024-01-10", "2024-01-09")

    assert ledger.get_checkout(checkout.id).due_date == date(2024, 1, 15)


def test_edit_returned_checkout_is_rejected(ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    ledger.register_return(checkout.id)

    with pytest.raises(AlreadyReturned):
        ledger.edit_checkout(checkout.id, "2024-01-01", "2024-01-20")


def test_edit_missing_checkout(ledger):
    with pytest.raises(NotFound):
        ledger.edit_checkout(7, "2024-01-01", "2024-01-20")


def test_edit_checkout_rejects_trailing_junk(ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    with pytest.raises(ValidationError):
        ledger.edit_checkout(checkout.id, "2024-01-01", "2024-01-20 garbage")
    with pytest.raises(ValidationError):
        ledger.edit_checkout(checkout.id, "2024-01-01xx", "2024-01-20")

    assert ledger.get_checkout(checkout.id).due_date == date(2024, 1, 15)


def test_ids_beyond_integer_range_are_not_found(lib, ledger, reader, book):
    huge = 10 ** 20

    with pytest.raises(NotFound):
        ledger.get_checkout(huge)
    with pytest.raises(NotFound):
        ledger.register_return(huge)
    with pytest.raises(NotFound):
        ledger.delete_checkout(huge)
    with pytest.raises(NotFound):
        ledger.issue_item(huge, ItemKind.BOOK, book.id, "2024-01-15")
    with pytest.raises(NotFound):
        ledger.issue_item(reader.id, ItemKind.BOOK, huge, "2024-01-15")

    assert lib.get_book(book.id).copies_available == 2
    assert ledger.list_checkouts() == []


def test_delete_checkout_keeps_copy_count(lib, ledger, reader, book):
    checkout = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")

    ledger.delete_checkout(checkout.id)

    with pytest.raises(NotFound):
        ledger.get_checkout(checkout.id)
    with pytest.raises(NotFound):
        ledger.delete_checkout(checkout.id)
    assert lib.get_book(book.id).copies_available == 1


def test_list_checkouts_filters(lib, ledger, reader, book):
    other = lib.add_user(User("Charles Babbage", "+4420000000"))
    first = ledger.issue_item(reader.id, ItemKind.BOOK, book.id, "2024-01-15")
    ledger.issue_item(other.id, ItemKind.BOOK, book.id, "2024-01-15")
    ledger.register_return(first.id)

    assert len(ledger.list_checkouts()) == 2
    assert [c.user_id for c in ledger.list_checkouts(user_id=reader.id)] == [reader.id]
    assert [c.user_id for c in ledger.list_checkouts(open_only=True)] == [other.id]
    assert ledger.list_checkouts(user_id=reader.id, open_only=True) == []


def test_list_available_items(lib, ledger, reader):
    lib.add_book(Book("Emma", "Jane Austen", 1815, copies_available=0))
    ulysses = lib.add_book(Book("Ulysses", "James Joyce", 1922, copies_available=1))
    lib.add_journal(Journal("Nature", 1, 2020, copies_available=3))

    assert [b.title for b in ledger.list_available_items(ItemKind.BOOK)] == ["Ulysses"]
    assert [j.title for j in ledger.list_available_items("journal")] == ["Nature"]

    ledger.issue_item(reader.id, ItemKind.BOOK, ulysses.id, "2024-01-15")
    assert ledger.list_available_items(ItemKind.BOOK) == []


@pytest.mark.integration
def test_concurrent_issues_never_oversell(lib, db, clock):
    book = lib.add_book(Book("Ulysses", "James Joyce", 1922, copies_available=3))
    users = [lib.add_user(User(f"Reader {i}", f"+1555000{i:04d}")) for i in range(8)]
    ledger = CheckoutLedger(db, today=clock, restore_copies_on_return=False)

    barrier = threading.Barrier(len(users))
    issued, refused, failures = [], [], []

    def borrow(user_id):
        barrier.wait()
        try:
            issued.append(ledger.issue_item(user_id, ItemKind.BOOK, book.id, "2024-01-15"))
        except InsufficientCopies:
            refused.append(user_id)
        except Exception as e:  # surfaced by the assertion below
            failures.append(e)

    threads = [threading.Thread(target=borrow, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert len(issued) == 3
    assert len(refused) == 5
    assert lib.get_book(book.id).copies_available == 0
    assert len(ledger.list_checkouts()) == 3
