from datetime import date, timedelta

import pytest

from database import Database
from ledger import CheckoutLedger
from library import Library


class Clock:
    """Settable stand-in for date.today."""

    def __init__(self, today: date) -> None:
        self.current = today

    def __call__(self) -> date:
        return self.current

    def advance(self, days: int) -> None:
        self.current += timedelta(days=days)


@pytest.fixture
def clock():
    return Clock(date(2024, 1, 1))


@pytest.fixture
def db(tmp_path):
    # tmp_path is already unique per test
    return Database(str(tmp_path / "library.db"))


@pytest.fixture
def lib(db, clock):
    return Library(db, today=clock)


@pytest.fixture
def ledger(db, clock):
    return CheckoutLedger(db, today=clock, restore_copies_on_return=False)
