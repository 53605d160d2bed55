import pytest

from database import Database
from errors import ConnectivityError, NotFound


@pytest.fixture
def unreachable(tmp_path):
    # The parent directory does not exist, so SQLite cannot create the file
    return Database(str(tmp_path / "missing" / "library.db"))


def test_unopenable_file_raises_connectivity_error(unreachable):
    with pytest.raises(ConnectivityError, match="Cannot open database"):
        unreachable.get_db_connection()
    with pytest.raises(ConnectivityError):
        unreachable.initialize_database()
    assert unreachable.ping() is False


def test_ping(db):
    db.initialize_database()
    assert db.ping() is True


def test_oversized_id_inside_transaction_rolls_back(db):
    db.initialize_database()

    with pytest.raises(NotFound):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO books (title, author, publication_year, copies_available) VALUES ('Emma', 'Jane Austen', 1815, 1)"
            )
            conn.execute("SELECT 1 FROM books WHERE id = ?", (10 ** 20,))

    with db.connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 0
