import logging
import os
import subprocess
import sys
import webbrowser
from datetime import date, timedelta
from functools import wraps
from typing import Optional

import typer

from backup import clear_database, export_database, import_database
from config import settings
from database import Database
from errors import LibraryError
from ledger import CheckoutLedger
from library import Library
from models import Book, ItemKind, Journal, User
from utils.ui_helpers import print_list_result, print_record, print_stats_result, set_output_mode

APP_NAME = "Library Ledger CLI"

logger = logging.getLogger(__name__)

USER_COLUMNS = ["id", "full_name", "phone", "address", "registration_date"]
BOOK_COLUMNS = ["id", "title", "author", "publication_year", "copies_available"]
JOURNAL_COLUMNS = ["id", "title", "issue_number", "publication_year", "copies_available"]
CHECKOUT_COLUMNS = ["id", "user_name", "item_kind", "item_title", "checkout_date", "due_date",
                    "return_date", "overdue_fine"]

# Database file chosen by the global --db option; None means settings.database_file.
_state = {"db_file": None}


def get_database() -> Database:
    return Database(_state["db_file"])


def get_library() -> Library:
    return Library(get_database())


def get_ledger() -> CheckoutLedger:
    return CheckoutLedger(get_database())


def report_errors(func):
    """Print library errors as 'Error: ...' and exit with status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)
users_app = typer.Typer(help="Manage library users.")
books_app = typer.Typer(help="Manage books.")
journals_app = typer.Typer(help="Manage journals.")
app.add_typer(users_app, name="users")
app.add_typer(books_app, name="books")
app.add_typer(journals_app, name="journals")

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database file (default: LIBRARY_DB_FILE or library.db)",
    ),
):
    """Global options for the CLI (output mode, database file)."""
    if output:
        set_output_mode(output)
    _state["db_file"] = db_file

# --- Users ---
@users_app.command("list")
@report_errors
def users_list(search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by name or phone")):
    """List all users."""
    lib = get_library()
    users = lib.search_users(search) if search else lib.list_users()
    print_list_result([u.to_dict() for u in users], USER_COLUMNS, "👤 Users", "No users in library.")

@users_app.command("add")
@report_errors
def users_add(
    full_name: str = typer.Argument(..., help="Full name, starting with an uppercase letter"),
    phone: str = typer.Argument(..., help="Phone number, e.g. +15551234567"),
    address: Optional[str] = typer.Option(None, "--address", "-a", help="Postal address (max 255 characters)"),
):
    """Register a new user."""
    user = get_library().add_user(User(full_name=full_name, phone=phone, address=address))
    print(f"Added user {user.id}: {user.full_name}")

@users_app.command("edit")
@report_errors
def users_edit(
    user_id: int,
    full_name: Optional[str] = typer.Option(None, "--name", "-n"),
    address: Optional[str] = typer.Option(None, "--address", "-a"),
    phone: Optional[str] = typer.Option(None, "--phone", "-p"),
):
    """Update a user's name, address or phone."""
    user = get_library().update_user(user_id, full_name=full_name, address=address, phone=phone)
    print(f"Updated user {user.id}: {user.full_name}")

@users_app.command("remove")
@report_errors
def users_remove(user_id: int):
    """Remove a user who has no checkouts."""
    if get_library().remove_user(user_id):
        print(f"User {user_id} has been removed.")
    else:
        print(f"User {user_id} not found.")

# --- Books ---
@books_app.command("list")
@report_errors
def books_list(search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by title or author")):
    """List all books."""
    lib = get_library()
    books = lib.search_books(search) if search else lib.list_books()
    print_list_result([b.to_dict() for b in books], BOOK_COLUMNS, "📚 Books", "No books in library.")

@books_app.command("add")
@report_errors
def books_add(
    title: str,
    author: str,
    publication_year: int = typer.Argument(..., help="Year of publication (1000 to current year)"),
    copies: int = typer.Option(0, "--copies", "-c", help="Copies available"),
):
    """Add a book."""
    book = get_library().add_book(Book(title=title, author=author, publication_year=publication_year,
                                       copies_available=copies))
    print(f"Added book {book.id}: {book.title} by {book.author}")

@books_app.command("edit")
@report_errors
def books_edit(
    book_id: int,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    publication_year: Optional[int] = typer.Option(None, "--year", "-y"),
    copies: Optional[int] = typer.Option(None, "--copies", "-c"),
):
    """Update a book."""
    book = get_library().update_book(book_id, title=title, author=author, publication_year=publication_year,
                                     copies_available=copies)
    print(f"Updated book {book.id}: {book.title} by {book.author}")

@books_app.command("remove")
@report_errors
def books_remove(book_id: int):
    """Remove a book that has no checkouts."""
    if get_library().remove_book(book_id):
        print(f"Book {book_id} has been removed.")
    else:
        print(f"Book {book_id} not found.")

# --- Journals ---
@journals_app.command("list")
@report_errors
def journals_list():
    """List all journals."""
    journals = get_library().list_journals()
    print_list_result([j.to_dict() for j in journals], JOURNAL_COLUMNS, "📰 Journals", "No journals in library.")

@journals_app.command("add")
@report_errors
def journals_add(
    title: str,
    issue_number: int,
    publication_year: int = typer.Argument(..., help="Year of publication (1901 to current year)"),
    copies: int = typer.Option(0, "--copies", "-c", help="Copies available"),
):
    """Add a journal issue."""
    journal = get_library().add_journal(Journal(title=title, issue_number=issue_number,
                                                publication_year=publication_year, copies_available=copies))
    print(f"Added journal {journal.id}: {journal.title} #{journal.issue_number}")

@journals_app.command("edit")
@report_errors
def journals_edit(
    journal_id: int,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    issue_number: Optional[int] = typer.Option(None, "--issue", "-i"),
    publication_year: Optional[int] = typer.Option(None, "--year", "-y"),
    copies: Optional[int] = typer.Option(None, "--copies", "-c"),
):
    """Update a journal issue."""
    journal = get_library().update_journal(journal_id, title=title, issue_number=issue_number,
                                           publication_year=publication_year, copies_available=copies)
    print(f"Updated journal {journal.id}: {journal.title} #{journal.issue_number}")

@journals_app.command("remove")
@report_errors
def journals_remove(journal_id: int):
    """Remove a journal issue that has no checkouts."""
    if get_library().remove_journal(journal_id):
        print(f"Journal {journal_id} has been removed.")
    else:
        print(f"Journal {journal_id} not found.")

# --- Checkouts ---
@app.command("issue")
@report_errors
def cli_issue(
    user_id: int,
    kind: ItemKind = typer.Argument(..., help="book or journal"),
    item_id: int = typer.Argument(...),
    due: Optional[str] = typer.Option(None, "--due", "-d",
                                      help="Due date YYYY-MM-DD (default: today + DEFAULT_LOAN_DAYS)"),
):
    """Issue a book or journal to a user."""
    due_date = due or (date.today() + timedelta(days=settings.default_loan_days)).isoformat()
    checkout = get_ledger().issue_item(user_id, kind, item_id, due_date)
    print(f"Checkout {checkout.id}: {checkout.item_title} issued to {checkout.user_name}, "
          f"due {checkout.due_date.isoformat()}")

@app.command("return")
@report_errors
def cli_return(checkout_id: int):
    """Register the return of a checkout and show the fine."""
    checkout = get_ledger().register_return(checkout_id)
    print(f"Checkout {checkout.id} returned on {checkout.return_date.isoformat()}. Fine: {checkout.overdue_fine}")

@app.command("checkouts")
@report_errors
def cli_checkouts(
    user_id: Optional[int] = typer.Option(None, "--user", "-u", help="Only this user's checkouts"),
    open_only: bool = typer.Option(False, "--open", help="Only checkouts not yet returned"),
):
    """List checkouts with their fines."""
    checkouts = get_ledger().list_checkouts(user_id=user_id, open_only=open_only)
    print_list_result([c.to_dict() for c in checkouts], CHECKOUT_COLUMNS, "📋 Checkouts", "No checkouts found.")

@app.command("show-checkout")
@report_errors
def cli_show_checkout(checkout_id: int):
    """Show one checkout."""
    checkout = get_ledger().get_checkout(checkout_id)
    print_record(checkout.to_dict(), f"Checkout {checkout.id}")

@app.command("edit-checkout")
@report_errors
def cli_edit_checkout(checkout_id: int, checkout_date: str, due_date: str):
    """Correct the checkout and due dates of an open checkout."""
    checkout = get_ledger().edit_checkout(checkout_id, checkout_date, due_date)
    print(f"Checkout {checkout.id} updated: checked out {checkout.checkout_date.isoformat()}, "
          f"due {checkout.due_date.isoformat()}")

@app.command("delete-checkout")
@report_errors
def cli_delete_checkout(checkout_id: int, yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask")):
    """Delete a checkout record. Copy counts are not adjusted."""
    if not yes and not typer.confirm(f"Delete checkout {checkout_id}?", default=False):
        print("Cancelled.")
        return
    get_ledger().delete_checkout(checkout_id)
    print(f"Checkout {checkout_id} has been deleted.")

@app.command("available")
@report_errors
def cli_available(kind: ItemKind = typer.Argument(..., help="book or journal")):
    """List books or journals that can be issued."""
    items = get_ledger().list_available_items(kind)
    columns = BOOK_COLUMNS if kind is ItemKind.BOOK else JOURNAL_COLUMNS
    print_list_result([i.to_dict() for i in items], columns, "✅ Available", f"No {kind.value}s available.")

@app.command("stats")
@report_errors
def cli_stats():
    """Show library statistics."""
    print_stats_result(get_library().get_statistics())

# --- Backup ---
@app.command("export")
@report_errors
def cli_export(path: str = typer.Argument(..., help="Target .sql file")):
    """Export the whole database to a SQL script."""
    count = export_database(get_database(), path)
    print(f"Database exported to {path} ({count} statements)")

@app.command("import")
@report_errors
def cli_import(
    path: str = typer.Argument(..., help="SQL script created by 'export'"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask"),
):
    """Replace the database contents with a SQL script."""
    if not os.path.exists(path):
        print(f"File not found: {path}")
        raise typer.Exit(code=1)
    if not yes and not typer.confirm("This replaces all current data. Continue?", default=False):
        print("Cancelled.")
        return
    import_database(get_database(), path)
    print(f"Database imported from {path}")

@app.command("clear")
@report_errors
def cli_clear(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask")):
    """Delete all users, books, journals and checkouts."""
    if not yes and not typer.confirm("All data will be deleted and this cannot be undone. Continue?",
                                     default=False):
        print("Cancelled.")
        return
    db = get_database()
    db.initialize_database()
    clear_database(db)
    print("Database cleared.")

@app.command("serve")
def cli_serve(timeout: int = typer.Option(0, "--timeout", help="Seconds to run before exiting (0 = no timeout)")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    try:
        webbrowser.open(url)
    except webbrowser.Error as e:
        logger.debug("Could not open browser: %s", e)
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    env = None
    if _state["db_file"]:
        # the server process reads its database file from the environment
        env = {**os.environ, "LIBRARY_DB_FILE": os.path.abspath(_state["db_file"])}
    if timeout and timeout > 0:
        # no reloader, so terminate() reaches the server process directly
        proc = subprocess.Popen(args, env=env)
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=3)
    else:
        args.append("--reload")
        subprocess.run(args, env=env)


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    app()
