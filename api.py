import logging
import os
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from database import Database
from errors import (
    AlreadyReturned,
    ConnectivityError,
    ConstraintViolation,
    InsufficientCopies,
    LibraryError,
    NotFound,
    ValidationError,
)
from ledger import CheckoutLedger
from library import Library
from models import Book, ItemKind, Journal, User

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Read at import time so tests can point a reloaded module at their own file.
db = Database(os.getenv("LIBRARY_DB_FILE", settings.database_file))
library = Library(db)
ledger = CheckoutLedger(db)

app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency that checks the API key on write endpoints."""
    if api_key == settings.api_key:
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail="Could not validate credentials",
        )

# --- Error mapping ---
ERROR_STATUS = {
    ValidationError: 422,
    NotFound: 404,
    AlreadyReturned: 409,
    InsufficientCopies: 409,
    ConstraintViolation: 409,
    ConnectivityError: 503,
}

@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})

# --- Models ---
class UserModel(BaseModel):
    id: int
    full_name: str
    address: Optional[str] = None
    phone: str
    registration_date: date

class UserCreateModel(BaseModel):
    full_name: str
    phone: str = Field(description="International format, e.g. +15551234567")
    address: Optional[str] = None

class UserUpdateModel(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class BookModel(BaseModel):
    id: int
    title: str
    author: str
    publication_year: int
    copies_available: int

class BookCreateModel(BaseModel):
    title: str
    author: str
    publication_year: int
    copies_available: int = 0

class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    publication_year: Optional[int] = None
    copies_available: Optional[int] = None

class JournalModel(BaseModel):
    id: int
    title: str
    issue_number: int
    publication_year: int
    copies_available: int

class JournalCreateModel(BaseModel):
    title: str
    issue_number: int
    publication_year: int
    copies_available: int = 0

class JournalUpdateModel(BaseModel):
    title: Optional[str] = None
    issue_number: Optional[int] = None
    publication_year: Optional[int] = None
    copies_available: Optional[int] = None

class CheckoutModel(BaseModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    item_kind: ItemKind
    book_id: Optional[int] = None
    journal_id: Optional[int] = None
    item_title: Optional[str] = None
    checkout_date: date
    due_date: date
    return_date: Optional[date] = None
    overdue_fine: int
    status: str

class CheckoutCreateModel(BaseModel):
    user_id: int
    item_kind: ItemKind
    item_id: int
    due_date: date

class CheckoutUpdateModel(BaseModel):
    checkout_date: date
    due_date: date

class StatsModel(BaseModel):
    total_users: int
    total_books: int
    total_journals: int
    copies_available: int
    open_checkouts: int
    overdue_checkouts: int
    total_fines: int

# --- Health ---
@app.get("/health")
async def health():
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = db.ping()
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }

# --- Users ---
@app.get("/users", response_model=List[UserModel])
def list_users(q: Optional[str] = Query(None, description="Filter by name or phone")):
    users = library.search_users(q) if q else library.list_users()
    return [u.to_dict() for u in users]

@app.get("/users/{user_id}", response_model=UserModel)
def get_user(user_id: int):
    return library.get_user(user_id).to_dict()

@app.post("/users", response_model=UserModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_user(payload: UserCreateModel):
    user = library.add_user(User(full_name=payload.full_name, phone=payload.phone, address=payload.address))
    return user.to_dict()

@app.put("/users/{user_id}", response_model=UserModel, dependencies=[Depends(get_api_key)])
def update_user(user_id: int, payload: UserUpdateModel):
    user = library.update_user(user_id, full_name=payload.full_name, address=payload.address, phone=payload.phone)
    return user.to_dict()

@app.delete("/users/{user_id}", dependencies=[Depends(get_api_key)])
def delete_user(user_id: int):
    if not library.remove_user(user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} not found.")
    return {"message": f"User {user_id} has been removed."}

# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = Query(None, description="Filter by title or author")):
    books = library.search_books(q) if q else library.list_books()
    return [b.to_dict() for b in books]

@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    return library.get_book(book_id).to_dict()

@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    book = library.add_book(Book(title=payload.title, author=payload.author,
                                 publication_year=payload.publication_year,
                                 copies_available=payload.copies_available))
    return book.to_dict()

@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, payload: BookUpdateModel):
    book = library.update_book(book_id, title=payload.title, author=payload.author,
                               publication_year=payload.publication_year,
                               copies_available=payload.copies_available)
    return book.to_dict()

@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found.")
    return {"message": f"Book {book_id} has been removed."}

# --- Journals ---
@app.get("/journals", response_model=List[JournalModel])
def list_journals():
    return [j.to_dict() for j in library.list_journals()]

@app.get("/journals/{journal_id}", response_model=JournalModel)
def get_journal(journal_id: int):
    return library.get_journal(journal_id).to_dict()

@app.post("/journals", response_model=JournalModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_journal(payload: JournalCreateModel):
    journal = library.add_journal(Journal(title=payload.title, issue_number=payload.issue_number,
                                          publication_year=payload.publication_year,
                                          copies_available=payload.copies_available))
    return journal.to_dict()

@app.put("/journals/{journal_id}", response_model=JournalModel, dependencies=[Depends(get_api_key)])
def update_journal(journal_id: int, payload: JournalUpdateModel):
    journal = library.update_journal(journal_id, title=payload.title, issue_number=payload.issue_number,
                                     publication_year=payload.publication_year,
                                     copies_available=payload.copies_available)
    return journal.to_dict()

@app.delete("/journals/{journal_id}", dependencies=[Depends(get_api_key)])
def delete_journal(journal_id: int):
    if not library.remove_journal(journal_id):
        raise HTTPException(status_code=404, detail=f"Journal {journal_id} not found.")
    return {"message": f"Journal {journal_id} has been removed."}

# --- Checkouts ---
@app.get("/checkouts", response_model=List[CheckoutModel])
def list_checkouts(user_id: Optional[int] = Query(None), open_only: bool = Query(False)):
    return [c.to_dict() for c in ledger.list_checkouts(user_id=user_id, open_only=open_only)]

@app.get("/checkouts/{checkout_id}", response_model=CheckoutModel)
def get_checkout(checkout_id: int):
    return ledger.get_checkout(checkout_id).to_dict()

@app.post("/checkouts", response_model=CheckoutModel, status_code=201, dependencies=[Depends(get_api_key)])
def issue_item(payload: CheckoutCreateModel):
    checkout = ledger.issue_item(payload.user_id, payload.item_kind, payload.item_id, payload.due_date)
    return checkout.to_dict()

@app.post("/checkouts/{checkout_id}/return", response_model=CheckoutModel, dependencies=[Depends(get_api_key)])
def return_item(checkout_id: int):
    return ledger.register_return(checkout_id).to_dict()

@app.put("/checkouts/{checkout_id}", response_model=CheckoutModel, dependencies=[Depends(get_api_key)])
def edit_checkout(checkout_id: int, payload: CheckoutUpdateModel):
    return ledger.edit_checkout(checkout_id, payload.checkout_date, payload.due_date).to_dict()

@app.delete("/checkouts/{checkout_id}", dependencies=[Depends(get_api_key)])
def delete_checkout(checkout_id: int):
    ledger.delete_checkout(checkout_id)
    return {"message": f"Checkout {checkout_id} has been deleted."}

# --- Availability and stats ---
@app.get("/items/available")
def available_items(kind: ItemKind = Query(..., description="book or journal")):
    return [i.to_dict() for i in ledger.list_available_items(kind)]

@app.get("/stats", response_model=StatsModel)
def get_stats():
    return library.get_statistics()
