"""Errors raised by the library and checkout ledger.

Everything derives from ``LibraryError`` so front ends can catch one type and
report the message. Database driver errors are translated in ``database.py``
and ``backup.py`` and never leak past them.
"""


class LibraryError(Exception):
    pass


class ValidationError(LibraryError, ValueError):
    """Bad user input, detected before any database call."""


class NotFound(LibraryError, LookupError):
    pass


class AlreadyReturned(LibraryError):
    pass


class InsufficientCopies(LibraryError):
    pass


class ConstraintViolation(LibraryError):
    """A foreign-key, check or uniqueness constraint rejected the statement."""


class ConnectivityError(LibraryError):
    """The database could not be opened or stayed locked past the timeout."""
