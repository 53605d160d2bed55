import re
from datetime import date
from typing import Optional

# ASCII digits only; \d would also accept other Unicode digit characters.
PHONE_PATTERN = re.compile(r"\+[0-9]+")

MAX_ADDRESS_LENGTH = 255
MIN_BOOK_YEAR = 1000
MIN_JOURNAL_YEAR = 1901
# Largest value an SQLite INTEGER column holds
MAX_INTEGER = 2 ** 63 - 1


class TextValidator:
    """Basic text checks used by the user, book and journal forms."""

    @staticmethod
    def is_non_empty(text: Optional[str]) -> bool:
        return text is not None and bool(text.strip())

    @staticmethod
    def starts_with_uppercase(text: Optional[str]) -> bool:
        if not TextValidator.is_non_empty(text):
            return False
        return text.strip()[0].isupper()

    @staticmethod
    def fits_length(text: Optional[str], max_length: int) -> bool:
        # empty / missing values are allowed; only the length is checked
        if text is None:
            return True
        return len(text.strip()) <= max_length


class PhoneValidator:

    @staticmethod
    def is_valid_phone(phone: Optional[str]) -> bool:
        """'+' followed by one or more digits, nothing else."""
        if phone is None:
            return False
        return PHONE_PATTERN.fullmatch(phone.strip()) is not None


class NumberValidator:
    """Range checks for publication years, issue numbers and copy counts."""

    @staticmethod
    def _is_int(value) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    @staticmethod
    def is_valid_year(year, min_year: int, current_year: Optional[int] = None) -> bool:
        if not NumberValidator._is_int(year):
            return False
        max_year = current_year if current_year is not None else date.today().year
        return min_year <= year <= max_year

    @staticmethod
    def is_positive(value) -> bool:
        return NumberValidator._is_int(value) and 0 < value <= MAX_INTEGER

    @staticmethod
    def is_non_negative(value) -> bool:
        return NumberValidator._is_int(value) and 0 <= value <= MAX_INTEGER
