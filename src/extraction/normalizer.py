"""Normalization helpers for noisy OCR output.

Pure functions shared by the field extractor and the record validator:
digit-confusable correction, amount stripping and parsing, account and
reference normalization, and date parsing/formatting.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

# Glyphs OCR engines systematically return in place of digits on printed receipts.
DIGIT_CONFUSABLES: dict[str, str] = {
    "O": "0",
    "o": "0",
    "I": "1",
    "l": "1",
    "Z": "2",
    "S": "5",
    "B": "8",
}

# Character class matching a digit or one of its confusables.
DIGITISH = "[0-9" + "".join(DIGIT_CONFUSABLES) + "]"

_CONFUSABLE_TABLE = str.maketrans(DIGIT_CONFUSABLES)

DATE_FORMATS: list[str] = [
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%d %B %Y",
    "%d %b %Y",
]


def correct_digits(value: str) -> str:
    """Map digit-confusable letters to digits and drop everything but digits and dots.

    Args:
        value: A run of OCR characters known to be numeric.

    Returns:
        The corrected string, e.g. ``"ZOO1"`` becomes ``"2001"``.
    """
    return re.sub(r"[^\d.]", "", value.translate(_CONFUSABLE_TABLE))


def truncate_noisy_digits(digits: str, threshold: int = 20, length: int = 15) -> str:
    """Keep only the leading digits of a run that is implausibly long.

    Runs longer than ``threshold`` usually carry trailing OCR garbage
    glued onto the reference number.

    Args:
        digits: Digit string after confusable correction.
        threshold: Length above which the run is considered noisy.
        length: Number of leading digits kept for a noisy run.

    Returns:
        The original digits, or the first ``length`` of them.
    """
    if len(digits) > threshold:
        return digits[:length]
    return digits


def strip_amount(value: str) -> str:
    """Reduce a captured amount to digits and at most one decimal point."""
    cleaned = re.sub(r"[^\d.]", "", value)
    head, dot, tail = cleaned.partition(".")
    tail = tail.replace(".", "")
    if not tail:
        return head
    return f"{head}{dot}{tail}"


def parse_amount(value: object) -> Decimal | None:
    """Parse a money value after stripping thousands separators.

    Args:
        value: Raw value from a payload (string, number or ``None``).

    Returns:
        The parsed amount, or ``None`` when the value is absent or blank.

    Raises:
        ValueError: If the value is present but not a finite number.
    """
    if value is None:
        return None
    text = str(value).replace(",", "").strip()
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return amount


def normalize_text(value: object) -> str:
    """Trim a free-text value, treating ``None`` as empty."""
    if value is None:
        return ""
    return str(value).strip()


def collapse_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def normalize_account_number(value: object) -> str:
    """Uppercase an account number and remove all whitespace."""
    return re.sub(r"\s+", "", normalize_text(value).upper())


def normalize_transaction_ref(value: object) -> str:
    """Keep only the digits of a transaction reference."""
    return re.sub(r"\D", "", normalize_text(value))


def count_digits(value: str) -> int:
    return sum(ch.isdigit() for ch in value)


def format_long_date(month: str, day: str, year: str) -> str:
    """Assemble a long-form date the way receipts print it, e.g. ``March 5, 2024``."""
    return f"{month} {int(day)}, {year}"


def parse_receipt_date(value: object) -> date | None:
    """Parse a receipt date in any of the recognized forms.

    Args:
        value: Date text such as ``"January 15, 2024"``, ``"Jan. 15 2024"``
            or ``"01/15/2024"``.

    Returns:
        The parsed date, or ``None`` if no supported format matches.
    """
    text = collapse_whitespace(normalize_text(value))
    if not text:
        return None
    # "Sept." and similar abbreviations are not understood by strptime
    text = re.sub(r"\bSept\b", "Sep", text, flags=re.IGNORECASE)
    text = re.sub(r"^([A-Za-z]{3,9})\.", r"\1", text)

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def canonical_date(value: object) -> str | None:
    """Render a recognized date in the storage form ``Month D, YYYY``."""
    parsed = parse_receipt_date(value)
    if parsed is None:
        return None
    return f"{parsed:%B} {parsed.day}, {parsed.year}"
