"""
Input validation for user-typed names and amounts.

Each validator returns an error message, or None when the value is fine,
so callers can collect or raise as they need.
"""
import re
from decimal import Decimal

MAX_AMOUNT = Decimal("1000000")

_AMOUNT_RE = re.compile(r"^\d+(\.\d{1,2})?$")
_ALNUM_RE = re.compile(r"[a-zA-Z0-9]")


def validate_name(text, label="Name", max_length=50):
    if not text:
        return f"{label} is required."

    trimmed = text.strip()
    if not trimmed:
        return f"{label} cannot be empty."

    if len(trimmed) > max_length:
        return f"{label} cannot exceed {max_length} characters."

    # "!!!" or "..." is not a name
    if not _ALNUM_RE.search(trimmed):
        return f"{label} must contain at least one letter or number."

    return None


def validate_amount(amount):
    if amount is None or amount == "":
        return "Amount is required."

    if isinstance(amount, bool):
        return "Amount must be a number."

    text = str(amount).strip()
    try:
        num = Decimal(text)
    except ArithmeticError:
        return "Amount must be a number."

    if not num.is_finite():
        return "Amount must be a number."
    if num <= 0:
        return "Amount must be greater than 0."
    if num > MAX_AMOUNT:
        return "Amount cannot exceed 1,000,000."

    # float input like 10.5 renders as "10.5"; Decimal("10.50") as "10.50"
    if not _AMOUNT_RE.match(text):
        return "Amount allows a maximum of 2 decimal places."

    return None
