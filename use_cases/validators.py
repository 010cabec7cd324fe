"""Syntactic checks for sign-in and registration form fields."""

import re
from typing import Optional

MIN_PASSWORD_LENGTH = 10

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s.]+(\.[^@\s.]+)+")

_DIGIT = re.compile(r"\d")
_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_SYMBOL = re.compile(r"\W")


def is_non_empty(value: Optional[str]) -> bool:
    return value is not None and len(value) > 0


def is_valid_email(value: Optional[str]) -> bool:
    """local@domain with at least one dot in the domain part."""
    if not is_non_empty(value):
        return False
    return EMAIL_PATTERN.fullmatch(value) is not None


def is_valid_password(value: Optional[str]) -> bool:
    """
    At least MIN_PASSWORD_LENGTH characters with a digit, a lowercase letter,
    an uppercase letter and a symbol.
    """
    if not is_non_empty(value) or len(value) < MIN_PASSWORD_LENGTH:
        return False
    return all(
        pattern.search(value) is not None
        for pattern in (_DIGIT, _LOWER, _UPPER, _SYMBOL)
    )
