"""
auth/validation.py -- Input shape and password strength rules.

Validation failures raise ValidationError with a specific message; that is
the one error kind allowed to say exactly what is wrong with the input.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError

MIN_PASSWORD_LENGTH = 8

# Shape only: something@something, no whitespace, exactly one "@". Deliverability
# is the mailer's problem, not ours.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def normalize_email(email: str) -> str:
    """Return the canonical stored form of an email address."""
    return email.strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email, or raise ValidationError if malformed."""
    normalized = normalize_email(email)
    if not _EMAIL_RE.match(normalized):
        raise ValidationError("invalid email")
    return normalized


def validate_password(password: str) -> None:
    """Require at least MIN_PASSWORD_LENGTH chars with both letters and digits."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    has_letter = any(c.isascii() and c.isalpha() for c in password)
    has_digit = any(c.isascii() and c.isdigit() for c in password)
    if not (has_letter and has_digit):
        raise ValidationError("password must include letters and numbers")
