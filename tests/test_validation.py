"""Unit tests for auth/validation.py -- email shape and password strength."""

from __future__ import annotations

import pytest

from auth.errors import ValidationError
from auth.validation import normalize_email, validate_email, validate_password


class TestPasswordStrength:
    @pytest.mark.parametrize("password", ["Goodpass1", "Aa123456", "longer passphrase 2024"])
    def test_strong_passwords_accepted(self, password: str) -> None:
        validate_password(password)

    def test_short_password_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 8"):
            validate_password("short1")

    def test_password_without_digit_rejected(self) -> None:
        with pytest.raises(ValidationError, match="letters and numbers"):
            validate_password("onlyletters")

    def test_password_without_letter_rejected(self) -> None:
        with pytest.raises(ValidationError, match="letters and numbers"):
            validate_password("12345678")

    def test_non_ascii_letters_do_not_count(self) -> None:
        """Only ASCII letters and digits satisfy the mix requirement."""
        with pytest.raises(ValidationError):
            validate_password("éééééé12")


class TestEmail:
    def test_normalize_strips_and_lowercases(self) -> None:
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    def test_validate_returns_normalized(self) -> None:
        assert validate_email("A@Example.com") == "a@example.com"

    @pytest.mark.parametrize("email", ["invalid-email", "", "a@@b", "a b@example.com", "@example.com", "a@"])
    def test_malformed_email_rejected(self, email: str) -> None:
        with pytest.raises(ValidationError, match="invalid email"):
            validate_email(email)
