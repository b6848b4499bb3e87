"""Unit tests for the field validation rules."""

import pytest

from vitalsync_auth.errors import AuthError
from vitalsync_auth.models.auth_models import AuthErrorCode
from vitalsync_auth.services.validation import (
    require_valid,
    validate_email,
    validate_name,
    validate_password,
    validate_password_confirmation,
)


class TestValidateEmail:
    """Tests for the ``local@domain.tld`` shape check."""

    @pytest.mark.parametrize(
        "email",
        ["ann@example.com", "Ann@Example.COM", "first.last+tag@sub.domain.org", "  a@b.co  "],
    )
    def test_accepts_well_formed_addresses(self, email: str) -> None:
        assert validate_email(email).is_valid

    @pytest.mark.parametrize(
        "email",
        ["", "   ", "ann", "ann@", "@example.com", "ann@example", "ann smith@example.com", "a@b@c.com"],
    )
    def test_rejects_malformed_addresses(self, email: str) -> None:
        result = validate_email(email)
        assert not result.is_valid
        assert result.error_code == AuthErrorCode.INVALID_EMAIL
        assert result.error_message


class TestValidatePassword:
    """Tests for the minimum-length password policy."""

    def test_eight_characters_is_enough(self) -> None:
        assert validate_password("12345678").is_valid

    def test_seven_characters_is_weak(self) -> None:
        result = validate_password("1234567")
        assert result.error_code == AuthErrorCode.WEAK_PASSWORD

    def test_custom_minimum_is_reported_in_message(self) -> None:
        result = validate_password("short-pass", min_length=12)
        assert not result.is_valid
        assert "12" in (result.error_message or "")

    def test_confirmation_must_match_exactly(self) -> None:
        assert validate_password_confirmation("password123", "password123").is_valid
        result = validate_password_confirmation("password123", "Password123")
        assert result.error_code == AuthErrorCode.PASSWORD_MISMATCH


class TestValidateName:
    """Tests for display-name validation."""

    def test_accepts_regular_name(self) -> None:
        assert validate_name("  Ann  ").is_valid

    @pytest.mark.parametrize("name", ["", "   ", "\t"])
    def test_rejects_blank_name(self, name: str) -> None:
        assert validate_name(name).error_code == AuthErrorCode.INVALID_NAME

    def test_rejects_embedded_control_characters(self) -> None:
        result = validate_name("Ann\nAdmin")
        assert result.error_code == AuthErrorCode.INVALID_NAME


class TestRequireValid:
    """Tests for turning validation results into ``AuthError``."""

    def test_passes_when_everything_is_valid(self) -> None:
        require_valid(validate_email("ann@example.com"), validate_password("password123"))

    def test_raises_for_first_failure_in_order(self) -> None:
        with pytest.raises(AuthError) as exc_info:
            require_valid(
                validate_name("Ann"),
                validate_email("not-an-email"),
                validate_password("short"),
            )
        assert exc_info.value.code == AuthErrorCode.INVALID_EMAIL
