"""Tests for the password-reset request/accept contract."""

import json

import pytest

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.auth_models import (
    PASSWORD_RESET_ACK,
    AuthErrorCode,
    PasswordResetConfirm,
    PasswordResetRequest,
)
from vitalsync_auth.services.credential_store import CredentialStore
from vitalsync_auth.services.password_reset import PasswordResetService

from tests.conftest import FakeClock, make_account


@pytest.fixture
def reset_service(
    credential_store: CredentialStore,
    logger: StructuredLogger,
    db: DatabaseManager,
    clock: FakeClock,
) -> PasswordResetService:
    return PasswordResetService(credential_store, logger, db=db, clock=clock)


class TestRequestPasswordReset:
    """Tests for the anti-enumeration request path."""

    @pytest.mark.asyncio
    async def test_malformed_email_is_rejected(self, reset_service: PasswordResetService) -> None:
        result = await reset_service.request_password_reset(PasswordResetRequest(email="nope"))
        assert not result.success
        assert result.error_code == AuthErrorCode.INVALID_EMAIL

    @pytest.mark.asyncio
    async def test_known_and_unknown_emails_get_identical_responses(
        self, reset_service: PasswordResetService, credential_store: CredentialStore,
    ) -> None:
        await credential_store.insert(make_account("ann@example.com"), "password123")

        known = await reset_service.request_password_reset(PasswordResetRequest(email="Ann@Example.com"))
        unknown = await reset_service.request_password_reset(PasswordResetRequest(email="ghost@example.com"))

        assert known == unknown
        assert known.success
        assert known.error_message == PASSWORD_RESET_ACK

    @pytest.mark.asyncio
    async def test_requests_are_audited_with_match_flag(
        self,
        reset_service: PasswordResetService,
        credential_store: CredentialStore,
        db: DatabaseManager,
    ) -> None:
        ann = await credential_store.insert(make_account("ann@example.com"), "password123")

        await reset_service.request_password_reset(PasswordResetRequest(email="ann@example.com"))
        await reset_service.request_password_reset(PasswordResetRequest(email="ghost@example.com"))

        rows = db.sqlite.execute(
            "SELECT action, account_id, details FROM audit_log ORDER BY id",
        ).fetchall()
        assert [row["action"] for row in rows] == ["PASSWORD_RESET_REQUESTED"] * 2
        assert rows[0]["account_id"] == ann.id
        assert json.loads(rows[0]["details"]) == {"matched": True}
        assert rows[1]["account_id"] == "unknown"
        assert json.loads(rows[1]["details"]) == {"matched": False}

    @pytest.mark.asyncio
    async def test_audit_timestamp_comes_from_the_clock(
        self, reset_service: PasswordResetService, db: DatabaseManager, clock: FakeClock,
    ) -> None:
        clock.advance(3_600)

        await reset_service.request_password_reset(PasswordResetRequest(email="ghost@example.com"))

        row = db.sqlite.execute("SELECT timestamp FROM audit_log").fetchone()
        assert row["timestamp"] == clock.now.isoformat()


class TestResetPassword:
    """Tests for the structural checks on a reset submission."""

    @pytest.mark.asyncio
    async def test_valid_submission(self, reset_service: PasswordResetService) -> None:
        result = await reset_service.reset_password(
            PasswordResetConfirm(token="abc123", password="newpassword1", confirm_password="newpassword1"),
        )
        assert result.success

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("token", "password", "confirm", "expected"),
        [
            ("", "newpassword1", "newpassword1", AuthErrorCode.MALFORMED_TOKEN),
            ("   ", "newpassword1", "newpassword1", AuthErrorCode.MALFORMED_TOKEN),
            ("abc123", "short", "short", AuthErrorCode.WEAK_PASSWORD),
            ("abc123", "newpassword1", "newpassword2", AuthErrorCode.PASSWORD_MISMATCH),
            ("", "short", "other", AuthErrorCode.MALFORMED_TOKEN),
        ],
    )
    async def test_rejections_in_order(
        self,
        reset_service: PasswordResetService,
        token: str,
        password: str,
        confirm: str,
        expected: AuthErrorCode,
    ) -> None:
        result = await reset_service.reset_password(
            PasswordResetConfirm(token=token, password=password, confirm_password=confirm),
        )
        assert result.error_code == expected

    def test_accepts_camel_case_submission(self) -> None:
        confirm = PasswordResetConfirm.model_validate(
            {"token": "t", "password": "newpassword1", "confirmPassword": "newpassword1"},
        )
        assert confirm.confirm_password == "newpassword1"
