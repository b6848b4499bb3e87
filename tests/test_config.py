"""Tests for AuthConfig defaults and environment overrides."""

import logging

import pytest

from vitalsync_auth.config import AuthConfig

from tests.conftest import make_config


class TestAuthConfig:
    """Tests for configuration loading."""

    def test_defaults(self) -> None:
        config = AuthConfig(_env_file=None)
        assert config.ACCESS_TOKEN_TTL_SECONDS == 86_400
        assert config.REFRESH_TOKEN_TTL_SECONDS == 7 * 86_400
        assert config.PASSWORD_MIN_LENGTH == 8
        assert config.TOKEN_ALGORITHM == "HS256"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CALL_TIMEOUT_S", "2.5")
        monkeypatch.setenv("SEED_DEMO_ACCOUNTS", "true")
        config = AuthConfig(_env_file=None)
        assert config.CALL_TIMEOUT_S == 2.5
        assert config.SEED_DEMO_ACCOUNTS is True

    def test_secret_is_not_leaked_in_repr(self) -> None:
        config = make_config()
        assert "test-token-secret" not in repr(config)

    def test_placeholder_secret_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="vitalsync_auth.config"):
            AuthConfig(_env_file=None)
        assert any("TOKEN_SECRET" in record.getMessage() for record in caplog.records)

    @pytest.mark.parametrize(("name", "level"), [("debug", logging.DEBUG), ("bogus", logging.INFO)])
    def test_log_level(self, name: str, level: int) -> None:
        assert make_config(LOG_LEVEL=name).log_level == level
