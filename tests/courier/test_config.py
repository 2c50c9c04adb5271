"""Unit tests for courier configuration.

This module tests courier/config.py: reading settings from the
environment, loading .env files, and turning settings into options.
"""

from pathlib import Path

import pytest

from courier.config import (
    DEFAULT_OPTIONS,
    CourierSettings,
    load_dotenv_for_courier,
)

ENV_VARS = [
    "COURIER_TIMEOUT",
    "COURIER_CONNECT_TIMEOUT",
    "COURIER_RETRY_LIMIT",
    "COURIER_MAX_RETRY_AFTER",
    "COURIER_FOLLOW_REDIRECT",
    "COURIER_DECOMPRESS",
    "COURIER_THROW_HTTP_ERRORS",
    "COURIER_USER_AGENT",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without COURIER_* variables.

    Setting before deleting makes monkeypatch restore the original state,
    which also removes anything a .env file loaded during the test.
    """
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestDefaults:
    """Tests for DEFAULT_OPTIONS."""

    def test_retry_defaults(self) -> None:
        """The stock retry policy."""
        retry = DEFAULT_OPTIONS["retry"]
        assert retry["limit"] == 2
        assert retry["methods"] == ["GET", "PUT", "HEAD", "DELETE", "OPTIONS", "TRACE"]
        assert retry["status_codes"] == [408, 413, 429, 500, 502, 503, 504]
        assert "EAI_AGAIN" in retry["error_codes"]

    def test_user_agent(self) -> None:
        """A courier user agent is sent by default."""
        assert DEFAULT_OPTIONS["headers"]["user-agent"].startswith("courier/")


class TestFromEnvironment:
    """Tests for CourierSettings.from_environment."""

    def test_empty_environment(self) -> None:
        """Nothing set means no overrides."""
        settings = CourierSettings.from_environment()
        assert settings == CourierSettings()
        assert settings.to_options() == {}

    def test_reads_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Every variable maps onto a setting."""
        monkeypatch.setenv("COURIER_TIMEOUT", "5000")
        monkeypatch.setenv("COURIER_CONNECT_TIMEOUT", "1000")
        monkeypatch.setenv("COURIER_RETRY_LIMIT", "4")
        monkeypatch.setenv("COURIER_MAX_RETRY_AFTER", "30000")
        monkeypatch.setenv("COURIER_FOLLOW_REDIRECT", "false")
        monkeypatch.setenv("COURIER_DECOMPRESS", "yes")
        monkeypatch.setenv("COURIER_THROW_HTTP_ERRORS", "0")
        monkeypatch.setenv("COURIER_USER_AGENT", "tests/1.0")

        settings = CourierSettings.from_environment()

        assert settings.timeout == 5000
        assert settings.connect_timeout == 1000
        assert settings.retry_limit == 4
        assert settings.max_retry_after == 30000
        assert settings.follow_redirect is False
        assert settings.decompress is True
        assert settings.throw_http_errors is False
        assert settings.user_agent == "tests/1.0"

    def test_blank_values_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Blank variables count as unset."""
        monkeypatch.setenv("COURIER_TIMEOUT", "  ")
        assert CourierSettings.from_environment().timeout is None

    def test_invalid_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Invalid numbers are rejected."""
        monkeypatch.setenv("COURIER_RETRY_LIMIT", "-1")
        with pytest.raises(ValueError):
            CourierSettings.from_environment()

    def test_frozen(self) -> None:
        """Settings cannot change after creation."""
        settings = CourierSettings()
        with pytest.raises(ValueError):
            settings.timeout = 10


class TestToOptions:
    """Tests for CourierSettings.to_options."""

    def test_all_fields(self) -> None:
        """Set fields become request options."""
        settings = CourierSettings(
            timeout=5000,
            connect_timeout=1000,
            retry_limit=1,
            max_retry_after=2000,
            follow_redirect=False,
            user_agent="tests/1.0",
        )
        assert settings.to_options() == {
            "timeout": {"request": 5000, "connect": 1000},
            "retry": {"limit": 1, "max_retry_after": 2000},
            "follow_redirect": False,
            "headers": {"user-agent": "tests/1.0"},
        }


class TestLoadDotenv:
    """Tests for load_dotenv_for_courier."""

    def test_loads_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Variables from the file become visible to from_environment."""
        env_file = tmp_path / ".env"
        env_file.write_text("COURIER_RETRY_LIMIT=7\n")

        assert load_dotenv_for_courier(env_file) is True
        assert CourierSettings.from_environment().retry_limit == 7

    def test_existing_variables_win(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """The file does not override the process environment by default."""
        monkeypatch.setenv("COURIER_RETRY_LIMIT", "1")
        env_file = tmp_path / ".env"
        env_file.write_text("COURIER_RETRY_LIMIT=7\n")

        load_dotenv_for_courier(env_file)

        assert CourierSettings.from_environment().retry_limit == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is skipped."""
        assert load_dotenv_for_courier(tmp_path / "absent.env") is False

    def test_default_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a path the .env in the working directory is used."""
        (tmp_path / ".env").write_text("COURIER_USER_AGENT=from-cwd\n")
        monkeypatch.chdir(tmp_path)

        load_dotenv_for_courier()

        assert CourierSettings.from_environment().user_agent == "from-cwd"
