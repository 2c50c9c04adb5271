"""Configuration for courier engines.

Defaults can come from three places, later ones winning:

1. ``DEFAULT_OPTIONS``, the stock request defaults.
2. ``CourierSettings``, usually read from ``COURIER_*`` environment
   variables (optionally loaded from a ``.env`` file).
3. The ``defaults`` mapping passed to ``Courier``.

Environment variables:
    COURIER_TIMEOUT: Overall per-attempt budget in milliseconds.
    COURIER_CONNECT_TIMEOUT: Connect budget in milliseconds.
    COURIER_RETRY_LIMIT: Retries after the first attempt.
    COURIER_MAX_RETRY_AFTER: Longest Retry-After wait accepted, in ms.
    COURIER_FOLLOW_REDIRECT: Follow redirects (``true``/``false``).
    COURIER_DECOMPRESS: Decode compressed bodies.
    COURIER_THROW_HTTP_ERRORS: Fail requests on error statuses.
    COURIER_USER_AGENT: ``user-agent`` header sent by default.
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from courier import __version__

DEFAULT_USER_AGENT = f"courier/{__version__}"

DEFAULT_OPTIONS: dict[str, Any] = {
    "method": "GET",
    "headers": {"user-agent": DEFAULT_USER_AGENT},
    "retry": {
        "limit": 2,
        "methods": ["GET", "PUT", "HEAD", "DELETE", "OPTIONS", "TRACE"],
        "status_codes": [408, 413, 429, 500, 502, 503, 504],
        "error_codes": [
            "ETIMEDOUT",
            "ECONNRESET",
            "EADDRINUSE",
            "ECONNREFUSED",
            "EPIPE",
            "ENOTFOUND",
            "ENETUNREACH",
            "EAI_AGAIN",
        ],
    },
    "follow_redirect": True,
    "decompress": True,
    "throw_http_errors": True,
    "response_type": "text",
}


class CourierSettings(BaseModel):
    """Engine-wide settings.

    Every field left as ``None`` falls back to ``DEFAULT_OPTIONS``.
    """

    model_config = ConfigDict(frozen=True)

    timeout: float | None = Field(default=None, gt=0)
    connect_timeout: float | None = Field(default=None, gt=0)
    retry_limit: int | None = Field(default=None, ge=0)
    max_retry_after: float | None = Field(default=None, ge=0)
    follow_redirect: bool | None = None
    decompress: bool | None = None
    throw_http_errors: bool | None = None
    user_agent: str | None = None

    @classmethod
    def from_environment(cls) -> "CourierSettings":
        """Create settings from ``COURIER_*`` environment variables."""
        return cls(
            timeout=_get_env_var("COURIER_TIMEOUT"),
            connect_timeout=_get_env_var("COURIER_CONNECT_TIMEOUT"),
            retry_limit=_get_env_var("COURIER_RETRY_LIMIT"),
            max_retry_after=_get_env_var("COURIER_MAX_RETRY_AFTER"),
            follow_redirect=_get_bool("COURIER_FOLLOW_REDIRECT"),
            decompress=_get_bool("COURIER_DECOMPRESS"),
            throw_http_errors=_get_bool("COURIER_THROW_HTTP_ERRORS"),
            user_agent=_get_env_var("COURIER_USER_AGENT"),
        )

    def to_options(self) -> dict[str, Any]:
        """Return request options for the settings that are set.

        The result is meant to be merged over ``DEFAULT_OPTIONS``.
        """
        options: dict[str, Any] = {}

        timeout = {
            name: value
            for name, value in (("request", self.timeout), ("connect", self.connect_timeout))
            if value is not None
        }
        if timeout:
            options["timeout"] = timeout

        retry = {
            name: value
            for name, value in (
                ("limit", self.retry_limit),
                ("max_retry_after", self.max_retry_after),
            )
            if value is not None
        }
        if retry:
            options["retry"] = retry

        for name in ("follow_redirect", "decompress", "throw_http_errors"):
            value = getattr(self, name)
            if value is not None:
                options[name] = value

        if self.user_agent:
            options["headers"] = {"user-agent": self.user_agent}

        return options


def _get_env_var(key: str) -> str | None:
    """Get an environment variable, treating an empty value as unset."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _get_bool(key: str) -> bool | None:
    """Get a boolean environment variable, or ``None`` when unset."""
    value = _get_env_var(key)
    if value is None:
        return None
    return value.lower() in {"1", "true", "yes", "on"}


def load_dotenv_for_courier(path: Path | None = None, *, override: bool = False) -> bool:
    """Load ``COURIER_*`` variables from a ``.env`` file.

    Args:
        path: File to load. Defaults to ``.env`` in the working directory.
        override: Whether values in the file replace existing variables.

    Returns:
        Whether a file was found and loaded.
    """
    if path is None:
        path = Path.cwd() / ".env"
    if not path.exists():
        return False
    return load_dotenv(path, override=override)
