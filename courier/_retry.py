"""Retry policy and its compiled decision function.

This is an internal module. ``compile_retry_policy`` turns the declarative
fields of a ``RetryPolicy`` into a single function::

    calculate_delay(attempt_number, error) -> delay in milliseconds

A delay of ``0`` means "do not retry". Attempt numbers are 1-based: the
first retry is attempt 1.
"""

import math
import random
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from courier.exceptions import error_details

RetryDecision = Callable[[int, BaseException], float]

# Status codes for which a Retry-After header is honoured.
RETRY_AFTER_STATUS_CODES = frozenset({413, 429, 503})

# Status code that is never retried by backoff: the payload will not shrink.
PAYLOAD_TOO_LARGE = 413

BACKOFF_BASE_MS = 1000
JITTER_MS = 100


class RetryPolicy(BaseModel):
    """Declarative retry configuration.

    Attributes:
        limit: Maximum number of retries after the first attempt.
        methods: Methods whose HTTP error statuses may be retried.
        status_codes: Status codes that may be retried.
        error_codes: Network error codes that are always retried.
        max_retry_after: Longest server-dictated wait to accept, in ms.
            ``None`` accepts any wait.
        calculate_delay: A user supplied decision function. When set it
            replaces the built-in rules entirely.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    limit: int = Field(default=0, ge=0)
    methods: frozenset[str] = Field(default_factory=frozenset)
    status_codes: frozenset[int] = Field(default_factory=frozenset)
    error_codes: frozenset[str] = Field(default_factory=frozenset)
    max_retry_after: float | None = None
    calculate_delay: RetryDecision | None = None

    @field_validator("methods", mode="before")
    @classmethod
    def uppercase_methods(cls, value: Any) -> Any:
        """Store methods uppercased so lookups match normalized methods."""
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(method).upper() for method in value)
        return value


def parse_retry_after(value: str, now: float | None = None) -> float | None:
    """Parse a Retry-After header value into a delay in milliseconds.

    The value is read as a number of seconds first and as an HTTP date
    second. A number of zero or less gives a delay of ``0``, so the
    request is not retried. Dates in the past and values that do not
    parse at all are treated as if the header were absent.

    Args:
        value: The raw header value.
        now: Current POSIX time in seconds. Defaults to ``time.time()``.

    Returns:
        The delay in milliseconds, or ``None`` when the value is unusable.
    """
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        return max(seconds, 0.0) * 1000

    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    current = time.time() if now is None else now
    delay = (moment.timestamp() - current) * 1000
    if delay <= 0:
        return None
    return delay


def compile_retry_policy(
    policy: RetryPolicy,
    *,
    random_source: Callable[[], float] = random.random,
    clock: Callable[[], float] = time.time,
) -> RetryDecision:
    """Compile a retry policy into its decision function.

    The returned function applies, in order:

    1. Past the retry limit: no retry.
    2. Retry only for an allowed network error code, or for an allowed
       method combined with an allowed status code.
    3. Honour Retry-After on 413, 429 and 503, refusing waits longer than
       ``max_retry_after``.
    4. Never back off on 413.
    5. Otherwise exponential backoff with up to 100ms of jitter.

    Args:
        policy: The policy to compile.
        random_source: Returns a float in ``[0, 1)`` for jitter.
        clock: Returns the current POSIX time in seconds.

    Returns:
        A function of ``(attempt_number, error)`` returning a delay in ms.
    """
    if policy.calculate_delay is not None:
        return policy.calculate_delay

    def calculate_delay(attempt: int, error: BaseException) -> float:
        if attempt > policy.limit:
            return 0

        details = error_details(error)
        code_allowed = details["code"] in policy.error_codes
        status_allowed = (
            details["method"] in policy.methods
            and details["status_code"] in policy.status_codes
        )
        if not code_allowed and not status_allowed:
            return 0

        headers = details["headers"]
        status_code = details["status_code"]
        if "retry-after" in headers and status_code in RETRY_AFTER_STATUS_CODES:
            after = parse_retry_after(headers["retry-after"], now=clock())
            if after is not None:
                if policy.max_retry_after is not None and after > policy.max_retry_after:
                    return 0
                return after

        if status_code == PAYLOAD_TOO_LARGE:
            return 0

        noise = random_source() * JITTER_MS
        return (2 ** (attempt - 1)) * BACKOFF_BASE_MS + noise

    return calculate_delay
