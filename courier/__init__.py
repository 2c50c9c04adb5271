"""courier: an asyncio HTTP client engine built on httpx.

Each request is normalized into a ``RequestDescriptor`` and driven by a
``RequestLifecycle`` that follows redirects, retries transient failures
with backoff, runs lifecycle hooks, and delivers exactly one outcome.

Example:
    Issuing requests::

        from courier import Courier

        async with Courier({"retry": 3}) as engine:
            response = await engine.get("https://example.test/status")
            print(response.status_code, response.text)

Exports:
    Courier: Engine holding shared defaults and a connection pool.
    RequestLifecycle: One running logical request; await it.
    Response: A completed response with lifecycle metadata.
    RequestDescriptor: The normalized form of a request.

    Exceptions:
        CourierError: Base exception for all engine errors.
        RequestError: The transport failed.
        TimeoutError: A timeout budget elapsed.
        HTTPError: The server answered with an error status.
        MaxRedirectsError: Too many redirects.
        CancelError: The request was aborted.
"""

__version__ = "0.1.0"

from courier._cache import MemoryCache
from courier._cookies import CookieJar, HTTPXCookieJar
from courier._lifecycle import LifecycleState, RequestLifecycle
from courier._normalize import DeprecationNotice, normalize, pre_normalize
from courier._response import Progress, Response
from courier._retry import RetryPolicy, compile_retry_policy, parse_retry_after
from courier._timings import Timings
from courier.client import Courier
from courier.config import DEFAULT_OPTIONS, CourierSettings, load_dotenv_for_courier
from courier.exceptions import (
    CacheError,
    CancelError,
    CourierError,
    HTTPError,
    MaxRedirectsError,
    OptionsNormalizedError,
    ParseError,
    ReadError,
    RequestError,
    TimeoutError,
    UnsupportedProtocolError,
)
from courier.hooks import HookSet
from courier.models import RequestDescriptor, Timeouts

__all__ = [
    # Engine
    "Courier",
    "CourierSettings",
    "DEFAULT_OPTIONS",
    "load_dotenv_for_courier",
    # Lifecycle
    "RequestLifecycle",
    "LifecycleState",
    "Response",
    "Progress",
    "Timings",
    # Options
    "RequestDescriptor",
    "Timeouts",
    "RetryPolicy",
    "HookSet",
    "normalize",
    "pre_normalize",
    "DeprecationNotice",
    "compile_retry_policy",
    "parse_retry_after",
    # Capabilities
    "CookieJar",
    "HTTPXCookieJar",
    "MemoryCache",
    # Exceptions
    "CourierError",
    "RequestError",
    "TimeoutError",
    "ReadError",
    "CacheError",
    "UnsupportedProtocolError",
    "MaxRedirectsError",
    "HTTPError",
    "ParseError",
    "CancelError",
    "OptionsNormalizedError",
]
