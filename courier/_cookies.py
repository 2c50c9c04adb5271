"""Cookie jar capability.

The lifecycle talks to any object providing::

    get_cookie_string(url) -> str
    set_cookie(raw_set_cookie_header, url) -> None

Either method may be a coroutine function. ``HTTPXCookieJar`` provides
both on top of ``httpx.Cookies``.
"""

import inspect
from typing import Any, Protocol, runtime_checkable

import httpx


@runtime_checkable
class CookieJar(Protocol):
    """What the lifecycle needs from a cookie jar."""

    def get_cookie_string(self, url: str) -> Any:
        ...

    def set_cookie(self, raw_cookie: str, url: str) -> Any:
        ...


class HTTPXCookieJar:
    """Cookie jar backed by ``httpx.Cookies``.

    Attributes:
        cookies: The underlying cookie store. Share it with an
            ``httpx.AsyncClient`` to keep both in sync.
    """

    def __init__(self, cookies: httpx.Cookies | None = None) -> None:
        self.cookies = cookies if cookies is not None else httpx.Cookies()

    def get_cookie_string(self, url: str) -> str:
        """Return the ``Cookie`` header value to send to ``url``."""
        request = httpx.Request("GET", url)
        self.cookies.set_cookie_header(request)
        return request.headers.get("cookie", "")

    def set_cookie(self, raw_cookie: str, url: str) -> None:
        """Store one raw ``Set-Cookie`` header value received from ``url``."""
        response = httpx.Response(
            200,
            headers=[("set-cookie", raw_cookie)],
            request=httpx.Request("GET", url),
        )
        self.cookies.extract_cookies(response)


async def resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it."""
    if inspect.isawaitable(value):
        return await value
    return value
