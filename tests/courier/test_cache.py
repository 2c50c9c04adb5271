"""Unit tests for the response cache and cookie jar adapters.

This module tests courier/_cache.py and courier/_cookies.py directly,
without a lifecycle around them.
"""

from email.utils import formatdate

import hishel
import httpx

from courier._cache import MemoryCache
from courier._cookies import CookieJar, HTTPXCookieJar, resolve
from courier._normalize import normalize


def fresh_headers(**extra: str) -> dict[str, str]:
    """Headers making a response fresh for a minute."""
    headers = {"cache-control": "max-age=60", "date": formatdate(usegmt=True)}
    headers.update(extra)
    return headers


def counting_send(response_factory):
    """Wrap a response factory in a send function that counts calls."""

    async def send(request: httpx.Request) -> httpx.Response:
        send.calls += 1
        return response_factory(request)

    send.calls = 0
    return send


async def fetch(cached_send, method: str, url: str) -> httpx.Response:
    """Send a request through the cache and read the body."""
    response = await cached_send(httpx.Request(method, url))
    await response.aread()
    return response


# =============================================================================
# MemoryCache
# =============================================================================


class TestMemoryCache:
    """Tests for MemoryCache.wrap."""

    async def test_stores_and_serves(self) -> None:
        """A fresh response is served from storage on the next request."""
        cache = MemoryCache()
        send = counting_send(
            lambda request: httpx.Response(200, text="body", headers=fresh_headers())
        )
        descriptor = normalize("https://example.test/item")
        cached_send = cache.wrap(send, descriptor)

        first = await fetch(cached_send, "GET", descriptor.url)
        second = await fetch(cached_send, "GET", descriptor.url)

        assert send.calls == 1
        assert not first.extensions.get("from_cache")
        assert second.extensions["from_cache"] is True
        assert second.text == "body"

    async def test_shared_between_wraps(self) -> None:
        """Entries outlive a single wrapped send function."""
        cache = MemoryCache()
        send = counting_send(lambda request: httpx.Response(200, headers=fresh_headers()))
        descriptor = normalize("https://example.test/")

        await fetch(cache.wrap(send, descriptor), "GET", descriptor.url)
        second = await fetch(cache.wrap(send, descriptor), "GET", descriptor.url)

        assert send.calls == 1
        assert second.extensions["from_cache"] is True

    async def test_post_not_cached(self) -> None:
        """Only GET and HEAD go through the cache."""
        cache = MemoryCache()
        send = counting_send(lambda request: httpx.Response(200, headers=fresh_headers()))
        descriptor = normalize("https://example.test/", {"method": "POST"})
        cached_send = cache.wrap(send, descriptor)

        await fetch(cached_send, "POST", descriptor.url)
        response = await fetch(cached_send, "POST", descriptor.url)

        assert send.calls == 2
        assert "from_cache" not in response.extensions

    async def test_uncacheable_status(self) -> None:
        """Statuses outside the cacheable set are not stored."""
        cache = MemoryCache()
        send = counting_send(lambda request: httpx.Response(500, headers=fresh_headers()))
        cached_send = cache.wrap(send, normalize("https://example.test/"))

        await fetch(cached_send, "GET", "https://example.test/")
        response = await fetch(cached_send, "GET", "https://example.test/")

        assert send.calls == 2
        assert response.status_code == 500

    async def test_no_store(self) -> None:
        """no-store responses are never served from the cache."""
        cache = MemoryCache()
        send = counting_send(
            lambda request: httpx.Response(
                200, headers=fresh_headers(**{"cache-control": "no-store"})
            )
        )
        cached_send = cache.wrap(send, normalize("https://example.test/"))

        await fetch(cached_send, "GET", "https://example.test/")
        response = await fetch(cached_send, "GET", "https://example.test/")

        assert send.calls == 2
        assert not response.extensions.get("from_cache")

    async def test_force_refresh(self) -> None:
        """force_refresh sends the request with caching disabled."""
        cache = MemoryCache()
        extensions = []

        def respond(request: httpx.Request) -> httpx.Response:
            extensions.append(request.extensions.get("cache_disabled"))
            return httpx.Response(200, headers=fresh_headers())

        send = counting_send(respond)
        descriptor = normalize("https://example.test/")
        await fetch(cache.wrap(send, descriptor), "GET", descriptor.url)
        refreshed = normalize("https://example.test/", {"force_refresh": True})
        response = await fetch(cache.wrap(send, refreshed), "GET", "https://example.test/")

        assert send.calls == 2
        assert extensions == [None, True]
        assert not response.extensions.get("from_cache")

    async def test_custom_storage(self) -> None:
        """A hishel storage passed in is the one used."""
        storage = hishel.AsyncInMemoryStorage()
        cache = MemoryCache(storage)
        assert cache.storage is storage

        send = counting_send(lambda request: httpx.Response(200, headers=fresh_headers()))
        descriptor = normalize("https://example.test/")
        await fetch(cache.wrap(send, descriptor), "GET", descriptor.url)

        second = MemoryCache(storage)
        response = await fetch(
            second.wrap(send, normalize("https://example.test/")), "GET", "https://example.test/"
        )
        assert send.calls == 1
        assert response.extensions["from_cache"] is True


# =============================================================================
# Cookies
# =============================================================================


class TestHTTPXCookieJar:
    """Tests for the httpx.Cookies adapter."""

    def test_round_trip(self) -> None:
        """A stored cookie is sent back to the same site."""
        jar = HTTPXCookieJar()
        jar.set_cookie("token=xyz; Path=/", "https://example.test/login")
        assert jar.get_cookie_string("https://example.test/account") == "token=xyz"

    def test_path_scoping(self) -> None:
        """Cookies are only sent under their path."""
        jar = HTTPXCookieJar()
        jar.set_cookie("scoped=1; Path=/admin", "https://example.test/admin/login")
        assert jar.get_cookie_string("https://example.test/public") == ""
        assert jar.get_cookie_string("https://example.test/admin/panel") == "scoped=1"

    def test_shared_cookies(self) -> None:
        """An existing httpx.Cookies store is used directly."""
        cookies = httpx.Cookies()
        jar = HTTPXCookieJar(cookies)
        jar.set_cookie("a=1", "https://example.test/")
        assert cookies.get("a") == "1"

    def test_satisfies_protocol(self) -> None:
        """The adapter is a CookieJar."""
        assert isinstance(HTTPXCookieJar(), CookieJar)


class TestResolve:
    """Tests for resolve."""

    async def test_plain_value(self) -> None:
        """Plain values are returned as they are."""
        assert await resolve("value") == "value"

    async def test_awaitable(self) -> None:
        """Awaitables are awaited."""

        async def produce() -> str:
            return "later"

        assert await resolve(produce()) == "later"
