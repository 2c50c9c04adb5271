"""Response cache capability.

A cache is any object with a ``wrap(send, descriptor)`` method returning a
send function of the same shape::

    async send(request: httpx.Request) -> httpx.Response

``MemoryCache`` puts a hishel cache transport in front of the send
function. Freshness, validation and storage follow hishel's RFC 9111
controller. Exceptions raised by the wrapped ``send`` must pass through
unchanged; anything else the cache raises is reported as a ``CacheError``.
"""

import logging
from typing import Awaitable, Callable

import hishel
import httpx

from courier.models import RequestDescriptor

logger = logging.getLogger(__name__)

Send = Callable[[httpx.Request], Awaitable[httpx.Response]]

CACHEABLE_METHODS = ("GET", "HEAD")

# Statuses that are cacheable by default (RFC 9110 section 15.1).
CACHEABLE_STATUS_CODES = (200, 203, 204, 206, 300, 301, 308, 404, 405, 410, 414, 501)


class SendTransport(httpx.AsyncBaseTransport):
    """Expose a send function as an httpx transport."""

    def __init__(self, send: Send) -> None:
        self._send = send

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._send(request)


class MemoryCache:
    """Cache responses in a hishel storage, in memory by default.

    Only GET and HEAD requests go through the cache. A response carries
    hishel's ``from_cache`` extension; descriptors with ``force_refresh``
    set are sent with hishel's ``cache_disabled`` extension.

    Attributes:
        storage: The hishel async storage entries live in. Pass a shared
            or persistent one (for example ``hishel.AsyncFileStorage``)
            to keep entries across engines.
        controller: The hishel controller deciding what is cacheable.
    """

    def __init__(
        self,
        storage: hishel.AsyncBaseStorage | None = None,
        controller: hishel.Controller | None = None,
    ) -> None:
        self.storage = storage if storage is not None else hishel.AsyncInMemoryStorage()
        self.controller = controller or hishel.Controller(
            cacheable_methods=list(CACHEABLE_METHODS),
            cacheable_status_codes=list(CACHEABLE_STATUS_CODES),
        )

    def wrap(self, send: Send, descriptor: RequestDescriptor) -> Send:
        """Return ``send`` with cache lookups and stores around it."""
        transport = hishel.AsyncCacheTransport(
            transport=SendTransport(send),
            storage=self.storage,
            controller=self.controller,
        )

        async def cached_send(request: httpx.Request) -> httpx.Response:
            if request.method not in CACHEABLE_METHODS:
                return await send(request)
            if descriptor.force_refresh:
                request.extensions["cache_disabled"] = True

            response = await transport.handle_async_request(request)
            if response.extensions.get("from_cache"):
                logger.debug(f"Cache hit for {request.method} {request.url}")
            return response

        return cached_send
