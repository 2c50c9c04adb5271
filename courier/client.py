"""The courier engine.

``Courier`` is the entry point: it holds normalized defaults and a shared
``httpx.AsyncClient``, and turns each call into a ``RequestLifecycle``.

Example:
    Basic usage::

        from courier import Courier

        async with Courier({"base_url": "https://api.example.test"}) as engine:
            response = await engine.get("items", search_params={"page": 2})
            items = response.json()

    Watching a single request::

        lifecycle = engine.post("items", json={"name": "widget"})
        lifecycle.on("retry", lambda error, count: print(f"retry {count}: {error}"))
        response = await lifecycle
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Mapping

import httpx

from courier._lifecycle import RequestLifecycle
from courier._normalize import DeprecationNotice, merge_options, normalize, pre_normalize
from courier.config import DEFAULT_OPTIONS, CourierSettings, load_dotenv_for_courier

logger = logging.getLogger(__name__)


class Courier:
    """HTTP engine issuing requests with shared defaults.

    Attributes:
        defaults: The pre-normalized default options every request
            inherits.
        settings: The settings the defaults were built from.
    """

    def __init__(
        self,
        defaults: Mapping[str, Any] | None = None,
        *,
        settings: CourierSettings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            defaults: Request options applied to every request. They take
                precedence over ``settings`` and the stock defaults.
            settings: Engine settings, for example from the environment.
            client: Client used for requests that name no transport or
                agent. When omitted the engine creates and owns one.
            sleep: Awaitable delay function used between retries.

        Raises:
            TypeError: If ``defaults`` contains malformed options.
        """
        self.settings = settings or CourierSettings()
        base = pre_normalize(merge_options(DEFAULT_OPTIONS, self.settings.to_options()))
        self.defaults = merge_options(base, pre_normalize(defaults or {}, base))
        self._deprecations = DeprecationNotice()
        self._owns_client = client is None
        self._client = client
        self._sleep = sleep

    @classmethod
    def from_environment(
        cls,
        defaults: Mapping[str, Any] | None = None,
        *,
        dotenv_path: Path | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "Courier":
        """Create an engine configured from ``COURIER_*`` variables.

        A ``.env`` file is loaded first when one exists; variables already
        set in the process environment win.
        """
        load_dotenv_for_courier(dotenv_path)
        return cls(defaults, settings=CourierSettings.from_environment(), client=client)

    async def __aenter__(self) -> "Courier":
        """Enter async context manager.

        Returns:
            The engine instance.
        """
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager and close the engine."""
        await self.close()

    async def close(self) -> None:
        """Close the shared client if the engine created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _shared_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def request(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a request.

        Must be called while an event loop is running. The request starts
        on the next loop tick.

        Args:
            url: Absolute URL, a URL relative to ``base_url``, or a mapping
                of URL parts and options.
            **options: Request options overriding the engine defaults.

        Returns:
            The running lifecycle. Await it for the ``Response``.

        Raises:
            TypeError: If the options are malformed or an ``init`` hook is
                asynchronous.
        """
        descriptor = normalize(url, options, self.defaults, deprecations=self._deprecations)
        logger.debug(f"Starting {descriptor.method} {descriptor.url}")
        return RequestLifecycle(descriptor, client=self._shared_client(), sleep=self._sleep)

    def get(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a GET request."""
        return self.request(url, **{**options, "method": "GET"})

    def post(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a POST request."""
        return self.request(url, **{**options, "method": "POST"})

    def put(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a PUT request."""
        return self.request(url, **{**options, "method": "PUT"})

    def patch(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a PATCH request."""
        return self.request(url, **{**options, "method": "PATCH"})

    def head(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a HEAD request."""
        return self.request(url, **{**options, "method": "HEAD"})

    def delete(self, url: Any, **options: Any) -> RequestLifecycle:
        """Start a DELETE request."""
        return self.request(url, **{**options, "method": "DELETE"})
