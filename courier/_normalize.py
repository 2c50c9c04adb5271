"""Option normalization.

This is an internal module. It turns loosely typed request options into a
``RequestDescriptor``. Normalization runs in two stages:

- ``pre_normalize`` handles options that do not depend on the request
  itself (headers, hooks, timeout, retry). An engine applies it once to
  its defaults.
- ``normalize`` merges the pre-normalized defaults with the per-request
  options, resolves the URL, runs ``init`` hooks, and fills in the rest.
"""

import asyncio
import importlib.util
import inspect
import logging
import re
import socket
from typing import Any, Mapping, MutableMapping
from urllib.parse import unquote, urlencode

import httpx

from courier._retry import RetryPolicy, compile_retry_policy
from courier.hooks import KNOWN_HOOK_EVENTS, HookSet
from courier.models import URL_FIELDS, RequestDescriptor, Timeouts

logger = logging.getLogger(__name__)

QUERY_DEPRECATION = (
    "The `query` option is deprecated and only supported for compatibility. "
    "Use `search_params` instead."
)

UNIX_SOCKET_PATH = re.compile(r"(.+?):(.+)")

# Host sent to servers listening on a Unix domain socket.
UNIX_SOCKET_HOST = "localhost"


class DeprecationNotice:
    """Logs each deprecation warning once.

    Every engine owns one, so separate engines warn independently.
    """

    def __init__(self) -> None:
        self._shown: set[str] = set()

    def warn_once(self, key: str, message: str) -> None:
        """Log ``message`` unless ``key`` was already warned about."""
        if key in self._shown:
            return
        self._shown.add(key)
        logger.warning(message)


class CachedLookup:
    """Host name resolution that remembers answers in a mapping.

    Attributes:
        cache: Maps ``host:port`` to a list of ``(family, address)`` pairs.
    """

    def __init__(self, cache: MutableMapping[str, Any]) -> None:
        self.cache = cache

    async def lookup(self, hostname: str, port: int | None = None) -> list[tuple[int, str]]:
        """Resolve ``hostname``, answering from the cache when possible."""
        key = f"{hostname}:{port}"
        if key in self.cache:
            return self.cache[key]
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
        addresses = [(family, sockaddr[0]) for family, _, _, _, sockaddr in infos]
        self.cache[key] = addresses
        return addresses


def supports_brotli() -> bool:
    """Whether httpx can decode brotli bodies in this environment."""
    return any(
        importlib.util.find_spec(name) is not None for name in ("brotli", "brotlicffi")
    )


def accepted_encodings() -> str:
    """The widest ``accept-encoding`` value httpx can decode here."""
    return "gzip, deflate, br" if supports_brotli() else "gzip, deflate"


def merge_options(*sources: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge option mappings, later sources taking precedence.

    Nested dicts are merged key by key. Everything else, including lists,
    sets and models, replaces the earlier value. Top-level ``None`` values
    are skipped, so they never erase a default; nested ``None`` values are
    kept (a ``None`` header removes a default header later on).
    Inputs are never mutated.
    """
    merged: dict[str, Any] = {}
    for source in sources:
        for key, value in source.items():
            if value is None:
                continue
            merged[key] = _merge_value(merged.get(key), value)
    return merged


def _merge_value(current: Any, value: Any) -> Any:
    if isinstance(value, dict):
        result = dict(current) if isinstance(current, dict) else {}
        for key, item in value.items():
            result[key] = _merge_value(result.get(key), item)
        return result
    return value


def pre_normalize(
    options: Mapping[str, Any],
    defaults: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Normalize the request-independent options.

    Lowercases header names, fills every hook event (from ``defaults`` when
    the event is missing), turns ``timeout`` into a mapping of budgets, and
    builds the ``RetryPolicy``. Applying it twice gives the same result.

    Args:
        options: Raw options.
        defaults: Pre-normalized defaults the options inherit from.

    Returns:
        A new options dict.

    Raises:
        TypeError: If ``headers``, ``hooks``, ``timeout`` or ``retry`` has
            the wrong shape.
    """
    options = dict(options)

    headers = options.get("headers")
    if headers is None:
        options["headers"] = {}
    elif isinstance(headers, Mapping):
        options["headers"] = {str(key).lower(): value for key, value in headers.items()}
    else:
        raise TypeError(f"Parameter `headers` must be a mapping, not {type(headers).__name__}")

    base_url = options.get("base_url")
    if base_url is not None:
        base_url = str(base_url)
        options["base_url"] = base_url if base_url.endswith("/") else f"{base_url}/"

    default_hooks = defaults.get("hooks") if defaults else None
    options["hooks"] = _normalize_hooks(options.get("hooks"), default_hooks)

    timeout = _normalize_timeout(options.pop("timeout", None))
    if timeout is not None:
        options["timeout"] = timeout

    default_retry = defaults.get("retry") if defaults else None
    options["retry"] = _normalize_retry(options.get("retry"), default_retry, timeout)

    dns_cache = options.pop("dns_cache", None)
    if dns_cache is not None:
        options["lookup"] = CachedLookup(dns_cache)

    return options


def _normalize_hooks(hooks: Any, defaults: Any) -> HookSet:
    if hooks is None:
        hooks = {}
    elif isinstance(hooks, HookSet):
        hooks = {event: getattr(hooks, event) for event in KNOWN_HOOK_EVENTS}
    elif not isinstance(hooks, Mapping):
        raise TypeError(f"Parameter `hooks` must be a mapping, not {type(hooks).__name__}")

    unknown = set(hooks) - set(KNOWN_HOOK_EVENTS)
    if unknown:
        raise TypeError(f"Unknown hook events: {', '.join(sorted(unknown))}")

    lists = {}
    for event in KNOWN_HOOK_EVENTS:
        value = hooks.get(event)
        if value is None:
            value = getattr(defaults, event) if isinstance(defaults, HookSet) else []
        elif not isinstance(value, (list, tuple)):
            raise TypeError(f"Hook `{event}` must be a list, not {type(value).__name__}")
        lists[event] = list(value)
    return HookSet(**lists)


def _normalize_timeout(timeout: Any) -> dict[str, Any] | None:
    if timeout is None:
        return None
    if isinstance(timeout, bool):
        raise TypeError("Parameter `timeout` must be a number or a mapping, not bool")
    if isinstance(timeout, (int, float)):
        return {"request": timeout}
    if isinstance(timeout, Timeouts):
        return timeout.model_dump(exclude_none=True)
    if isinstance(timeout, Mapping):
        return dict(timeout)
    raise TypeError(
        f"Parameter `timeout` must be a number or a mapping, not {type(timeout).__name__}"
    )


def _normalize_retry(retry: Any, defaults: Any, timeout: dict[str, Any] | None) -> RetryPolicy:
    fields: dict[str, Any] = {}
    if retry is not False and isinstance(defaults, RetryPolicy):
        fields.update(_policy_fields(defaults))

    if retry is None or retry is False:
        pass
    elif isinstance(retry, RetryPolicy):
        fields.update(_policy_fields(retry))
    elif isinstance(retry, bool):
        raise TypeError("Parameter `retry` must be a number, a function or a mapping")
    elif isinstance(retry, int):
        fields["limit"] = retry
    elif callable(retry):
        fields["calculate_delay"] = retry
    elif isinstance(retry, Mapping):
        unknown = set(retry) - set(RetryPolicy.model_fields)
        if unknown:
            raise TypeError(f"Unknown retry options: {', '.join(sorted(unknown))}")
        fields.update(retry)
    else:
        raise TypeError(
            f"Parameter `retry` must be a number, a function or a mapping, "
            f"not {type(retry).__name__}"
        )

    if fields.get("max_retry_after") is None and timeout:
        budgets = [
            value for value in (timeout.get("request"), timeout.get("connect")) if value is not None
        ]
        if budgets:
            fields["max_retry_after"] = min(budgets)

    for name in ("methods", "status_codes", "error_codes"):
        value = fields.get(name)
        if value is not None and not isinstance(value, (list, tuple, set, frozenset)):
            raise TypeError(f"Retry option `{name}` must be a collection")

    return RetryPolicy(**fields)


def _policy_fields(policy: RetryPolicy) -> dict[str, Any]:
    return {name: getattr(policy, name) for name in RetryPolicy.model_fields}


def normalize(
    url: Any,
    options: Mapping[str, Any] | None = None,
    defaults: Mapping[str, Any] | None = None,
    *,
    deprecations: DeprecationNotice | None = None,
) -> RequestDescriptor:
    """Normalize a URL and options into a ``RequestDescriptor``.

    Args:
        url: A URL string or ``httpx.URL``; a mapping holding a ``url`` key
            and/or options; or an already normalized descriptor.
        options: Per-request options. They take precedence over ``url``
            mapping entries and over ``defaults``.
        defaults: Engine defaults; pre-normalized here if they are not yet.
        deprecations: Tracks which deprecation warnings were logged.

    Returns:
        The normalized descriptor. Its ``base_url`` can no longer be set.

    Raises:
        TypeError: If ``url`` or one of the structured options has the
            wrong shape, or an ``init`` hook is asynchronous.
    """
    options = dict(options or {})
    if deprecations is None:
        deprecations = DeprecationNotice()

    if isinstance(url, RequestDescriptor):
        options = {**url.to_options(), **options}
        url = url.url
    elif isinstance(url, Mapping):
        options = {**url, **options}
        url = options.pop("url", None)
        if url is None:
            url = {}

    pre_defaults = pre_normalize(defaults) if defaults else None
    merged = merge_options(pre_defaults or {}, pre_normalize(options, pre_defaults))

    if isinstance(url, httpx.URL):
        url = str(url)
    if isinstance(url, str):
        components = _resolve_url(url, merged.get("base_url"))
    elif isinstance(url, Mapping):
        components = {key: url[key] for key in URL_FIELDS if url.get(key) is not None}
    else:
        raise TypeError(f"Parameter `url` must be a string or a mapping, not {type(url).__name__}")

    for key in URL_FIELDS:
        if merged.get(key) is not None:
            components[key] = merged.pop(key)
    components["protocol"] = str(components.get("protocol") or "https").rstrip(":").lower()
    components.setdefault("path", "/")

    search_params = merged.pop("search_params", None)
    query = merged.pop("query", None)

    form = merged.get("form")
    if form is not None and not isinstance(form, (Mapping, list, tuple)):
        raise TypeError(f"The `form` option must be a mapping, not {type(form).__name__}")

    descriptor = RequestDescriptor(**{**components, **merged})

    for hook in descriptor.hooks.init:
        result = hook(descriptor)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("The `init` hook must be a synchronous function")

    descriptor.freeze_base_url()

    if query is not None:
        deprecations.warn_once("query", QUERY_DEPRECATION)
        if isinstance(search_params, Mapping) and isinstance(query, Mapping):
            search_params = {**search_params, **query}
        else:
            search_params = query

    serialized = serialize_search_params(search_params)
    if serialized:
        descriptor.path = f"{descriptor.path.split('?')[0]}?{serialized}"

    if descriptor.hostname == "unix":
        matches = UNIX_SOCKET_PATH.match(descriptor.path or "")
        if matches:
            descriptor.socket_path, descriptor.path = matches.groups()
            descriptor.hostname = UNIX_SOCKET_HOST

    descriptor.headers = {
        str(key).lower(): str(value)
        for key, value in descriptor.headers.items()
        if value is not None
    }

    if descriptor.decompress and "accept-encoding" not in descriptor.headers:
        descriptor.headers["accept-encoding"] = accepted_encodings()

    descriptor.method = descriptor.method.upper()
    descriptor.compute_retry_delay = compile_retry_policy(descriptor.retry)

    return descriptor


def _resolve_url(url: str, base_url: str | None) -> dict[str, Any]:
    if base_url:
        if url.startswith("/"):
            url = url[1:]
        return url_components(httpx.URL(base_url).join(url))

    if url.startswith("unix:"):
        return {"protocol": "http", "hostname": "unix", "path": url[len("unix:"):]}

    target = httpx.URL(url)
    if not target.scheme:
        target = httpx.URL(f"https://{url}")
    return url_components(target)


def url_components(url: httpx.URL) -> dict[str, Any]:
    """Split an absolute URL into descriptor fields."""
    components: dict[str, Any] = {
        "protocol": url.scheme,
        "hostname": url.host or None,
        "port": url.port,
        "path": url.raw_path.decode("ascii") or "/",
    }
    if url.userinfo:
        components["auth"] = unquote(url.userinfo.decode("ascii"))
    return components


def serialize_search_params(search_params: Any) -> str | None:
    """Serialize search params into a query string.

    Accepts a string, a mapping, ``httpx.QueryParams`` or a sequence of
    ``(name, value)`` pairs. ``None`` values are dropped.

    Raises:
        TypeError: If a value is not a string, number, boolean or ``None``.
    """
    if search_params is None:
        return None
    if isinstance(search_params, str):
        return search_params.lstrip("?") or None
    if isinstance(search_params, httpx.QueryParams):
        return str(search_params) or None

    if isinstance(search_params, Mapping):
        pairs = list(search_params.items())
    elif isinstance(search_params, (list, tuple)):
        pairs = []
        for pair in search_params:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise TypeError("`search_params` pairs must be (name, value) tuples")
            pairs.append(tuple(pair))
    else:
        raise TypeError(
            f"Parameter `search_params` must be a string or a mapping, "
            f"not {type(search_params).__name__}"
        )

    encoded = [(str(name), _scalar(value)) for name, value in pairs if value is not None]
    return urlencode(encoded) or None


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise TypeError(
        f"The `search_params` value {value!r} must be a string, number, boolean or None"
    )
