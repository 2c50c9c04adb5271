"""Redirect decisions.

This is an internal module. Given a response status, its ``Location``
header and the request that produced it, ``resolve_redirect`` decides
whether to follow, which method the next hop uses, and where it goes.
"""

from typing import NamedTuple

import httpx

# Redirect statuses followed for GET and HEAD requests.
GET_METHOD_REDIRECT_CODES = frozenset({300, 301, 302, 303, 304, 305, 307, 308})

# Redirect statuses followed whatever the method.
ALL_METHOD_REDIRECT_CODES = frozenset({300, 303, 307, 308})

SEE_OTHER = 303

MAX_REDIRECTS = 10


class RedirectDecision(NamedTuple):
    """Outcome of a redirect evaluation."""

    should_follow: bool
    next_url: str | None = None
    next_method: str | None = None


NO_REDIRECT = RedirectDecision(should_follow=False)


def is_redirect_candidate(
    status_code: int,
    has_location: bool,
    method: str,
    follow_redirect: bool = True,
) -> bool:
    """Whether a response with this status would be followed.

    Args:
        status_code: The response status code.
        has_location: Whether the response carries a ``Location`` header.
        method: The method of the request that produced the response.
        follow_redirect: Whether redirects are enabled at all.
    """
    if not follow_redirect or not has_location:
        return False
    if status_code in ALL_METHOD_REDIRECT_CODES:
        return True
    return status_code in GET_METHOD_REDIRECT_CODES and method in ("GET", "HEAD")


def decode_location(location: str | bytes) -> str:
    """Decode a ``Location`` value as raw bytes, then as UTF-8 text.

    Servers sometimes send UTF-8 bytes unescaped. A ``str`` is assumed to
    hold those bytes one per character, as latin-1 decoding leaves them.
    """
    if isinstance(location, str):
        try:
            location = location.encode("latin-1")
        except UnicodeEncodeError:
            return location
    return location.decode("utf-8", errors="replace")


def resolve_redirect(
    status_code: int,
    location: str | bytes | None,
    current_url: str,
    method: str,
    follow_redirect: bool = True,
) -> RedirectDecision:
    """Decide whether and where to redirect.

    Args:
        status_code: The response status code.
        location: The raw ``Location`` header value, if present.
        current_url: The URL that produced the response.
        method: The method of the request that produced the response.
        follow_redirect: Whether redirects are enabled at all.

    Returns:
        The redirect decision. A 303 always continues with GET.
    """
    if not is_redirect_candidate(status_code, location is not None, method, follow_redirect):
        return NO_REDIRECT

    next_method = "GET" if status_code == SEE_OTHER else method
    next_url = httpx.URL(current_url).join(decode_location(location))
    return RedirectDecision(
        should_follow=True,
        next_url=str(next_url),
        next_method=next_method,
    )
