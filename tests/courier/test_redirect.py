"""Unit tests for redirect decisions.

This module tests courier/_redirect.py. The tests verify:

1. Which statuses are followed for which methods.
2. That 303 switches to GET and other statuses keep the method.
3. Location resolution against the current URL, including raw UTF-8.
"""

import pytest

from courier._redirect import (
    ALL_METHOD_REDIRECT_CODES,
    GET_METHOD_REDIRECT_CODES,
    NO_REDIRECT,
    decode_location,
    is_redirect_candidate,
    resolve_redirect,
)

CURRENT = "http://example.test/a/b"


# =============================================================================
# Candidates
# =============================================================================


class TestRedirectCandidates:
    """Tests for is_redirect_candidate."""

    @pytest.mark.parametrize("status_code", sorted(GET_METHOD_REDIRECT_CODES))
    @pytest.mark.parametrize("method", ["GET", "HEAD"])
    def test_get_and_head_follow_all_redirects(self, status_code: int, method: str) -> None:
        """GET and HEAD follow every redirect status."""
        assert is_redirect_candidate(status_code, True, method)

    @pytest.mark.parametrize("status_code", [301, 302, 304, 305])
    def test_post_does_not_follow_get_only_statuses(self, status_code: int) -> None:
        """POST does not follow statuses reserved for GET and HEAD."""
        assert not is_redirect_candidate(status_code, True, "POST")

    @pytest.mark.parametrize("status_code", sorted(ALL_METHOD_REDIRECT_CODES))
    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    def test_any_method_statuses(self, status_code: int, method: str) -> None:
        """300, 303, 307 and 308 are followed whatever the method."""
        assert is_redirect_candidate(status_code, True, method)

    def test_requires_location(self) -> None:
        """Nothing is followed without a Location header."""
        assert not is_redirect_candidate(302, False, "GET")

    def test_disabled(self) -> None:
        """Nothing is followed when redirects are off."""
        assert not is_redirect_candidate(302, True, "GET", follow_redirect=False)

    def test_non_redirect_status(self) -> None:
        """Other statuses are never followed."""
        assert not is_redirect_candidate(200, True, "GET")
        assert not is_redirect_candidate(306, True, "GET")


# =============================================================================
# Decisions
# =============================================================================


class TestResolveRedirect:
    """Tests for resolve_redirect."""

    def test_relative_location(self) -> None:
        """Relative locations resolve against the current URL."""
        decision = resolve_redirect(302, "c", CURRENT, "GET")
        assert decision.should_follow
        assert decision.next_url == "http://example.test/a/c"
        assert decision.next_method == "GET"

    def test_absolute_path_location(self) -> None:
        """Absolute paths replace the whole path."""
        decision = resolve_redirect(302, "/b", "http://example.test/a", "GET")
        assert decision.next_url == "http://example.test/b"

    def test_other_host(self) -> None:
        """Absolute URLs are used as they are."""
        decision = resolve_redirect(301, "https://other.test:8443/x?y=1", CURRENT, "GET")
        assert decision.next_url == "https://other.test:8443/x?y=1"

    def test_301_post_not_followed(self) -> None:
        """A 301 to a POST is not followed."""
        assert resolve_redirect(301, "/b", CURRENT, "POST") == NO_REDIRECT

    def test_303_post_becomes_get(self) -> None:
        """A 303 to a POST is followed with GET."""
        decision = resolve_redirect(303, "/result", CURRENT, "POST")
        assert decision.should_follow
        assert decision.next_method == "GET"

    @pytest.mark.parametrize("status_code", [307, 308])
    def test_307_and_308_keep_method(self, status_code: int) -> None:
        """307 and 308 repeat the request with the same method."""
        decision = resolve_redirect(status_code, "/again", CURRENT, "PUT")
        assert decision.next_method == "PUT"

    def test_no_location(self) -> None:
        """A missing Location means no redirect."""
        assert resolve_redirect(302, None, CURRENT, "GET") == NO_REDIRECT

    def test_bytes_location(self) -> None:
        """Raw header bytes are accepted."""
        decision = resolve_redirect(302, b"/next", CURRENT, "GET")
        assert decision.next_url == "http://example.test/next"


class TestDecodeLocation:
    """Tests for decode_location."""

    def test_utf8_bytes(self) -> None:
        """Raw UTF-8 bytes decode to text."""
        assert decode_location("/café".encode()) == "/café"

    def test_latin1_string(self) -> None:
        """A str holding UTF-8 bytes as latin-1 characters is repaired."""
        assert decode_location("/café".encode().decode("latin-1")) == "/café"

    def test_plain_string(self) -> None:
        """ASCII strings pass through unchanged."""
        assert decode_location("/plain?a=1") == "/plain?a=1"

    def test_non_latin1_string(self) -> None:
        """Strings that are already decoded text are kept."""
        assert decode_location("/日本") == "/日本"
