"""Rule normalisation, candidate filtering and specificity scoring."""

from __future__ import annotations

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st

from StubNet.Stubbing.rules import (
    IncomingRequest,
    QueryMatchPolicy,
    StubRule,
    normalize_query,
    priority_score,
    rule_can_match,
)

ALLOW_MISSING = QueryMatchPolicy.ALLOW_MISSING_QUERY_PARAMETERS


def _get(url: str) -> IncomingRequest:
    return IncomingRequest("GET", url)


# --- Normalisation ---


def test_query_is_sorted_at_construction() -> None:
    rule = StubRule.get("https://x.com/a?z=1&a=2")

    assert rule.url == "https://x.com/a?a=2&z=1"
    assert rule == StubRule.get("https://x.com/a?a=2&z=1")
    assert hash(rule) == hash(StubRule.get("https://x.com/a?a=2&z=1"))


def test_normalize_query_does_not_percent_decode() -> None:
    assert normalize_query("b=a%20b&a=1") == "a=1&b=a%20b"
    assert normalize_query("") == ""


def test_rule_string_form() -> None:
    assert str(StubRule.get("https://x.com/a?b=2&a=1")) == "GET: https://x.com/a?a=1&b=2"
    assert str(StubRule.http("https://x.com/a")) == "ALL: https://x.com/a"


def test_method_is_upper_cased() -> None:
    assert StubRule("post", "/a").method == "POST"
    assert IncomingRequest("patch", "/a").method == "PATCH"


def test_policy_participates_in_equality() -> None:
    exact = StubRule.get("/a?x=1")
    subset = StubRule.get("/a?x=1", ALLOW_MISSING)

    assert exact != subset


def test_from_httpx_request() -> None:
    request = httpx.Request("DELETE", "https://api.example.com/items/7?b=2&a=1")

    incoming = IncomingRequest.from_httpx(request)
    rule = StubRule.from_request(request)

    assert incoming.method == "DELETE"
    assert incoming.parts.host == "api.example.com"
    assert incoming.parts.query == "a=1&b=2"
    assert rule == StubRule.delete("https://api.example.com/items/7?a=1&b=2")


@pytest.mark.parametrize(
    "factory, method",
    [
        (StubRule.connect, "CONNECT"),
        (StubRule.delete, "DELETE"),
        (StubRule.get, "GET"),
        (StubRule.head, "HEAD"),
        (StubRule.options, "OPTIONS"),
        (StubRule.patch, "PATCH"),
        (StubRule.post, "POST"),
        (StubRule.put, "PUT"),
        (StubRule.trace, "TRACE"),
    ],
)
def test_method_constructors(factory, method) -> None:
    assert factory("/a").method == method


# --- Validity ---


@pytest.mark.parametrize("url", ["https://", "?foo=bar", ""])
def test_scheme_or_query_only_patterns_are_invalid(url: str) -> None:
    assert not StubRule.http(url).is_valid_for_stubbing


@pytest.mark.parametrize("url", ["https://x.com", "/api/users", "x.com/a"])
def test_host_or_path_patterns_are_valid(url: str) -> None:
    assert StubRule.http(url).is_valid_for_stubbing


def test_all_requests_rule() -> None:
    rule = StubRule.all_requests()

    assert rule.is_all_requests
    assert rule.is_empty_route
    assert rule.is_valid_for_stubbing


# --- Filtering ---


@pytest.mark.parametrize("url", ["https://a.com/", "https://b.com/x", "/y", "http://c.org:8080/z?q=1"])
def test_all_requests_matches_everything(url: str) -> None:
    assert rule_can_match(StubRule.all_requests(), _get(url))
    assert rule_can_match(StubRule.all_requests(), IncomingRequest("POST", url))


def test_empty_route_with_method_matches_any_url_for_that_method() -> None:
    rule = StubRule.get("/")

    assert rule_can_match(rule, _get("https://a.com/deep/path?x=1"))
    assert not rule_can_match(rule, IncomingRequest("POST", "https://a.com/deep/path"))


def test_method_isolation() -> None:
    rule = StubRule.get("https://x.com/a")

    assert rule_can_match(rule, _get("https://x.com/a"))
    assert not rule_can_match(rule, IncomingRequest("POST", "https://x.com/a"))


def test_any_method_rule_matches_every_method() -> None:
    rule = StubRule.http("https://x.com/a")

    for method in ("GET", "POST", "DELETE"):
        assert rule_can_match(rule, IncomingRequest(method, "https://x.com/a"))


def test_path_only_rule_ignores_scheme_host_and_port() -> None:
    rule = StubRule.get("/api/users")

    assert rule_can_match(rule, _get("https://x.com/api/users/"))
    assert rule_can_match(rule, _get("http://y.com:8080/API/Users"))
    assert not rule_can_match(rule, _get("https://x.com/api/users/1"))


def test_host_and_port_must_agree_when_given() -> None:
    assert rule_can_match(StubRule.get("https://X.com/a"), _get("https://x.COM/a"))
    assert not rule_can_match(StubRule.get("https://x.com/a"), _get("https://y.com/a"))
    assert not rule_can_match(StubRule.get("https://x.com:8443/a"), _get("https://x.com/a"))
    assert not rule_can_match(StubRule.get("http://x.com/a"), _get("https://x.com/a"))


def test_exact_query_policy() -> None:
    rule = StubRule.get("https://x.com/a?q=1")

    assert rule_can_match(rule, _get("https://x.com/a?q=1"))
    assert not rule_can_match(rule, _get("https://x.com/a?q=1&extra=2"))
    assert not rule_can_match(rule, _get("https://x.com/a"))


def test_rule_without_query_accepts_any_query() -> None:
    assert rule_can_match(StubRule.get("https://x.com/a"), _get("https://x.com/a?anything=1"))


def test_allow_missing_query_parameters_subset_law() -> None:
    rule = StubRule.get("/a?required=1", ALLOW_MISSING)

    assert rule_can_match(rule, _get("/a?required=1&other=2"))
    assert rule_can_match(rule, _get("https://x.com/a?other=2&required=1"))
    assert not rule_can_match(rule, _get("/a?other=2"))
    assert not rule_can_match(rule, _get("/a?required=2"))


def test_percent_encoding_differences_are_not_normalised() -> None:
    rule = StubRule.get("https://x.com/a?name=a%20b")

    assert not rule_can_match(rule, _get("https://x.com/a?name=a+b"))


# --- Scoring ---


def test_query_bearing_rule_outscores_plain_rule() -> None:
    request = _get("https://x.com/a?q=1&extra=2")
    plain = StubRule.get("https://x.com/a")
    with_query = StubRule.get("https://x.com/a?q=1", ALLOW_MISSING)

    assert priority_score(plain, request) == 5
    assert priority_score(with_query, request) == 6


def test_wildcards_do_not_earn_points() -> None:
    request = _get("https://x.com/a")

    assert priority_score(StubRule.get("/a"), request) == 4  # method, port, path, query
    assert priority_score(StubRule.get("https://x.com/a"), request) == 6


# --- Properties ---

_keys = st.text(alphabet="abcdxyz", min_size=1, max_size=4)
_values = st.text(alphabet="0123abc", max_size=3)


@given(
    items=st.lists(st.tuples(_keys, _values), min_size=1, max_size=6, unique_by=lambda kv: kv[0]),
    data=st.data(),
)
def test_query_order_never_changes_matching(items, data) -> None:
    shuffled = data.draw(st.permutations(items))
    rule_query = "&".join(f"{key}={value}" for key, value in items)
    request_query = "&".join(f"{key}={value}" for key, value in shuffled)

    rule = StubRule.get(f"https://x.com/p?{rule_query}")
    request = _get(f"https://x.com/p?{request_query}")

    assert rule == StubRule.get(f"https://x.com/p?{request_query}")
    assert rule_can_match(rule, request)
    assert priority_score(rule, request) == 6
