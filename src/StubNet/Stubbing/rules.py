# === NAVMAP v1 ===
# {
#   "module": "StubNet.Stubbing.rules",
#   "purpose": "Stub rule model, URL normalisation, candidate filtering and match scoring",
#   "sections": [
#     {
#       "id": "querymatchpolicy",
#       "name": "QueryMatchPolicy",
#       "anchor": "class-querymatchpolicy",
#       "kind": "class"
#     },
#     {
#       "id": "urlparts",
#       "name": "URLParts",
#       "anchor": "class-urlparts",
#       "kind": "class"
#     },
#     {
#       "id": "incomingrequest",
#       "name": "IncomingRequest",
#       "anchor": "class-incomingrequest",
#       "kind": "class"
#     },
#     {
#       "id": "stubrule",
#       "name": "StubRule",
#       "anchor": "class-stubrule",
#       "kind": "class"
#     },
#     {
#       "id": "rule-can-match",
#       "name": "rule_can_match",
#       "anchor": "function-rule-can-match",
#       "kind": "function"
#     },
#     {
#       "id": "priority-score",
#       "name": "priority_score",
#       "anchor": "function-priority-score",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Stub rule model and the matching primitives used by the stub registry.

Responsibilities
----------------
- Describe a registered stub as a :class:`StubRule` (optional method, URL-like
  pattern, query matching policy) with structural equality so rules can be
  used directly as registry keys.
- Describe the outgoing request being matched as an :class:`IncomingRequest`,
  built either from raw ``(method, url)`` values or from an
  :class:`httpx.Request`.
- Decide whether a rule is able to answer a request (:func:`rule_can_match`)
  and how specific that answer is (:func:`priority_score`).

Design Notes
------------
- Query strings are normalised by splitting on ``&``, sorting the raw tokens
  and re-joining. Tokens are never percent-decoded, so ``a=%20`` and
  ``a=+`` stay distinct.
- Paths are compared after trimming leading/trailing slashes and folding case.
- Empty components on the rule side behave as wildcards.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

import httpx

__all__ = (
    "EMPTY_ROUTE",
    "HTTP_METHODS",
    "IncomingRequest",
    "QueryMatchPolicy",
    "StubRule",
    "URLParts",
    "normalize_query",
    "normalize_url",
    "priority_score",
    "rule_can_match",
)

EMPTY_ROUTE = "/"

HTTP_METHODS = frozenset(
    {"CONNECT", "DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT", "TRACE"}
)

URLLike = Union[str, httpx.URL]


class QueryMatchPolicy(str, enum.Enum):
    """How the query string of a rule is compared against a request."""

    EXACT_MATCH = "exact_match"
    ALLOW_MISSING_QUERY_PARAMETERS = "allow_missing_query_parameters"


def normalize_query(query: str) -> str:
    """Return ``query`` with its raw ``&``-separated tokens sorted."""

    if not query:
        return ""
    tokens = [token for token in query.split("&") if token]
    return "&".join(sorted(tokens))


def _query_items(query: str) -> Tuple[Tuple[str, str], ...]:
    items = []
    for token in query.split("&"):
        if not token:
            continue
        key, _, value = token.partition("=")
        items.append((key, value))
    return tuple(items)


def normalize_url(url: URLLike) -> str:
    """Return ``url`` as a string with a sorted query string.

    Everything except the query is left untouched so that the rule keeps the
    exact pattern its author wrote.
    """

    text = str(url).strip()
    if not text:
        return ""
    parts = urlsplit(text)
    if not parts.query:
        return text
    return urlunsplit(parts._replace(query=normalize_query(parts.query)))


def _trim_path(path: str) -> str:
    return path.strip("/").lower()


@dataclass(frozen=True)
class URLParts:
    """Decomposed URL used for matching; empty values mean "not present"."""

    scheme: str = ""
    host: str = ""
    port: Optional[int] = None
    path: str = ""
    query: str = ""

    @classmethod
    def parse(cls, url: URLLike) -> "URLParts":
        text = str(url).strip()
        if not text:
            return cls()
        parts = urlsplit(text)
        try:
            port = parts.port
        except ValueError:
            port = None
        return cls(
            scheme=parts.scheme.lower(),
            host=(parts.hostname or "").lower(),
            port=port,
            path=parts.path,
            query=normalize_query(parts.query),
        )

    @property
    def trimmed_path(self) -> str:
        return _trim_path(self.path)

    @property
    def query_items(self) -> Tuple[Tuple[str, str], ...]:
        return _query_items(self.query)


def _normalize_method(method: Optional[str]) -> Optional[str]:
    if method is None:
        return None
    value = str(method).strip().upper()
    return value or None


@dataclass(frozen=True)
class IncomingRequest:
    """The runtime request being matched against registered rules."""

    method: Optional[str]
    url: str
    parts: URLParts = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", _normalize_method(self.method))
        object.__setattr__(self, "url", normalize_url(self.url))
        object.__setattr__(self, "parts", URLParts.parse(self.url))

    @classmethod
    def from_httpx(cls, request: httpx.Request) -> "IncomingRequest":
        return cls(method=request.method, url=str(request.url))

    @property
    def has_resolvable_url(self) -> bool:
        return bool(self.url) and bool(self.parts.host or self.parts.path)

    def __str__(self) -> str:
        return f"{self.method or 'ALL'}: {self.url}"


@dataclass(frozen=True)
class StubRule:
    """A pattern recognising requests that should receive a canned response.

    ``method`` of ``None`` matches every HTTP method. ``url`` may be a fully
    qualified URL, a bare host (``https://example.com``) or just a route
    (``/api/users``); whatever is left out acts as a wildcard.
    """

    method: Optional[str]
    url: str
    query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    parts: URLParts = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", _normalize_method(self.method))
        object.__setattr__(self, "url", normalize_url(self.url))
        object.__setattr__(self, "query_policy", QueryMatchPolicy(self.query_policy))
        object.__setattr__(self, "parts", URLParts.parse(self.url))

    def __str__(self) -> str:
        return f"{self.method or 'ALL'}: {self.url}"

    # --- Validity ---

    @property
    def is_valid_for_stubbing(self) -> bool:
        """A rule needs a non-empty path or a non-empty host to be registered."""

        return bool(self.parts.path) or bool(self.parts.host)

    @property
    def is_empty_route(self) -> bool:
        return self.url == EMPTY_ROUTE

    @property
    def is_all_requests(self) -> bool:
        return self.method is None and self.is_empty_route

    # --- Constructors ---

    @classmethod
    def from_request(
        cls,
        request: Union[IncomingRequest, httpx.Request],
        query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH,
    ) -> "StubRule":
        if isinstance(request, httpx.Request):
            request = IncomingRequest.from_httpx(request)
        return cls(method=request.method, url=request.url, query_policy=query_policy)

    @classmethod
    def all_requests(cls) -> "StubRule":
        return cls(method=None, url=EMPTY_ROUTE)

    @classmethod
    def http(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method=None, url=str(url), query_policy=query_policy)

    @classmethod
    def connect(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="CONNECT", url=str(url), query_policy=query_policy)

    @classmethod
    def delete(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="DELETE", url=str(url), query_policy=query_policy)

    @classmethod
    def get(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="GET", url=str(url), query_policy=query_policy)

    @classmethod
    def head(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="HEAD", url=str(url), query_policy=query_policy)

    @classmethod
    def options(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="OPTIONS", url=str(url), query_policy=query_policy)

    @classmethod
    def patch(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="PATCH", url=str(url), query_policy=query_policy)

    @classmethod
    def post(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="POST", url=str(url), query_policy=query_policy)

    @classmethod
    def put(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="PUT", url=str(url), query_policy=query_policy)

    @classmethod
    def trace(
        cls, url: URLLike, query_policy: QueryMatchPolicy = QueryMatchPolicy.EXACT_MATCH
    ) -> "StubRule":
        return cls(method="TRACE", url=str(url), query_policy=query_policy)


def _query_subset(rule: URLParts, request: URLParts) -> bool:
    available = set(request.query_items)
    return all(item in available for item in rule.query_items)


def _query_matches(rule: StubRule, request: IncomingRequest) -> bool:
    rule_query = rule.parts.query
    if not rule_query:
        return True
    if rule.query_policy is QueryMatchPolicy.ALLOW_MISSING_QUERY_PARAMETERS:
        return _query_subset(rule.parts, request.parts)
    return rule_query == request.parts.query


def rule_can_match(rule: StubRule, request: IncomingRequest) -> bool:
    """Return ``True`` when ``rule`` is able to answer ``request``."""

    if rule.is_all_requests:
        return True

    if not rule.url or not request.url:
        return False

    if rule.method is not None and rule.method != request.method:
        return False

    if rule.is_empty_route:
        return True

    pattern = rule.parts
    target = request.parts

    if pattern.scheme and pattern.scheme != target.scheme:
        return False
    if pattern.host and pattern.host != target.host:
        return False
    if pattern.port is not None and pattern.port != target.port:
        return False
    if pattern.trimmed_path and pattern.trimmed_path != target.trimmed_path:
        return False

    return _query_matches(rule, request)


def priority_score(rule: StubRule, request: IncomingRequest) -> int:
    """Count the URL components on which ``rule`` agrees with ``request``.

    Wildcards are not special here: a rule without a host simply does not earn
    the host point. A query point is earned on equal sorted query strings, or
    when a non-empty subset-policy query is fully present in the request.
    """

    pattern = rule.parts
    target = request.parts

    score = 0
    score += rule.method == request.method
    score += pattern.scheme == target.scheme
    score += pattern.host == target.host
    score += pattern.port == target.port
    score += pattern.trimmed_path == target.trimmed_path

    if pattern.query == target.query:
        score += 1
    elif (
        pattern.query
        and rule.query_policy is QueryMatchPolicy.ALLOW_MISSING_QUERY_PARAMETERS
        and _query_subset(pattern, target)
    ):
        score += 1

    return int(score)
