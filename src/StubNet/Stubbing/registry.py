# === NAVMAP v1 ===
# {
#   "module": "StubNet.Stubbing.registry",
#   "purpose": "Thread-safe stub registry with exact and best-match resolution",
#   "sections": [
#     {
#       "id": "stubregistry",
#       "name": "StubRegistry",
#       "anchor": "class-stubregistry",
#       "kind": "class"
#     },
#     {
#       "id": "get-default-registry",
#       "name": "get_default_registry",
#       "anchor": "function-get-default-registry",
#       "kind": "function"
#     },
#     {
#       "id": "set-default-registry",
#       "name": "set_default_registry",
#       "anchor": "function-set-default-registry",
#       "kind": "function"
#     },
#     {
#       "id": "reset-default-registry",
#       "name": "reset_default_registry",
#       "anchor": "function-reset-default-registry",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Thread-safe registry mapping stub rules to canned responses.

Responsibilities
----------------
- Store ``StubRule -> StubResponse`` pairs keyed by structural equality,
  overwriting in place when an identical rule is registered again.
- Resolve an outgoing request to the most specific registered response using
  an exact-key fast path, then :func:`rule_can_match` filtering, then
  :func:`priority_score` ranking.
- Report every resolution to an injectable sink so test runs can trace which
  stub answered which request.
- Provide a process-wide default registry that tests can swap out.

Design Notes
------------
- Registration order is preserved; among equally scored candidates the rule
  registered first wins. Re-registering a rule keeps its original position.
- A failing resolution sink never affects the resolution result.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple, Union

import httpx

from StubNet.Pipeline.errors import NoStubMatched
from StubNet.Stubbing.responses import StubResponse
from StubNet.Stubbing.rules import (
    IncomingRequest,
    QueryMatchPolicy,
    StubRule,
    priority_score,
    rule_can_match,
)

if TYPE_CHECKING:
    from StubNet.Stubbing.fixtures import StubFixtureFile

__all__ = (
    "ResolutionSink",
    "StubRegistry",
    "get_default_registry",
    "reset_default_registry",
    "set_default_registry",
)

LOGGER = logging.getLogger(__name__)

ResolutionSink = Callable[[str], None]
RequestLike = Union[IncomingRequest, httpx.Request]


def _default_sink(message: str) -> None:
    LOGGER.debug(message)


def _as_incoming(request: RequestLike) -> IncomingRequest:
    if isinstance(request, httpx.Request):
        return IncomingRequest.from_httpx(request)
    return request


class StubRegistry:
    """Registry of stub rules and the responses served for them."""

    def __init__(self, sink: Optional[ResolutionSink] = None) -> None:
        self._lock = threading.RLock()
        self._stubs: Dict[StubRule, StubResponse] = {}
        self._sink: ResolutionSink = sink or _default_sink

    def __len__(self) -> int:
        with self._lock:
            return len(self._stubs)

    def __contains__(self, rule: object) -> bool:
        with self._lock:
            return rule in self._stubs

    def __repr__(self) -> str:
        return f"StubRegistry(stubs={len(self)})"

    @property
    def has_stubs(self) -> bool:
        return len(self) > 0

    def set_sink(self, sink: Optional[ResolutionSink]) -> None:
        """Replace the resolution sink; ``None`` restores the debug logger."""

        with self._lock:
            self._sink = sink or _default_sink

    # --- Registration ---

    def register(self, rule: StubRule, response: StubResponse) -> bool:
        """Store ``response`` for ``rule``; return ``False`` if the rule is invalid."""

        if not rule.is_valid_for_stubbing:
            LOGGER.warning(
                "Refusing to register stub without host or path",
                extra={"stub_rule": str(rule)},
            )
            return False
        with self._lock:
            replaced = rule in self._stubs
            self._stubs[rule] = response
        if replaced:
            LOGGER.info(
                "Replaced existing stub for %s",
                rule,
                extra={"stub_rule": str(rule), "stub_response": str(response)},
            )
        return True

    def stub(self, rule: StubRule, response: StubResponse) -> bool:
        return self.register(rule, response)

    def remove(self, rule: StubRule) -> Optional[StubResponse]:
        with self._lock:
            return self._stubs.pop(rule, None)

    def clear(self) -> None:
        with self._lock:
            self._stubs.clear()

    def rules(self) -> List[StubRule]:
        """Return a snapshot of the registered rules in registration order."""

        with self._lock:
            return list(self._stubs)

    def items(self) -> List[Tuple[StubRule, StubResponse]]:
        with self._lock:
            return list(self._stubs.items())

    def load_fixtures(self, path: Union[str, Path]) -> int:
        """Register every stub declared in a YAML/JSON fixture file.

        Returns:
            Number of stubs that were stored.
        """

        from StubNet.Stubbing.fixtures import load_stub_fixtures

        return self.register_fixtures(load_stub_fixtures(path))

    def register_fixtures(self, fixtures: "StubFixtureFile") -> int:
        stored = 0
        for rule, response in fixtures.build_stubs():
            stored += self.register(rule, response)
        LOGGER.info(
            "Loaded %d stub(s) from %s",
            stored,
            fixtures.source,
            extra={"fixture_path": str(fixtures.source), "stub_count": stored},
        )
        return stored

    # --- Lookup ---

    def candidates(self, request: RequestLike) -> List[StubRule]:
        """Return every registered rule that can answer ``request``."""

        incoming = _as_incoming(request)
        with self._lock:
            return [rule for rule in self._stubs if rule_can_match(rule, incoming)]

    def has_stub(self, request: RequestLike) -> bool:
        incoming = _as_incoming(request)
        with self._lock:
            return any(rule_can_match(rule, incoming) for rule in self._stubs)

    def resolve(self, request: RequestLike) -> Optional[StubResponse]:
        """Return the response of the best matching rule, or ``None``."""

        match = self.resolve_match(request)
        return match[1] if match is not None else None

    def resolve_match(self, request: RequestLike) -> Optional[Tuple[StubRule, StubResponse]]:
        """Return the winning ``(rule, response)`` pair for ``request``, or ``None``."""

        incoming = _as_incoming(request)
        with self._lock:
            exact_key = StubRule(
                method=incoming.method,
                url=incoming.url,
                query_policy=QueryMatchPolicy.EXACT_MATCH,
            )
            response = self._stubs.get(exact_key)
            if response is not None:
                self._report(incoming, "exact", exact_key, response)
                return exact_key, response

            best_rule: Optional[StubRule] = None
            best_score = -1
            for rule in self._stubs:
                if not rule_can_match(rule, incoming):
                    continue
                score = priority_score(rule, incoming)
                # strictly greater keeps the earliest registration on ties
                if score > best_score:
                    best_rule = rule
                    best_score = score

            if best_rule is None:
                self._report(incoming, "none", None, None)
                return None
            response = self._stubs[best_rule]
        self._report(incoming, "fuzzy", best_rule, response)
        return best_rule, response

    def require(self, request: RequestLike) -> StubResponse:
        """Resolve ``request`` or raise :class:`NoStubMatched`."""

        response = self.resolve(request)
        if response is None:
            raise NoStubMatched(str(_as_incoming(request)))
        return response

    def _report(
        self,
        request: IncomingRequest,
        match: str,
        rule: Optional[StubRule],
        response: Optional[StubResponse],
    ) -> None:
        if response is None:
            message = f"No stub found for request {request}"
        else:
            message = (
                f"Stub resolved ({match} match) for request {request}: "
                f"rule={rule} response={response}"
            )
        with contextlib.suppress(Exception):
            self._sink(message)


_DEFAULT_LOCK = threading.Lock()
_DEFAULT_REGISTRY: Optional[StubRegistry] = None


def get_default_registry() -> StubRegistry:
    """Return the process-wide registry, creating it on first use."""

    global _DEFAULT_REGISTRY
    with _DEFAULT_LOCK:
        if _DEFAULT_REGISTRY is None:
            _DEFAULT_REGISTRY = StubRegistry()
        return _DEFAULT_REGISTRY


def set_default_registry(registry: StubRegistry) -> Optional[StubRegistry]:
    """Install ``registry`` as the process-wide default and return the previous one."""

    global _DEFAULT_REGISTRY
    with _DEFAULT_LOCK:
        previous = _DEFAULT_REGISTRY
        _DEFAULT_REGISTRY = registry
    return previous


def reset_default_registry() -> None:
    global _DEFAULT_REGISTRY
    with _DEFAULT_LOCK:
        _DEFAULT_REGISTRY = None
