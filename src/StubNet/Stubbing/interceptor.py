"""Per-request interception strategy backed by a :class:`StubRegistry`.

The interceptor answers two questions for the transport layer: should this
request be short-circuited (:meth:`MockTransportInterceptor.should_intercept`)
and, if so, what response does it get (:meth:`MockTransportInterceptor.handle`).
Installation onto httpx transports lives in :mod:`StubNet.httpx_transport`.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Optional

import httpx

from StubNet.Pipeline.errors import InvalidRequestURL
from StubNet.Stubbing.registry import StubRegistry, get_default_registry
from StubNet.Stubbing.responses import StubResponse
from StubNet.Stubbing.rules import IncomingRequest, StubRule

__all__ = (
    "EXTENSION_KEY",
    "InterceptionOutcome",
    "MockTransportInterceptor",
    "NO_STUB_STATUS",
)

LOGGER = logging.getLogger(__name__)

EXTENSION_KEY = "stubnet"
NO_STUB_STATUS = 400


class InterceptionOutcome(str, enum.Enum):
    RESOLVED = "intercepted-resolved"
    UNRESOLVED = "intercepted-unresolved"
    NOT_INTERCEPTED = "not-intercepted"


def _merge_headers(request: httpx.Request, stub: StubResponse) -> httpx.Headers:
    if stub.replace_headers:
        headers = httpx.Headers(stub.headers)
    else:
        headers = httpx.Headers(request.headers)
        # the request Content-Type describes the outbound body
        headers.pop("content-type", None)
        for key, value in stub.headers.items():
            headers[key] = value
    if stub.content_type and "content-type" not in headers:
        headers["Content-Type"] = stub.content_type
    # httpx recomputes framing headers from the synthetic body
    for name in ("content-length", "transfer-encoding", "content-encoding"):
        if name in headers:
            del headers[name]
    return headers


class MockTransportInterceptor:
    """Decide whether requests are stubbed and synthesise their responses.

    Args:
        registry: Registry to resolve against. Defaults to the process-wide
            registry returned by :func:`get_default_registry` at call time.
        mock_all_requests: When ``True`` every request is intercepted and
            unmatched requests receive a ``400`` response instead of reaching
            the network.
    """

    def __init__(
        self,
        registry: Optional[StubRegistry] = None,
        *,
        mock_all_requests: bool = False,
    ) -> None:
        self._registry = registry
        self.mock_all_requests = mock_all_requests

    def __repr__(self) -> str:
        return (
            f"MockTransportInterceptor(mock_all_requests={self.mock_all_requests}, "
            f"registry={self.registry!r})"
        )

    @property
    def registry(self) -> StubRegistry:
        return self._registry if self._registry is not None else get_default_registry()

    def should_intercept(self, request: httpx.Request) -> bool:
        if self.mock_all_requests:
            return True
        return self.registry.has_stub(IncomingRequest.from_httpx(request))

    def outcome(self, request: httpx.Request) -> InterceptionOutcome:
        """Classify ``request`` without producing a response."""

        if not self.should_intercept(request):
            return InterceptionOutcome.NOT_INTERCEPTED
        incoming = IncomingRequest.from_httpx(request)
        if self.registry.resolve(incoming) is None:
            return InterceptionOutcome.UNRESOLVED
        return InterceptionOutcome.RESOLVED

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Return the stubbed response for ``request``.

        Raises:
            InvalidRequestURL: If the request has neither a host nor a path.
            BaseException: The ``error`` configured on the matched stub.
        """

        incoming = IncomingRequest.from_httpx(request)
        if not incoming.has_resolvable_url:
            raise InvalidRequestURL(incoming.url or None)

        match = self.registry.resolve_match(incoming)
        if match is None:
            LOGGER.warning(
                "No stub matched intercepted request %s",
                incoming,
                extra={"method": incoming.method, "url": incoming.url},
            )
            return httpx.Response(
                NO_STUB_STATUS,
                request=request,
                extensions={EXTENSION_KEY: self._metadata(False, None)},
            )

        rule, stub = match
        if stub.error is not None:
            LOGGER.debug("Raising stubbed error for %s: %r", incoming, stub.error)
            raise stub.error

        return httpx.Response(
            stub.status_code,
            headers=_merge_headers(request, stub),
            content=stub.body or b"",
            request=request,
            extensions={EXTENSION_KEY: self._metadata(True, rule)},
        )

    @staticmethod
    def _metadata(matched: bool, rule: Optional[StubRule]) -> Dict[str, object]:
        return {
            "matched": matched,
            "outcome": (
                InterceptionOutcome.RESOLVED.value if matched else InterceptionOutcome.UNRESOLVED.value
            ),
            "rule": str(rule) if rule is not None else None,
        }
