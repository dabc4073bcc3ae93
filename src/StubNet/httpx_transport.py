# === NAVMAP v1 ===
# {
#   "module": "StubNet.httpx_transport",
#   "purpose": "Intercepting httpx transports and the shared httpx client factory",
#   "sections": [
#     {
#       "id": "install-interceptor",
#       "name": "install_interceptor",
#       "anchor": "function-install-interceptor",
#       "kind": "function"
#     },
#     {
#       "id": "interceptingtransport",
#       "name": "InterceptingTransport",
#       "anchor": "class-interceptingtransport",
#       "kind": "class"
#     },
#     {
#       "id": "asyncinterceptingtransport",
#       "name": "AsyncInterceptingTransport",
#       "anchor": "class-asyncinterceptingtransport",
#       "kind": "class"
#     },
#     {
#       "id": "mocked-transport",
#       "name": "mocked_transport",
#       "anchor": "function-mocked-transport",
#       "kind": "function"
#     },
#     {
#       "id": "get-http-client",
#       "name": "get_http_client",
#       "anchor": "function-get-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Intercepting httpx transports and the shared httpx client factory.

Responsibilities
----------------
- Keep the process-wide list of installed interception strategies
  (:func:`install_interceptor`, :func:`uninstall_interceptor`).
- Wrap a real :class:`httpx.BaseTransport` / :class:`httpx.AsyncBaseTransport`
  so each request is first offered to the installed strategies; the first one
  whose ``should_intercept`` answers ``True`` produces the response.
- Construct a process-wide :class:`httpx.Client` configured with timeouts,
  connection limits, a Certifi-backed SSL context and an intercepting
  transport, while letting tests inject their own transport
  (e.g. :class:`httpx.MockTransport`).

Design Notes
------------
- Strategies are plain objects implementing :class:`Interceptor`; nothing
  here subclasses a platform protocol class.
- ``mocked_transport`` answers every request from a registry without touching
  the global list, which keeps parallel tests isolated.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import (
    TYPE_CHECKING,
    Dict,
    Iterable,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    Sequence,
)

import certifi
import httpx

from StubNet.config.models import HttpSettings

if TYPE_CHECKING:
    from StubNet.Stubbing.registry import StubRegistry

__all__ = (
    "AsyncInterceptingTransport",
    "InterceptingTransport",
    "Interceptor",
    "build_http_client",
    "clear_interceptors",
    "configure_http_client",
    "get_http_client",
    "install_interceptor",
    "installed_interceptors",
    "mocked_transport",
    "reset_http_client_for_tests",
    "uninstall_interceptor",
)

LOGGER = logging.getLogger(__name__)


class Interceptor(Protocol):
    """Strategy deciding whether a request is answered without network I/O."""

    def should_intercept(self, request: httpx.Request) -> bool: ...

    def handle(self, request: httpx.Request) -> httpx.Response: ...


# --- Interceptor installation ---

_INTERCEPTOR_LOCK = threading.RLock()
_INTERCEPTORS: List[Interceptor] = []


def install_interceptor(interceptor: Interceptor) -> None:
    """Register ``interceptor`` with every intercepting transport using the global list."""

    with _INTERCEPTOR_LOCK:
        if any(existing is interceptor for existing in _INTERCEPTORS):
            return
        _INTERCEPTORS.append(interceptor)
    LOGGER.debug("Installed interceptor %r", interceptor)


def uninstall_interceptor(interceptor: Interceptor) -> bool:
    """Remove ``interceptor``; return ``False`` when it was not installed."""

    with _INTERCEPTOR_LOCK:
        for index, existing in enumerate(_INTERCEPTORS):
            if existing is interceptor:
                del _INTERCEPTORS[index]
                LOGGER.debug("Uninstalled interceptor %r", interceptor)
                return True
    return False


def installed_interceptors() -> List[Interceptor]:
    with _INTERCEPTOR_LOCK:
        return list(_INTERCEPTORS)


def clear_interceptors() -> None:
    with _INTERCEPTOR_LOCK:
        _INTERCEPTORS.clear()


def _select_interceptor(
    interceptors: Sequence[Interceptor], request: httpx.Request
) -> Optional[Interceptor]:
    for interceptor in interceptors:
        if interceptor.should_intercept(request):
            return interceptor
    return None


class InterceptingTransport(httpx.BaseTransport):
    """Offer each request to interceptors before delegating to ``inner``.

    Args:
        inner: Transport used for requests nobody intercepts. Defaults to
            :class:`httpx.HTTPTransport`.
        interceptors: Fixed interceptors for this transport. When ``None`` the
            globally installed list is consulted on every request.
    """

    def __init__(
        self,
        inner: Optional[httpx.BaseTransport] = None,
        *,
        interceptors: Optional[Iterable[Interceptor]] = None,
    ) -> None:
        self._inner = inner
        self._interceptors = list(interceptors) if interceptors is not None else None

    @property
    def interceptors(self) -> List[Interceptor]:
        if self._interceptors is not None:
            return list(self._interceptors)
        return installed_interceptors()

    def _inner_transport(self) -> httpx.BaseTransport:
        if self._inner is None:
            self._inner = httpx.HTTPTransport(retries=0)
        return self._inner

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        interceptor = _select_interceptor(self.interceptors, request)
        if interceptor is None:
            return self._inner_transport().handle_request(request)
        request.read()
        LOGGER.debug(
            "Intercepted request",
            extra={
                "method": request.method,
                "url": str(request.url),
                "headers": dict(request.headers),
            },
        )
        return interceptor.handle(request)

    def close(self) -> None:
        if self._inner is not None:
            self._inner.close()


class AsyncInterceptingTransport(httpx.AsyncBaseTransport):
    """Async counterpart of :class:`InterceptingTransport`."""

    def __init__(
        self,
        inner: Optional[httpx.AsyncBaseTransport] = None,
        *,
        interceptors: Optional[Iterable[Interceptor]] = None,
    ) -> None:
        self._inner = inner
        self._interceptors = list(interceptors) if interceptors is not None else None

    @property
    def interceptors(self) -> List[Interceptor]:
        if self._interceptors is not None:
            return list(self._interceptors)
        return installed_interceptors()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        interceptor = _select_interceptor(self.interceptors, request)
        if interceptor is None:
            if self._inner is None:
                self._inner = httpx.AsyncHTTPTransport(retries=0)
            return await self._inner.handle_async_request(request)
        await request.aread()
        LOGGER.debug(
            "Intercepted request",
            extra={
                "method": request.method,
                "url": str(request.url),
                "headers": dict(request.headers),
            },
        )
        return interceptor.handle(request)

    async def aclose(self) -> None:
        if self._inner is not None:
            await self._inner.aclose()


def mocked_transport(
    registry: Optional["StubRegistry"] = None,
    *,
    mock_all_requests: bool = True,
    inner: Optional[httpx.BaseTransport] = None,
) -> InterceptingTransport:
    """Return a transport answering requests from ``registry``.

    With ``mock_all_requests`` (the default) unmatched requests receive a
    ``400`` response; otherwise they fall through to ``inner``.
    """

    from StubNet.Stubbing.interceptor import MockTransportInterceptor

    interceptor = MockTransportInterceptor(registry, mock_all_requests=mock_all_requests)
    return InterceptingTransport(inner, interceptors=[interceptor])


# --- Shared client factory ---

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None
_CURRENT_OVERRIDES: Dict[str, object] = {}

_DEFAULT_LIMITS = httpx.Limits(
    max_connections=64, max_keepalive_connections=16, keepalive_expiry=15.0
)


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _build_timeout(settings: HttpSettings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.timeout_connect_s,
        read=settings.timeout_read_s,
        write=settings.timeout_write_s,
        pool=settings.timeout_pool_s,
    )


def _request_hook(request: httpx.Request) -> None:
    meta: MutableMapping[str, object] = request.extensions.setdefault("stubnet_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()
    attempt = meta.get("attempt")
    meta["attempt"] = attempt + 1 if isinstance(attempt, int) else 1


def _response_hook(response: httpx.Response) -> None:
    meta: MutableMapping[str, object] = response.request.extensions.setdefault(  # type: ignore[assignment]
        "stubnet_meta", {}
    )
    start_time = meta.get("start_time")
    if isinstance(start_time, (int, float)):
        meta["elapsed"] = time.perf_counter() - start_time
    stub_meta = response.extensions.get("stubnet")
    LOGGER.debug(
        "httpx-response",
        extra={
            "url": str(response.request.url),
            "status": response.status_code,
            "stubbed": bool(stub_meta),
        },
    )


def _build_event_hooks(extra_hooks: Optional[Mapping[str, Iterable]]) -> Dict[str, list]:
    hooks: Dict[str, list] = {
        "request": [_request_hook],
        "response": [_response_hook],
    }
    if extra_hooks:
        for name, values in extra_hooks.items():
            if not values:
                continue
            hooks.setdefault(name, []).extend(values)
    return hooks


def _build_network_transport(settings: HttpSettings) -> httpx.HTTPTransport:
    transport_kwargs = dict(
        verify=_build_ssl_context() if settings.verify_tls else False,
        limits=_DEFAULT_LIMITS,
        retries=0,
    )
    if not settings.http2:
        return httpx.HTTPTransport(http2=False, **transport_kwargs)
    try:
        return httpx.HTTPTransport(http2=True, **transport_kwargs)
    except ImportError as exc:  # pragma: no cover - h2 is optional
        if "h2" not in str(exc):
            raise
        LOGGER.warning(
            "HTTP/2 support unavailable (missing 'h2' package); falling back to HTTP/1.1 transport."
        )
        return httpx.HTTPTransport(http2=False, **transport_kwargs)


def build_http_client(
    settings: Optional[HttpSettings] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    event_hooks: Optional[Mapping[str, Iterable]] = None,
) -> httpx.Client:
    """Construct a new :class:`httpx.Client` whose transport honours installed interceptors.

    Without ``transport`` the network transport is built from ``settings``
    (TLS verification, HTTP/2, connection limits). A supplied ``transport``
    becomes the inner transport instead, so interceptors still run in front of
    an :class:`httpx.MockTransport` used by tests.
    """

    settings = settings or HttpSettings()
    if isinstance(transport, InterceptingTransport):
        intercepting = transport
    else:
        intercepting = InterceptingTransport(transport or _build_network_transport(settings))

    return httpx.Client(
        transport=intercepting,
        timeout=_build_timeout(settings),
        trust_env=transport is None,
        headers={"User-Agent": settings.user_agent},
        event_hooks=_build_event_hooks(event_hooks),
    )


def configure_http_client(
    *,
    settings: Optional[HttpSettings] = None,
    transport: Optional[httpx.BaseTransport] = None,
    event_hooks: Optional[Mapping[str, Iterable]] = None,
) -> None:
    """Override the shared client configuration and rebuild it on next use."""

    with _CLIENT_LOCK:
        _CURRENT_OVERRIDES["settings"] = settings
        _CURRENT_OVERRIDES["transport"] = transport
        _CURRENT_OVERRIDES["event_hooks"] = dict(event_hooks) if event_hooks else None
        _close_client_unlocked()


def get_http_client() -> httpx.Client:
    """Return the shared :class:`httpx.Client`, creating it on first use."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is None:
            _HTTP_CLIENT = build_http_client(
                _CURRENT_OVERRIDES.get("settings"),  # type: ignore[arg-type]
                transport=_CURRENT_OVERRIDES.get("transport"),  # type: ignore[arg-type]
                event_hooks=_CURRENT_OVERRIDES.get("event_hooks"),  # type: ignore[arg-type]
            )
        return _HTTP_CLIENT


def reset_http_client_for_tests() -> None:
    """Clear overrides and dispose of the cached client."""

    with _CLIENT_LOCK:
        _CURRENT_OVERRIDES.clear()
        _close_client_unlocked()


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None
