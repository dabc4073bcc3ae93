"""HTTP client facade over :class:`~StubNet.Pipeline.pipeline.RequestPipeline`.

``HTTPClient`` owns the collaborators a pipeline needs (transport,
validators, interceptor, completion executor) and hands a fresh pipeline to
every request. Three entry points share the same callback core:

- :meth:`HTTPClient.perform` returns the running pipeline and reports through
  a completion callback.
- :meth:`HTTPClient.fetch` blocks on a :class:`concurrent.futures.Future`.
- :meth:`HTTPClient.afetch` awaits an asyncio future; cancelling the awaiting
  task cancels the pipeline.

``fetch_json`` / ``afetch_json`` decode the body with a pydantic
:class:`~pydantic.TypeAdapter` and raise :class:`DecodingFailed` on mismatch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from concurrent import futures
from typing import Any, Mapping, Optional, Sequence, Type, TypeVar, Union

import httpx
from pydantic import TypeAdapter, ValidationError

from StubNet.config.models import StubNetConfig
from StubNet.Pipeline.errors import DecodingFailed
from StubNet.Pipeline.interceptors import (
    RequestAdapter,
    RequestInterceptor,
    RequestRetrier,
    TenacityRetrier,
)
from StubNet.Pipeline.pipeline import Completion, PipelineResult, RequestPipeline
from StubNet.Pipeline.transport import HttpxTransport, Transport
from StubNet.Pipeline.validators import DEFAULT_VALIDATORS, Validator

__all__ = ("HTTPClient",)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

URLTypes = Union[str, httpx.URL]


def _type_name(type_: Any) -> str:
    return getattr(type_, "__name__", None) or repr(type_)


def _decode(result: PipelineResult, type_: Any) -> Any:
    result.raise_for_error()
    try:
        return TypeAdapter(type_).validate_json(result.body or b"")
    except ValidationError as exc:
        raise DecodingFailed(_type_name(type_), exc) from exc


class HTTPClient:
    """Build requests and run each one through its own :class:`RequestPipeline`.

    Args:
        transport: Transport shared by every pipeline. Defaults to an
            :class:`HttpxTransport` over the shared httpx client.
        validators: Response validators; defaults to rejecting 4xx/5xx.
        interceptor: Adapter/retrier/hooks object handed to every pipeline.
        adapter: Additional request adapter.
        retrier: Additional retrier.
        executor: Executor running completion callbacks.
        base_url: Prefix applied to relative request URLs.
        headers: Default headers merged under per-request headers.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        *,
        validators: Optional[Sequence[Validator]] = None,
        interceptor: Optional[RequestInterceptor] = None,
        adapter: Optional[RequestAdapter] = None,
        retrier: Optional[RequestRetrier] = None,
        executor: Optional[futures.Executor] = None,
        base_url: URLTypes = "",
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._owns_transport = transport is None
        self.transport: Transport = transport if transport is not None else HttpxTransport()
        self.validators = tuple(DEFAULT_VALIDATORS if validators is None else validators)
        self.interceptor = interceptor
        self.adapter = adapter
        self.retrier = retrier
        self.executor = executor
        self.base_url: Optional[httpx.URL] = httpx.URL(base_url) if base_url else None
        self.headers = httpx.Headers(headers or {})

    # --- Construction helpers ---

    @classmethod
    def from_config(
        cls,
        config: StubNetConfig,
        *,
        registry: Any = None,
        **kwargs: Any,
    ) -> "HTTPClient":
        """Build a client from :class:`StubNetConfig`.

        When ``config.mock.enabled`` is set the client answers from ``registry``
        (or the default registry) after loading ``config.mock.fixtures`` into it.
        Unmatched requests are answered with ``400`` when either
        ``config.mock.mock_all_requests`` or any loaded fixture file sets
        ``mock_all_requests``.
        """

        from StubNet.httpx_transport import build_http_client, mocked_transport

        http_client: httpx.Client
        if config.mock.enabled:
            from StubNet.Stubbing.fixtures import load_stub_fixtures
            from StubNet.Stubbing.registry import get_default_registry

            registry = registry if registry is not None else get_default_registry()
            if not config.mock.log_resolution:
                registry.set_sink(lambda _message: None)
            mock_all_requests = config.mock.mock_all_requests
            for fixture_path in config.mock.fixtures:
                fixtures = load_stub_fixtures(fixture_path)
                registry.register_fixtures(fixtures)
                mock_all_requests = mock_all_requests or fixtures.mock_all_requests
            transport = mocked_transport(registry, mock_all_requests=mock_all_requests)
            http_client = build_http_client(config.http, transport=transport)
        else:
            http_client = build_http_client(config.http)

        kwargs.setdefault("retrier", TenacityRetrier.from_settings(config.retry))
        LOGGER.info(
            "HTTP client configured",
            extra={"config_hash": config.config_hash()[:8], "mock_enabled": config.mock.enabled},
        )
        client = cls(
            HttpxTransport.owning(http_client, max_workers=config.http.max_workers),
            **kwargs,
        )
        client._owns_transport = True
        return client

    @classmethod
    def mocked(
        cls,
        registry: Any = None,
        *,
        mock_all_requests: bool = True,
        max_workers: int = 0,
        **kwargs: Any,
    ) -> "HTTPClient":
        """Build a client whose every request is answered from ``registry``.

        ``max_workers=0`` performs sends on the calling thread, which keeps
        tests deterministic.
        """

        from StubNet.httpx_transport import mocked_transport

        http_client = httpx.Client(
            transport=mocked_transport(registry, mock_all_requests=mock_all_requests),
            trust_env=False,
        )
        client = cls(HttpxTransport.owning(http_client, max_workers=max_workers), **kwargs)
        client._owns_transport = True
        return client

    # --- Requests ---

    def build_request(
        self,
        method: str,
        url: URLTypes,
        *,
        params: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        content: Any = None,
        data: Any = None,
        json: Any = None,
    ) -> httpx.Request:
        target = httpx.URL(url)
        if self.base_url is not None and target.is_relative_url:
            target = self.base_url.join(target)
        merged = httpx.Headers(self.headers)
        if headers:
            merged.update(headers)
        return httpx.Request(
            method.upper(),
            target,
            params=params,
            headers=merged,
            content=content,
            data=data,
            json=json,
        )

    def pipeline(self) -> RequestPipeline:
        return RequestPipeline(
            self.transport,
            validators=self.validators,
            interceptor=self.interceptor,
            adapter=self.adapter,
            retrier=self.retrier,
            executor=self.executor,
        )

    def perform(self, request: httpx.Request, completion: Completion) -> RequestPipeline:
        """Start ``request`` on a new pipeline and return it for cancellation."""

        return self.pipeline().perform(request, completion)

    def fetch(
        self,
        method: str,
        url: URLTypes,
        *,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> PipelineResult:
        """Run a request to completion and return the successful result.

        Raises:
            PipelineError: The terminal error of the pipeline. On ``timeout``
                the pipeline is cancelled and :class:`RequestCancelled` raised.
        """

        request = self.build_request(method, url, **kwargs)
        future: "futures.Future[PipelineResult]" = futures.Future()

        def _complete(result: PipelineResult) -> None:
            if not future.done():
                future.set_result(result)

        pipeline = self.perform(request, _complete)
        try:
            result = future.result(timeout=timeout)
        except futures.TimeoutError:
            LOGGER.warning("Request timed out after %ss; cancelling", timeout)
            pipeline.cancel()
            result = future.result()
        return result.raise_for_error()

    async def afetch(self, method: str, url: URLTypes, **kwargs: Any) -> PipelineResult:
        """Asyncio counterpart of :meth:`fetch`."""

        request = self.build_request(method, url, **kwargs)
        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[PipelineResult]" = loop.create_future()

        def _set(result: PipelineResult) -> None:
            if not waiter.done():
                waiter.set_result(result)

        def _complete(result: PipelineResult) -> None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(_set, result)

        pipeline = self.perform(request, _complete)
        try:
            result = await waiter
        except asyncio.CancelledError:
            pipeline.cancel()
            raise
        return result.raise_for_error()

    def fetch_json(
        self,
        method: str,
        url: URLTypes,
        type_: Union[Type[T], Any] = Any,
        **kwargs: Any,
    ) -> T:
        """Fetch and decode the JSON body into ``type_`` (a pydantic model or any type)."""

        return _decode(self.fetch(method, url, **kwargs), type_)

    async def afetch_json(
        self,
        method: str,
        url: URLTypes,
        type_: Union[Type[T], Any] = Any,
        **kwargs: Any,
    ) -> T:
        return _decode(await self.afetch(method, url, **kwargs), type_)

    # --- Lifecycle ---

    def close(self) -> None:
        if self._owns_transport:
            close = getattr(self.transport, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> "HTTPClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
