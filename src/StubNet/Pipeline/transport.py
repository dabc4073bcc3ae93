"""Transport boundary consumed by :class:`~StubNet.Pipeline.pipeline.RequestPipeline`.

A transport performs one HTTP exchange per call and reports the outcome
through ``on_complete(body, response, error)`` exactly once. The returned
:class:`TaskHandle` lets the pipeline cancel the exchange.

:class:`HttpxTransport` is the default implementation: it runs the blocking
``httpx.Client.send`` on a thread pool so the pipeline never blocks.
"""

from __future__ import annotations

import logging
import threading
from concurrent import futures
from typing import Callable, Optional, Protocol

import httpx

from StubNet.concurrency import create_executor
from StubNet.Pipeline.errors import RequestCancelled

__all__ = (
    "HttpxTask",
    "HttpxTransport",
    "OnComplete",
    "TaskHandle",
    "Transport",
)

LOGGER = logging.getLogger(__name__)

OnComplete = Callable[[Optional[bytes], Optional[httpx.Response], Optional[BaseException]], None]


class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class Transport(Protocol):
    def perform_request(self, request: httpx.Request, on_complete: OnComplete) -> TaskHandle: ...


class HttpxTask:
    """One ``client.send`` call whose completion is reported exactly once.

    Cancelling a task that has not started yet reports :class:`RequestCancelled`
    immediately. Cancelling a running task lets ``send`` finish and then
    reports :class:`RequestCancelled` instead of the response.
    """

    def __init__(self, request: httpx.Request, on_complete: OnComplete) -> None:
        self.request = request
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._future: Optional[futures.Future] = None
        self._cancelled = False
        self._reported = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def done(self) -> bool:
        with self._lock:
            return self._reported

    def attach(self, future: futures.Future) -> None:
        with self._lock:
            self._future = future
            cancel_now = self._cancelled
        future.add_done_callback(self._on_future_done)
        if cancel_now:
            future.cancel()

    def _on_future_done(self, future: futures.Future) -> None:
        # covers cancel() as well as executor shutdown with cancel_futures
        if future.cancelled():
            self._report(None, None, RequestCancelled())

    def run(self, client: httpx.Client) -> None:
        if self.cancelled:
            self._report(None, None, RequestCancelled())
            return
        try:
            response = client.send(self.request)
        except Exception as exc:
            self._report(None, None, exc)
            return
        if self.cancelled:
            response.close()
            self._report(None, response, RequestCancelled(response=response))
            return
        self._report(response.content, response, None)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled or self._reported:
                return
            self._cancelled = True
            future = self._future
        if future is not None:
            future.cancel()

    def _report(
        self,
        body: Optional[bytes],
        response: Optional[httpx.Response],
        error: Optional[BaseException],
    ) -> None:
        with self._lock:
            if self._reported:
                return
            self._reported = True
        try:
            self._on_complete(body, response, error)
        except Exception:
            LOGGER.exception(
                "Transport completion callback failed",
                extra={"method": self.request.method, "url": str(self.request.url)},
            )


class HttpxTransport:
    """Perform requests with an :class:`httpx.Client` on a worker thread pool.

    Args:
        client: Client used for every send. Defaults to the shared client from
            :func:`StubNet.httpx_transport.get_http_client`, resolved lazily.
        executor: Executor running the sends. When omitted a thread pool of
            ``max_workers`` threads is created and owned by this transport.
        max_workers: Pool size used when ``executor`` is omitted. ``0`` runs
            sends synchronously on the calling thread.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        executor: Optional[futures.Executor] = None,
        max_workers: int = 8,
    ) -> None:
        self._client = client
        self._owns_client = False
        if executor is None:
            executor, self._owns_executor = create_executor(
                "io", max_workers, thread_name_prefix="stubnet-transport"
            )
        else:
            self._owns_executor = False
        self._executor = executor

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            from StubNet.httpx_transport import get_http_client

            self._client = get_http_client()
        return self._client

    @classmethod
    def owning(cls, client: httpx.Client, **kwargs) -> "HttpxTransport":
        """Build a transport that closes ``client`` when the transport is closed."""

        transport = cls(client, **kwargs)
        transport._owns_client = True
        return transport

    def perform_request(self, request: httpx.Request, on_complete: OnComplete) -> HttpxTask:
        task = HttpxTask(request, on_complete)
        client = self.client
        if self._executor is None:
            task.run(client)
            return task
        try:
            future = self._executor.submit(task.run, client)
        except RuntimeError as exc:
            # executor already shut down
            task._report(None, None, exc)
            return task
        task.attach(future)
        return task

    def close(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_client and self._client is not None:
            self._client.close()

    def __enter__(self) -> "HttpxTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
