# === NAVMAP v1 ===
# {
#   "module": "StubNet.Pipeline.interceptors",
#   "purpose": "Adapter, retrier and lifecycle-hook contracts plus built-in retry policies",
#   "sections": [
#     {
#       "id": "requestinterceptor",
#       "name": "RequestInterceptor",
#       "anchor": "class-requestinterceptor",
#       "kind": "class"
#     },
#     {
#       "id": "composedinterceptor",
#       "name": "ComposedInterceptor",
#       "anchor": "class-composedinterceptor",
#       "kind": "class"
#     },
#     {
#       "id": "countingretrier",
#       "name": "CountingRetrier",
#       "anchor": "class-countingretrier",
#       "kind": "class"
#     },
#     {
#       "id": "tenacityretrier",
#       "name": "TenacityRetrier",
#       "anchor": "class-tenacityretrier",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Adapter, retrier and lifecycle-hook contracts for the request pipeline.

Responsibilities
----------------
- Define the asynchronous :class:`RequestAdapter` and :class:`RequestRetrier`
  contracts. Both answer through a completion callback so implementations may
  consult tokens, timers or other threads before deciding.
- Provide :class:`RequestInterceptor`, a no-op base combining adaptation,
  retry and the ``request_will_start`` / ``request_did_end`` hooks, and
  :class:`ComposedInterceptor`, which chains several of them.
- Provide built-in retry policies: :class:`CountingRetrier` (bounded by a
  retry count) and :class:`TenacityRetrier` (tenacity stop/wait strategies,
  Retry-After aware, delays scheduled on a :class:`threading.Timer`).

Design Notes
------------
- Retriers never block the calling thread; a delayed "yes" is delivered from
  the timer thread.
- The pipeline guards every completion callback so answering twice is
  harmless.
"""

from __future__ import annotations

import email.utils
import logging
import threading
import weakref
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Protocol, Union

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception, retry_if_result

from StubNet.config.models import RetrySettings
from StubNet.Pipeline.errors import (
    PipelineError,
    TransportFailed,
    ValidationFailed,
    is_retry_eligible,
)

if TYPE_CHECKING:
    from StubNet.Pipeline.pipeline import PipelineResult, RequestPipeline

__all__ = (
    "AdaptCompletion",
    "ComposedInterceptor",
    "CountingRetrier",
    "RequestAdapter",
    "RequestInterceptor",
    "RequestRetrier",
    "RetryCompletion",
    "TenacityRetrier",
    "schedule_with_timer",
)

LOGGER = logging.getLogger(__name__)

AdaptCompletion = Callable[[Union[httpx.Request, BaseException]], None]
RetryCompletion = Callable[[bool], None]
Scheduler = Callable[[float, Callable[[], None]], None]


class RequestAdapter(Protocol):
    def adapt(self, request: httpx.Request, completion: AdaptCompletion) -> None: ...


class RequestRetrier(Protocol):
    def retry(
        self,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None: ...


class RequestInterceptor:
    """Base interceptor: passes requests through, never retries, ignores hooks."""

    def adapt(self, request: httpx.Request, completion: AdaptCompletion) -> None:
        completion(request)

    def retry(
        self,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None:
        completion(False)

    def request_will_start(self, pipeline: "RequestPipeline") -> None:
        pass

    def request_did_end(self, pipeline: "RequestPipeline", result: "PipelineResult") -> None:
        pass


class ComposedInterceptor(RequestInterceptor):
    """Chain adapters in order and ask retriers in order until one says yes.

    Lifecycle hooks are forwarded to every member that defines them.
    """

    def __init__(
        self,
        adapters: Iterable[RequestAdapter] = (),
        retriers: Iterable[RequestRetrier] = (),
        observers: Iterable[Any] = (),
    ) -> None:
        self.adapters: List[RequestAdapter] = list(adapters)
        self.retriers: List[RequestRetrier] = list(retriers)
        self.observers: List[Any] = list(observers)

    def adapt(self, request: httpx.Request, completion: AdaptCompletion) -> None:
        self._adapt_from(0, request, completion)

    def _adapt_from(self, index: int, request: httpx.Request, completion: AdaptCompletion) -> None:
        if index >= len(self.adapters):
            completion(request)
            return

        def _next(result: Union[httpx.Request, BaseException]) -> None:
            if isinstance(result, BaseException):
                completion(result)
            else:
                self._adapt_from(index + 1, result, completion)

        self.adapters[index].adapt(request, _next)

    def retry(
        self,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None:
        self._retry_from(0, pipeline, error, response, completion)

    def _retry_from(
        self,
        index: int,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None:
        if index >= len(self.retriers):
            completion(False)
            return

        def _next(should_retry: bool) -> None:
            if should_retry:
                completion(True)
            else:
                self._retry_from(index + 1, pipeline, error, response, completion)

        self.retriers[index].retry(pipeline, error, response, _next)

    def request_will_start(self, pipeline: "RequestPipeline") -> None:
        for observer in self.observers:
            hook = getattr(observer, "request_will_start", None)
            if hook is not None:
                hook(pipeline)

    def request_did_end(self, pipeline: "RequestPipeline", result: "PipelineResult") -> None:
        for observer in self.observers:
            hook = getattr(observer, "request_did_end", None)
            if hook is not None:
                hook(pipeline, result)


class CountingRetrier(RequestInterceptor):
    """Retry every retry-eligible failure until ``max_retries`` retries were made."""

    def __init__(self, max_retries: int) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries

    def retry(
        self,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None:
        completion(is_retry_eligible(error) and pipeline.retry_count < self.max_retries)


# --- Tenacity-backed policy ---


def schedule_with_timer(delay: float, callback: Callable[[], None]) -> None:
    """Run ``callback`` after ``delay`` seconds on a daemon timer thread."""

    if delay <= 0:
        callback()
        return
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(int(value))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (dt - datetime.now(dt.tzinfo)).total_seconds())


class _WaitRetryAfter(tenacity.wait.wait_base):
    """Wait strategy that prefers the Retry-After header over exponential backoff."""

    def __init__(self, fallback: tenacity.wait.wait_base, cap_s: float) -> None:
        self.fallback = fallback
        self.cap_s = cap_s

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            response = outcome.result()
            if isinstance(response, httpx.Response):
                retry_after_s = _parse_retry_after(response.headers.get("Retry-After"))
                if retry_after_s is not None and retry_after_s > 0:
                    wait_s = min(retry_after_s, self.cap_s)
                    LOGGER.debug("Using Retry-After header: %ss (capped at %ss)", wait_s, self.cap_s)
                    return wait_s
        return self.fallback(retry_state)


def _default_before_sleep_hook(retry_state: RetryCallState) -> None:
    next_action = retry_state.next_action
    wait_s = next_action.sleep if next_action is not None else 0.0
    LOGGER.warning(
        "retry attempt=%d wait_ms=%d elapsed_s=%.1f",
        retry_state.attempt_number,
        int(wait_s * 1000),
        retry_state.seconds_since_start or 0.0,
    )


class TenacityRetrier(RequestInterceptor):
    """Retrier driven by tenacity stop, wait and retry strategies.

    Each pipeline gets its own :class:`tenacity.RetryCallState`; every failure
    is recorded on it (a response for status-driven validation failures, the
    error otherwise) and the configured strategies decide whether and when to
    try again. The "yes" answer is delivered after the computed wait via
    ``scheduler`` so no thread is blocked in between.
    """

    def __init__(
        self,
        *,
        stop: Any = None,
        wait: Any = None,
        retry_statuses: Iterable[int] = (429, 500, 502, 503, 504),
        retry_on_timeout: bool = True,
        scheduler: Optional[Scheduler] = None,
        before_sleep: Optional[Callable[[RetryCallState], None]] = None,
    ) -> None:
        self.retry_statuses = frozenset(retry_statuses)
        self.retry_on_timeout = retry_on_timeout
        self._scheduler: Scheduler = scheduler or schedule_with_timer
        self._retrying = tenacity.Retrying(
            stop=stop if stop is not None else tenacity.stop_after_attempt(4),
            wait=wait if wait is not None else tenacity.wait_random_exponential(multiplier=0.25, max=8),
            retry=retry_if_exception(self._should_retry_exception)
            | retry_if_result(self._should_retry_response),
            before_sleep=before_sleep or _default_before_sleep_hook,
            reraise=True,
        )
        self._states: "weakref.WeakKeyDictionary[RequestPipeline, RetryCallState]" = (
            weakref.WeakKeyDictionary()
        )
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: RetrySettings, *, scheduler: Optional[Scheduler] = None
    ) -> "TenacityRetrier":
        stop: Any = tenacity.stop_after_attempt(settings.max_attempts)
        if settings.max_elapsed_s:
            stop = stop | tenacity.stop_after_delay(settings.max_elapsed_s)
        fallback = tenacity.wait_random_exponential(
            multiplier=settings.backoff_multiplier_s,
            max=settings.backoff_max_s,
        )
        return cls(
            stop=stop,
            wait=_WaitRetryAfter(fallback=fallback, cap_s=settings.retry_after_cap_s),
            retry_statuses=settings.retry_statuses,
            retry_on_timeout=settings.retry_on_timeout,
            scheduler=scheduler,
        )

    def _should_retry_exception(self, error: BaseException) -> bool:
        if not is_retry_eligible(error):
            return False
        if isinstance(error, TransportFailed) and isinstance(error.cause, httpx.TimeoutException):
            return self.retry_on_timeout
        if isinstance(error, ValidationFailed):
            status = error.status_code
            return status is not None and status in self.retry_statuses
        return True

    def _should_retry_response(self, response: Any) -> bool:
        status = getattr(response, "status_code", None)
        return status is not None and status in self.retry_statuses

    def _state_for(self, pipeline: "RequestPipeline") -> RetryCallState:
        with self._lock:
            state = self._states.get(pipeline)
            if state is None:
                state = RetryCallState(self._retrying, fn=None, args=(), kwargs={})
                self._states[pipeline] = state
            return state

    def retry(
        self,
        pipeline: "RequestPipeline",
        error: PipelineError,
        response: Optional[httpx.Response],
        completion: RetryCompletion,
    ) -> None:
        state = self._state_for(pipeline)
        if isinstance(error, ValidationFailed) and response is not None:
            state.set_result(response)
        else:
            state.set_exception((type(error), error, error.__traceback__))

        if not self._retrying.retry(state) or self._retrying.stop(state):
            LOGGER.debug(
                "Not retrying after attempt %d: %s",
                state.attempt_number,
                error,
            )
            completion(False)
            return

        sleep = float(self._retrying.wait(state))
        state.next_action = tenacity.RetryAction(sleep)
        state.idle_for += sleep
        self._retrying.before_sleep(state)
        state.prepare_for_next_attempt()
        self._scheduler(sleep, lambda: completion(True))
