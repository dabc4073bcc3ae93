# === NAVMAP v1 ===
# {
#   "module": "StubNet.Pipeline.pipeline",
#   "purpose": "Request pipeline state machine: adapt, perform, validate, retry, cancel, complete",
#   "sections": [
#     {
#       "id": "pipelinestate",
#       "name": "PipelineState",
#       "anchor": "class-pipelinestate",
#       "kind": "class"
#     },
#     {
#       "id": "pipelineresult",
#       "name": "PipelineResult",
#       "anchor": "class-pipelineresult",
#       "kind": "class"
#     },
#     {
#       "id": "requestpipeline",
#       "name": "RequestPipeline",
#       "anchor": "class-requestpipeline",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Request pipeline: one logical HTTP exchange driven to exactly one completion.

Responsibilities
----------------
- Adapt the outbound request through the configured interceptor, perform it on
  the injected :class:`~StubNet.Pipeline.transport.Transport`, run response
  validators, and consult the retrier after every retry-eligible failure.
- Honour :meth:`RequestPipeline.cancel` at any point: while a transport task is
  live it is cancelled; while adapting or while the retrier is deciding the
  request is remembered and honoured as soon as that step answers.
- Fire ``request_will_start`` once when :meth:`RequestPipeline.perform` begins
  and ``request_did_end`` once when a terminal state is reached.
- Deliver the :class:`PipelineResult` exactly once, on the supplied executor
  or inline.

Design Notes
------------
- Every callback (adapter, transport, retrier, cancel) is turned into an event
  and funnelled through :meth:`RequestPipeline._dispatch`. Only one thread
  drains the event queue at a time, so handlers never run concurrently and
  callbacks invoked synchronously from inside a handler never recurse.
- Each transport attempt carries a token; completions whose token is not the
  current one belong to abandoned attempts and are ignored.
- There is no default retry limit. An always-yes retrier loops forever.
"""

from __future__ import annotations

import collections
import enum
import json as _json
import logging
import threading
from concurrent import futures
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple

import httpx

from StubNet.Pipeline.errors import (
    AdaptationFailed,
    PipelineError,
    RequestCancelled,
    TransportFailed,
    UnexpectedEmptyResult,
    ValidationFailed,
    is_retry_eligible,
)
from StubNet.Pipeline.interceptors import (
    ComposedInterceptor,
    RequestAdapter,
    RequestInterceptor,
    RequestRetrier,
)
from StubNet.Pipeline.transport import TaskHandle, Transport
from StubNet.Pipeline.validators import Validator, run_validators

__all__ = (
    "Completion",
    "PipelineResult",
    "PipelineState",
    "RequestPipeline",
    "TERMINAL_STATES",
)

LOGGER = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    ADAPTING = "adapting"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({PipelineState.COMPLETED, PipelineState.CANCELLED})


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of a :class:`RequestPipeline`."""

    request: Optional[httpx.Request]
    response: Optional[httpx.Response]
    body: Optional[bytes]
    error: Optional[PipelineError]
    retry_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    @property
    def text(self) -> str:
        if self.body is None:
            return ""
        encoding = self.response.encoding if self.response is not None else None
        return self.body.decode(encoding or "utf-8", errors="replace")

    def raise_for_error(self) -> "PipelineResult":
        if self.error is not None:
            raise self.error
        return self

    def json(self) -> Any:
        """Decode the body as JSON; raises the pipeline error first, if any."""

        self.raise_for_error()
        return _json.loads(self.body or b"")


Completion = Callable[[PipelineResult], None]


@dataclass
class _RequestAttempt:
    original: httpx.Request
    completion: Completion
    adapted: Optional[httpx.Request] = None
    tasks: List[TaskHandle] = field(default_factory=list)


def _once(callback: Callable[..., None]) -> Callable[..., None]:
    lock = threading.Lock()
    called = False

    def _wrapper(*args: Any) -> None:
        nonlocal called
        with lock:
            if called:
                LOGGER.debug("Ignoring repeated completion for %r", callback)
                return
            called = True
        callback(*args)

    return _wrapper


class RequestPipeline:
    """Drive one request through adaptation, transport, validation and retries.

    Args:
        transport: Performs each HTTP exchange.
        validators: Run in order on every response; the first to raise fails
            the attempt with :class:`ValidationFailed`.
        interceptor: Adapter, retrier and lifecycle hooks in one object.
        adapter: Extra adapter, applied after ``interceptor``.
        retrier: Extra retrier, consulted after ``interceptor``.
        executor: Runs the completion callback; inline when omitted.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        validators: Sequence[Validator] = (),
        interceptor: Optional[RequestInterceptor] = None,
        adapter: Optional[RequestAdapter] = None,
        retrier: Optional[RequestRetrier] = None,
        executor: Optional[futures.Executor] = None,
    ) -> None:
        self._transport = transport
        self._validators: Tuple[Validator, ...] = tuple(validators)
        self._interceptor = self._compose(interceptor, adapter, retrier)
        self._executor = executor

        self._lock = threading.RLock()
        self._events: Deque[Tuple[Any, ...]] = collections.deque()
        self._draining = False

        self._state = PipelineState.IDLE
        self._attempt: Optional[_RequestAttempt] = None
        self._cancel_requested = False
        self._token = 0
        self._live_task: Optional[TaskHandle] = None
        self._retry_count = 0
        self._pending_failure: Optional[Tuple[PipelineError, Optional[bytes], Optional[httpx.Response]]] = None
        self._result: Optional[PipelineResult] = None

    @staticmethod
    def _compose(
        interceptor: Optional[RequestInterceptor],
        adapter: Optional[RequestAdapter],
        retrier: Optional[RequestRetrier],
    ) -> Optional[RequestInterceptor]:
        if adapter is None and retrier is None:
            return interceptor
        members = [interceptor] if interceptor is not None else []
        return ComposedInterceptor(
            adapters=members + ([adapter] if adapter is not None else []),
            retriers=members + ([retrier] if retrier is not None else []),
            observers=members,
        )

    def __repr__(self) -> str:
        return f"RequestPipeline(state={self.state.value}, retry_count={self.retry_count})"

    # --- Public API ---

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def retry_count(self) -> int:
        with self._lock:
            return self._retry_count

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancel_requested or self._state is PipelineState.CANCELLED

    @property
    def request(self) -> Optional[httpx.Request]:
        """The adapted request, or the original one until adaptation finishes."""

        with self._lock:
            if self._attempt is None:
                return None
            return self._attempt.adapted or self._attempt.original

    @property
    def result(self) -> Optional[PipelineResult]:
        with self._lock:
            return self._result

    def perform(self, request: httpx.Request, completion: Completion) -> "RequestPipeline":
        """Start the exchange; ``completion`` receives exactly one :class:`PipelineResult`.

        Raises:
            RuntimeError: If this pipeline has already been started.
        """

        with self._lock:
            if self._attempt is not None:
                raise RuntimeError("RequestPipeline.perform() may only be called once")
            self._attempt = _RequestAttempt(original=request, completion=completion)
        self._dispatch(("start",))
        return self

    def cancel(self) -> None:
        """Cancel the exchange; calling it again, or after completion, does nothing."""

        with self._lock:
            if self._cancel_requested or self._state in TERMINAL_STATES:
                return
            self._cancel_requested = True
            task = self._live_task
            self._live_task = None
        LOGGER.debug("Cancellation requested", extra={"pipeline_state": self.state.value})
        if task is not None:
            task.cancel()
        self._dispatch(("cancel",))

    # --- Event loop ---

    def _dispatch(self, event: Tuple[Any, ...]) -> None:
        with self._lock:
            self._events.append(event)
            if self._draining:
                return
            self._draining = True
        while True:
            with self._lock:
                if not self._events:
                    self._draining = False
                    return
                event = self._events.popleft()
            try:
                self._handle(event)
            except Exception as exc:
                LOGGER.exception("Pipeline event %s failed", event[0])
                self._finish(error=TransportFailed(exc))

    def _handle(self, event: Tuple[Any, ...]) -> None:
        kind = event[0]
        if kind == "start":
            self._on_start()
        elif kind == "adapted":
            self._on_adapted(event[1])
        elif kind == "transport_done":
            self._on_transport_done(*event[1:])
        elif kind == "retry_decided":
            self._on_retry_decided(event[1])
        elif kind == "cancel":
            self._on_cancel()
        else:  # pragma: no cover - internal events only
            raise ValueError(f"Unknown pipeline event: {kind}")

    def _set_state(self, state: PipelineState) -> None:
        with self._lock:
            previous = self._state
            self._state = state
        LOGGER.debug("Pipeline %s -> %s", previous.value, state.value)

    # --- Handlers ---

    def _on_start(self) -> None:
        if self._interceptor is not None:
            try:
                self._interceptor.request_will_start(self)
            except Exception:
                LOGGER.exception("request_will_start hook failed")

        if self._cancel_requested:
            self._finish_cancelled()
            return

        attempt = self._attempt
        assert attempt is not None
        if self._interceptor is None:
            attempt.adapted = attempt.original
            self._start_attempt()
            return

        self._set_state(PipelineState.ADAPTING)
        on_adapted = _once(lambda result: self._dispatch(("adapted", result)))
        try:
            self._interceptor.adapt(attempt.original, on_adapted)
        except Exception as exc:
            on_adapted(exc)

    def _on_adapted(self, result: Any) -> None:
        if self._state is not PipelineState.ADAPTING:
            return
        if self._cancel_requested:
            self._finish_cancelled()
            return
        if isinstance(result, BaseException):
            self._finish(error=AdaptationFailed(result))
            return
        if not isinstance(result, httpx.Request):
            self._finish(
                error=AdaptationFailed(TypeError(f"adapter returned {type(result).__name__}"))
            )
            return
        assert self._attempt is not None
        self._attempt.adapted = result
        self._start_attempt()

    def _start_attempt(self) -> None:
        if self._cancel_requested:
            self._finish_cancelled()
            return
        attempt = self._attempt
        assert attempt is not None and attempt.adapted is not None

        with self._lock:
            self._token += 1
            token = self._token
        self._set_state(PipelineState.IN_FLIGHT)

        def _on_complete(
            body: Optional[bytes],
            response: Optional[httpx.Response],
            error: Optional[BaseException],
        ) -> None:
            self._dispatch(("transport_done", token, body, response, error))

        try:
            task = self._transport.perform_request(attempt.adapted, _once(_on_complete))
        except Exception as exc:
            self._dispatch(("transport_done", token, None, None, exc))
            return

        with self._lock:
            attempt.tasks.append(task)
            if token == self._token and self._state is PipelineState.IN_FLIGHT:
                self._live_task = task

    def _on_transport_done(
        self,
        token: int,
        body: Optional[bytes],
        response: Optional[httpx.Response],
        error: Optional[BaseException],
    ) -> None:
        with self._lock:
            if token != self._token or self._state is not PipelineState.IN_FLIGHT:
                LOGGER.debug("Ignoring completion from abandoned attempt %d", token)
                return
            self._live_task = None

        if self._cancel_requested or isinstance(error, RequestCancelled):
            self._finish_cancelled(response)
            return

        failure: Optional[PipelineError] = None
        if error is not None:
            if isinstance(error, PipelineError):
                failure = error
            else:
                failure = TransportFailed(error, response=response)
        elif response is None and body is None:
            failure = UnexpectedEmptyResult()
        elif response is not None:
            try:
                run_validators(response, self._validators)
            except Exception as exc:
                failure = ValidationFailed(exc, response=response)

        if failure is None:
            self._finish(body=body, response=response)
            return
        self._handle_failure(failure, body, response)

    def _handle_failure(
        self,
        failure: PipelineError,
        body: Optional[bytes],
        response: Optional[httpx.Response],
    ) -> None:
        if self._interceptor is None or not is_retry_eligible(failure):
            self._finish(body=body, response=response, error=failure)
            return

        with self._lock:
            self._pending_failure = (failure, body, response)
        self._set_state(PipelineState.RETRYING)
        on_decided = _once(lambda should_retry: self._dispatch(("retry_decided", bool(should_retry))))
        try:
            self._interceptor.retry(self, failure, response, on_decided)
        except Exception:
            LOGGER.exception("Retrier failed; completing with the original error")
            on_decided(False)

    def _on_retry_decided(self, should_retry: bool) -> None:
        if self._state is not PipelineState.RETRYING:
            return
        with self._lock:
            pending = self._pending_failure
            self._pending_failure = None
        assert pending is not None
        failure, body, response = pending

        if self._cancel_requested:
            self._finish_cancelled(response)
            return
        if not should_retry:
            self._finish(body=body, response=response, error=failure)
            return

        with self._lock:
            self._retry_count += 1
            retry_count = self._retry_count
        LOGGER.debug(
            "Retrying request (retry %d) after %s",
            retry_count,
            type(failure).__name__,
            extra={"retry_count": retry_count},
        )
        self._start_attempt()

    def _on_cancel(self) -> None:
        # adapting and retrying honour the flag when their step answers
        if self._state is not PipelineState.IN_FLIGHT:
            return
        with self._lock:
            task = self._live_task
            self._live_task = None
            self._token += 1
        self._finish_cancelled()
        if task is not None:
            task.cancel()

    # --- Completion ---

    def _finish_cancelled(self, response: Optional[httpx.Response] = None) -> None:
        self._finish(response=response, error=RequestCancelled(response=response), cancelled=True)

    def _finish(
        self,
        *,
        body: Optional[bytes] = None,
        response: Optional[httpx.Response] = None,
        error: Optional[PipelineError] = None,
        cancelled: bool = False,
    ) -> None:
        with self._lock:
            if self._state in TERMINAL_STATES:
                return
            self._state = PipelineState.CANCELLED if cancelled else PipelineState.COMPLETED
            self._live_task = None
            attempt = self._attempt
            assert attempt is not None
            result = PipelineResult(
                request=attempt.adapted or attempt.original,
                response=response,
                body=body,
                error=error,
                retry_count=self._retry_count,
            )
            self._result = result

        if error is None:
            LOGGER.debug(
                "Request completed",
                extra={"status": result.status_code, "retry_count": result.retry_count},
            )
        else:
            LOGGER.debug(
                "Request failed: %s",
                error,
                extra={"error_type": type(error).__name__, "retry_count": result.retry_count},
            )

        if self._interceptor is not None:
            try:
                self._interceptor.request_did_end(self, result)
            except Exception:
                LOGGER.exception("request_did_end hook failed")

        self._deliver(attempt.completion, result)

    def _deliver(self, completion: Completion, result: PipelineResult) -> None:
        if self._executor is not None:
            try:
                self._executor.submit(_run_completion, completion, result)
                return
            except RuntimeError:
                LOGGER.warning("Completion executor unavailable; delivering inline")
        _run_completion(completion, result)


def _run_completion(completion: Completion, result: PipelineResult) -> None:
    try:
        completion(result)
    except Exception:
        LOGGER.exception("Pipeline completion callback raised")
