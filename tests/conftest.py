# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {
#       "id": "registry",
#       "name": "registry",
#       "anchor": "function-registry",
#       "kind": "function"
#     },
#     {
#       "id": "recordingtransport",
#       "name": "RecordingTransport",
#       "anchor": "class-recordingtransport",
#       "kind": "class"
#     },
#     {
#       "id": "install-mock-http-client",
#       "name": "install_mock_http_client",
#       "anchor": "function-install-mock-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Adds ``src`` to ``sys.path`` and provides the shared fixtures used across the
suite: an isolated stub registry, a scriptable fake transport for pipeline
tests, and an installer that backs the shared httpx client with
``httpx.MockTransport``.
"""

from __future__ import annotations

import contextlib
import logging
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Tuple, Union

import httpx
import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from StubNet import httpx_transport  # noqa: E402
from StubNet.Stubbing.registry import (  # noqa: E402
    StubRegistry,
    reset_default_registry,
    set_default_registry,
)

Outcome = Union[httpx.Response, BaseException, None]


@pytest.fixture(autouse=True)
def _isolate_global_state():
    """Reset interceptors, default registry and StubNet logging around each test."""

    yield
    httpx_transport.clear_interceptors()
    httpx_transport.reset_http_client_for_tests()
    reset_default_registry()
    logger = logging.getLogger("StubNet")
    for handler in list(logger.handlers):
        if getattr(handler, "_stubnet_managed", False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.FileHandler):
                handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def registry() -> StubRegistry:
    """An empty registry installed as the process-wide default."""

    fresh = StubRegistry()
    set_default_registry(fresh)
    return fresh


class RecordedTask:
    def __init__(self, transport: "RecordingTransport", request: httpx.Request, on_complete) -> None:
        self.transport = transport
        self.request = request
        self.on_complete = on_complete
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.transport.cancel_calls += 1

    def complete(self, outcome: Outcome) -> None:
        if isinstance(outcome, BaseException):
            self.on_complete(None, None, outcome)
        elif outcome is None:
            self.on_complete(None, None, None)
        else:
            self.on_complete(outcome.content, outcome, None)


class RecordingTransport:
    """Fake transport completing each attempt with the next scripted outcome.

    Outcomes are ``httpx.Response`` objects, exceptions (reported as transport
    errors) or ``None`` (neither body nor response). With ``auto_complete``
    disabled the test drives completions through :attr:`tasks`.
    """

    def __init__(self, outcomes: Optional[List[Outcome]] = None, *, auto_complete: bool = True) -> None:
        self.outcomes: Deque[Outcome] = deque(outcomes or [])
        self.auto_complete = auto_complete
        self.requests: List[httpx.Request] = []
        self.tasks: List[RecordedTask] = []
        self.cancel_calls = 0
        self._lock = threading.Lock()

    def perform_request(self, request: httpx.Request, on_complete) -> RecordedTask:
        with self._lock:
            self.requests.append(request)
            task = RecordedTask(self, request, on_complete)
            self.tasks.append(task)
            outcome = self.outcomes.popleft() if self.outcomes else httpx.Response(200, request=request)
        if self.auto_complete:
            task.complete(outcome)
        return task

    @property
    def attempts(self) -> int:
        return len(self.requests)


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    """Factory for :class:`RecordingTransport` instances."""

    def _make(outcomes: Optional[List[Outcome]] = None, *, auto_complete: bool = True) -> RecordingTransport:
        return RecordingTransport(outcomes, auto_complete=auto_complete)

    return _make


@pytest.fixture
def install_mock_http_client():
    """Install a deterministic shared httpx client backed by MockTransport."""

    created: Deque[httpx.Client] = deque()
    seen: List[Tuple[str, str]] = []

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        def _recording_handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, str(request.url)))
            return handler(request)

        httpx_transport.configure_http_client(transport=httpx.MockTransport(_recording_handler))
        client = httpx_transport.get_http_client()
        created.append(client)
        return client

    _install.seen = seen  # type: ignore[attr-defined]
    yield _install

    while created:
        client = created.pop()
        with contextlib.suppress(Exception):
            client.close()
    httpx_transport.reset_http_client_for_tests()
