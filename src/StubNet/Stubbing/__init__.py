"""
Request-matching mock network: stub rules, responses, registry and interceptor.

Typical use::

    registry = StubRegistry()
    registry.stub(StubRule.get("https://api.example.com/users"), StubResponse.json([]))
    interceptor = MockTransportInterceptor(registry, mock_all_requests=True)
"""

from .fixtures import StubFixtureFile, load_stub_fixtures
from .interceptor import EXTENSION_KEY, InterceptionOutcome, MockTransportInterceptor
from .registry import (
    StubRegistry,
    get_default_registry,
    reset_default_registry,
    set_default_registry,
)
from .responses import StubResponse
from .rules import IncomingRequest, QueryMatchPolicy, StubRule

__all__ = [
    "EXTENSION_KEY",
    "IncomingRequest",
    "InterceptionOutcome",
    "MockTransportInterceptor",
    "QueryMatchPolicy",
    "StubFixtureFile",
    "StubRegistry",
    "StubResponse",
    "StubRule",
    "get_default_registry",
    "load_stub_fixtures",
    "reset_default_registry",
    "set_default_registry",
]
