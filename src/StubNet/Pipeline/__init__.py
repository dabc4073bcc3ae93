"""
Resilient HTTP request pipeline.

Adaptation, retry, cancellation and exactly-once completion layered over an
injected transport, plus the :class:`HTTPClient` facade with blocking and
asyncio wrappers.
"""

from .client import HTTPClient
from .errors import (
    AdaptationFailed,
    DecodingFailed,
    InvalidContentType,
    InvalidRequestURL,
    InvalidStatusCode,
    NoStubMatched,
    PipelineError,
    RequestCancelled,
    StubNetError,
    TransportFailed,
    UnexpectedEmptyResult,
    ValidationFailed,
)
from .interceptors import (
    ComposedInterceptor,
    CountingRetrier,
    RequestAdapter,
    RequestInterceptor,
    RequestRetrier,
    TenacityRetrier,
)
from .pipeline import PipelineResult, PipelineState, RequestPipeline
from .transport import HttpxTransport, TaskHandle, Transport
from .validators import ensure_mime_type, validate_status_code

__all__ = [
    "AdaptationFailed",
    "ComposedInterceptor",
    "CountingRetrier",
    "DecodingFailed",
    "HTTPClient",
    "HttpxTransport",
    "InvalidContentType",
    "InvalidRequestURL",
    "InvalidStatusCode",
    "NoStubMatched",
    "PipelineError",
    "PipelineResult",
    "PipelineState",
    "RequestAdapter",
    "RequestCancelled",
    "RequestInterceptor",
    "RequestPipeline",
    "RequestRetrier",
    "StubNetError",
    "TaskHandle",
    "TenacityRetrier",
    "Transport",
    "TransportFailed",
    "UnexpectedEmptyResult",
    "ValidationFailed",
    "ensure_mime_type",
    "validate_status_code",
]
