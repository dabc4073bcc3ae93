# === NAVMAP v1 ===
# {
#   "module": "StubNet.Pipeline.errors",
#   "purpose": "Error taxonomy shared by the stub engine and the request pipeline.",
#   "sections": [
#     {
#       "id": "stubneterror",
#       "name": "StubNetError",
#       "anchor": "class-stubneterror",
#       "kind": "class"
#     },
#     {
#       "id": "pipelineerror",
#       "name": "PipelineError",
#       "anchor": "class-pipelineerror",
#       "kind": "class"
#     },
#     {
#       "id": "is-retry-eligible",
#       "name": "is_retry_eligible",
#       "anchor": "function-is-retry-eligible",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy shared by the stub engine and the request pipeline.

Responsibilities
----------------
- Define the failures a :class:`~StubNet.Pipeline.pipeline.RequestPipeline`
  can hand to its completion callback (adaptation, transport, validation,
  cancellation, empty result). Each wraps the underlying ``cause`` and keeps
  the :class:`httpx.Response` received so far, when there was one.
- Define the causes raised by built-in validators and by JSON decoding.
- Define the stub-engine errors (:class:`InvalidRequestURL`,
  :class:`NoStubMatched`).

Design Notes
------------
- Nothing in this module imports from the rest of the package so it can be
  used from retriers, validators and interceptors without import cycles.
"""

from __future__ import annotations

from typing import Optional

import httpx

__all__ = (
    "AdaptationFailed",
    "DecodingFailed",
    "InvalidContentType",
    "InvalidRequestURL",
    "InvalidStatusCode",
    "NoStubMatched",
    "PipelineError",
    "RequestCancelled",
    "StubNetError",
    "TransportFailed",
    "UnexpectedEmptyResult",
    "ValidationFailed",
    "is_retry_eligible",
)


class StubNetError(Exception):
    """Base class for every error raised by StubNet."""


# --- Stub engine ---


class InvalidRequestURL(StubNetError):
    """Raised when an outbound request carries no resolvable URL."""

    def __init__(self, url: Optional[str] = None) -> None:
        if url:
            message = f"Invalid request URL: {url!r}"
        else:
            message = "Request URL not found."
        super().__init__(message)
        self.url = url


class NoStubMatched(StubNetError):
    """Raised when a stub is required but no registered rule matches."""

    def __init__(self, request: str) -> None:
        super().__init__(f"No stub registered for request {request}")
        self.request = request


# --- Validation causes ---


class InvalidContentType(StubNetError):
    """Raised by ``ensure_mime_type`` when the response mime type differs."""

    def __init__(self, actual: Optional[str], expected: str) -> None:
        super().__init__(f"Invalid content type {actual or 'unknown'!r}, expected {expected!r}")
        self.actual = actual
        self.expected = expected


class InvalidStatusCode(StubNetError):
    """Raised by ``validate_status_code`` for 4xx and 5xx responses."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Invalid status code: HTTP {status_code}")
        self.status_code = status_code


class DecodingFailed(StubNetError):
    """Raised when a response body cannot be decoded into the requested type."""

    def __init__(self, type_name: str, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Unable to decode response into {type_name}{detail}")
        self.type_name = type_name
        self.cause = cause


# --- Pipeline failures ---


class PipelineError(StubNetError):
    """A terminal pipeline failure carrying its cause and the last response."""

    default_message = "Request failed"

    def __init__(
        self,
        cause: Optional[BaseException] = None,
        *,
        response: Optional[httpx.Response] = None,
        message: Optional[str] = None,
    ) -> None:
        text = message or self.default_message
        if cause is not None and message is None:
            text = f"{text}: {cause}"
        super().__init__(text)
        self.cause = cause
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        if self.response is None:
            return None
        return self.response.status_code


class AdaptationFailed(PipelineError):
    """The request adapter reported an error; no transport attempt was made."""

    default_message = "Request adaptation failed"


class TransportFailed(PipelineError):
    """The underlying transport reported an I/O error."""

    default_message = "Transport failed"


class ValidationFailed(PipelineError):
    """A response validator rejected the response."""

    default_message = "Response validation failed"


class RequestCancelled(PipelineError):
    """The request was cancelled before it could complete."""

    default_message = "Request cancelled"


class UnexpectedEmptyResult(PipelineError):
    """The transport completed with neither a response nor an error."""

    default_message = "Transport completed without a response or an error"


def is_retry_eligible(error: BaseException) -> bool:
    """Return ``True`` for failures the pipeline offers to its retrier."""

    if isinstance(error, (AdaptationFailed, RequestCancelled)):
        return False
    if isinstance(error, TransportFailed) and isinstance(error.cause, InvalidRequestURL):
        return False
    return isinstance(error, PipelineError)
