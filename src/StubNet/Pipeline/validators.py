"""Response validators run by the pipeline after every transport completion.

A validator is any ``Callable[[httpx.Response], None]`` that raises to reject
the response. Rejections become :class:`ValidationFailed` and are offered to
the retrier like transport errors.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence, Tuple

import httpx

from StubNet.Pipeline.errors import InvalidContentType, InvalidStatusCode

__all__ = (
    "DEFAULT_VALIDATORS",
    "Validator",
    "acceptable_status_codes",
    "ensure_mime_type",
    "run_validators",
    "validate_status_code",
)

Validator = Callable[[httpx.Response], None]


def validate_status_code(response: httpx.Response) -> None:
    """Reject 4xx and 5xx responses."""

    if 400 <= response.status_code <= 599:
        raise InvalidStatusCode(response.status_code)


def acceptable_status_codes(codes: Iterable[int]) -> Validator:
    """Return a validator accepting only the given status codes."""

    allowed = frozenset(codes)

    def _validate(response: httpx.Response) -> None:
        if response.status_code not in allowed:
            raise InvalidStatusCode(response.status_code)

    return _validate


def _split_mime(value: str) -> Tuple[str, str]:
    mime = value.split(";", 1)[0].strip().lower()
    kind, _, subtype = mime.partition("/")
    return kind, subtype


def _mime_matches(actual: str, expected: str) -> bool:
    actual_type, actual_sub = _split_mime(actual)
    expected_type, expected_sub = _split_mime(expected)
    if expected_type == "*" and expected_sub in ("*", ""):
        return True
    if expected_type != actual_type:
        return False
    return expected_sub in ("*", "") or expected_sub == actual_sub


def ensure_mime_type(*expected: str) -> Validator:
    """Return a validator requiring the response ``Content-Type`` to match one of ``expected``.

    Wildcards such as ``application/*`` are accepted. Responses without a body
    pass regardless of their content type.
    """

    if not expected:
        raise ValueError("ensure_mime_type requires at least one mime type")
    choices = tuple(expected)

    def _validate(response: httpx.Response) -> None:
        if not response.content:
            return
        actual: Optional[str] = response.headers.get("content-type")
        if actual and any(_mime_matches(actual, choice) for choice in choices):
            return
        raise InvalidContentType(actual, ", ".join(choices))

    return _validate


def run_validators(response: httpx.Response, validators: Sequence[Validator]) -> None:
    for validator in validators:
        validator(response)


DEFAULT_VALIDATORS: Tuple[Validator, ...] = (validate_status_code,)
