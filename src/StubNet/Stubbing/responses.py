"""Canned responses returned for matched stub rules."""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

__all__ = ("StubResponse",)

LOGGER = logging.getLogger(__name__)


def _encode_json(payload: Any) -> bytes:
    if isinstance(payload, BaseModel):
        return payload.model_dump_json().encode("utf-8")
    return _json.dumps(payload, separators=(",", ":")).encode("utf-8")


@dataclass
class StubResponse:
    """The status, headers, body or error returned for a matched request.

    ``error`` wins over everything else when the response is dispatched: the
    interceptor raises it instead of synthesising a response.
    ``replace_headers`` decides whether ``headers`` replace the outbound
    request headers or are merged over them.
    """

    body: Optional[bytes] = None
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    error: Optional[BaseException] = None
    replace_headers: bool = False

    def __post_init__(self) -> None:
        if self.status_code < 100 or self.status_code > 999:
            raise ValueError(f"status_code must be a 3-digit HTTP status, got {self.status_code}")
        self.headers = {str(key): str(value) for key, value in dict(self.headers).items()}

    def __str__(self) -> str:
        if self.error is not None:
            return f"<StubResponse error={self.error!r} status={self.status_code}>"
        size = len(self.body) if self.body is not None else 0
        return f"<StubResponse status={self.status_code} bytes={size}>"

    # --- Convenience constructors ---

    @classmethod
    def data(
        cls,
        body: bytes,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> "StubResponse":
        return cls(
            body=bytes(body),
            status_code=status_code,
            headers=dict(headers or {}),
            content_type=content_type,
        )

    @classmethod
    def text(
        cls,
        text: str,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        content_type: Optional[str] = "text/plain; charset=utf-8",
    ) -> "StubResponse":
        return cls.data(
            text.encode("utf-8"),
            status_code=status_code,
            headers=headers,
            content_type=content_type,
        )

    @classmethod
    def json(
        cls,
        payload: Any,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "StubResponse":
        """Encode ``payload`` (a pydantic model or JSON-serialisable value)."""

        return cls.data(
            _encode_json(payload),
            status_code=status_code,
            headers=headers,
            content_type="application/json",
        )

    @classmethod
    def http(
        cls, status_code: int = 200, headers: Optional[Mapping[str, str]] = None
    ) -> "StubResponse":
        return cls(status_code=status_code, headers=dict(headers or {}))

    @classmethod
    def failure(
        cls,
        error: BaseException,
        status_code: int = 500,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "StubResponse":
        return cls(error=error, status_code=status_code, headers=dict(headers or {}))

    @classmethod
    def file(
        cls,
        path: Union[str, Path],
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        content_type: Optional[str] = None,
        relative_to: Optional[Union[str, Path]] = None,
    ) -> "StubResponse":
        """Load the body from ``path``, optionally relative to another file.

        ``relative_to`` may point at a directory or at a source file, in which
        case its parent directory is used (``StubResponse.file("x.json",
        relative_to=__file__)``).

        Raises:
            FileNotFoundError: If the resolved path does not exist.
        """

        target = Path(path)
        if relative_to is not None and not target.is_absolute():
            base = Path(relative_to)
            if not base.is_dir():
                base = base.parent
            target = base / target
        if not target.is_file():
            raise FileNotFoundError(f"Stub body file not found: {target}")
        LOGGER.debug("Loaded stub body from %s", target)
        return cls.data(
            target.read_bytes(),
            status_code=status_code,
            headers=headers,
            content_type=content_type,
        )
