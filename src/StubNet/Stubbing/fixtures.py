"""Stub fixture files: declarative YAML/JSON descriptions of stubs.

A fixture file looks like::

    mock_all_requests: true
    stubs:
      - request: {method: GET, url: "https://x.com/a?q=1"}
        response: {status_code: 200, json: {ok: true}}
      - request: {url: "/health"}
        response: {text: "ok"}
      - request: {method: POST, url: "https://x.com/upload"}
        response: {body_file: payload.bin, status_code: 201}

``body_file`` paths are resolved relative to the fixture file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from StubNet.config.loader import read_structured_file
from StubNet.Stubbing.responses import StubResponse
from StubNet.Stubbing.rules import HTTP_METHODS, QueryMatchPolicy, StubRule

__all__ = (
    "StubFixture",
    "StubFixtureFile",
    "StubRequestSpec",
    "StubResponseSpec",
    "load_stub_fixtures",
)

LOGGER = logging.getLogger(__name__)

_BODY_FIELDS = ("body", "json_body", "text", "body_file")


class StubRequestSpec(BaseModel):
    """Request side of a fixture entry."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    method: Optional[str] = Field(default=None, description="HTTP method; omit for any method")
    url: str = Field(description="URL pattern; missing components act as wildcards")
    query_policy: QueryMatchPolicy = Field(default=QueryMatchPolicy.EXACT_MATCH)

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        method = v.strip().upper()
        if method in ("", "ALL", "ANY", "*"):
            return None
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    def to_rule(self) -> StubRule:
        return StubRule(method=self.method, url=self.url, query_policy=self.query_policy)


class StubResponseSpec(BaseModel):
    """Response side of a fixture entry; at most one body source may be set."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    status_code: int = Field(default=200, ge=100, le=999)
    headers: Dict[str, str] = Field(default_factory=dict)
    content_type: Optional[str] = None
    replace_headers: bool = False
    body: Optional[str] = None
    json_body: Optional[Any] = Field(default=None, alias="json")
    text: Optional[str] = None
    body_file: Optional[str] = None

    @model_validator(mode="after")
    def validate_single_body(self) -> "StubResponseSpec":
        provided = [name for name in _BODY_FIELDS if getattr(self, name) is not None]
        if len(provided) > 1:
            raise ValueError(f"Only one of body/json/text/body_file may be set, got {provided}")
        return self

    def to_response(self, base_dir: Optional[Path] = None) -> StubResponse:
        headers = dict(self.headers)
        if self.json_body is not None:
            response = StubResponse.json(self.json_body, status_code=self.status_code, headers=headers)
        elif self.text is not None:
            response = StubResponse.text(self.text, status_code=self.status_code, headers=headers)
        elif self.body is not None:
            response = StubResponse.data(
                self.body.encode("utf-8"), status_code=self.status_code, headers=headers
            )
        elif self.body_file is not None:
            response = StubResponse.file(
                self.body_file,
                status_code=self.status_code,
                headers=headers,
                relative_to=base_dir,
            )
        else:
            response = StubResponse.http(self.status_code, headers)
        if self.content_type is not None:
            response.content_type = self.content_type
        response.replace_headers = self.replace_headers
        return response


class StubFixture(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    request: StubRequestSpec
    response: StubResponseSpec = Field(default_factory=StubResponseSpec)


class StubFixtureFile(BaseModel):
    """A parsed fixture document."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    mock_all_requests: bool = False
    stubs: List[StubFixture] = Field(default_factory=list)
    _source: Optional[Path] = PrivateAttr(default=None)

    @property
    def source(self) -> Optional[Path]:
        return self._source

    def build_stubs(self) -> Iterator[Tuple[StubRule, StubResponse]]:
        base_dir = self.source.parent if self.source is not None else None
        for fixture in self.stubs:
            yield fixture.request.to_rule(), fixture.response.to_response(base_dir)


def load_stub_fixtures(path: Union[str, Path]) -> StubFixtureFile:
    """Parse and validate the fixture file at ``path``.

    Raises:
        ValueError: If the file is missing, malformed or fails validation.
    """

    source = Path(path)
    data = read_structured_file(source)
    fixtures = StubFixtureFile.model_validate(data)
    fixtures._source = source.resolve()
    LOGGER.debug(
        "Parsed %d stub fixture(s) from %s",
        len(fixtures.stubs),
        source,
        extra={"fixture_path": str(source)},
    )
    return fixtures
