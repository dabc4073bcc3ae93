"""Parsing and validation of YAML/JSON stub fixture files."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from StubNet.Stubbing.fixtures import (
    StubRequestSpec,
    StubResponseSpec,
    load_stub_fixtures,
)
from StubNet.Stubbing.responses import StubResponse
from StubNet.Stubbing.rules import QueryMatchPolicy, StubRule

YAML_FIXTURE = """
mock_all_requests: true
stubs:
  - request: {method: get, url: "https://x.com/a?q=1"}
    response: {status_code: 200, json: {ok: true}}
  - request: {url: "/health", method: ANY}
    response: {text: "ok", headers: {X-Env: test}}
  - request: {method: POST, url: "https://x.com/upload", query_policy: allow_missing_query_parameters}
    response: {body_file: payload.bin, status_code: 201, content_type: application/octet-stream}
  - request: {method: DELETE, url: "https://x.com/a"}
"""


def test_yaml_fixture_builds_rules_and_responses(tmp_path) -> None:
    (tmp_path / "payload.bin").write_bytes(b"\x00\x01")
    path = tmp_path / "stubs.yaml"
    path.write_text(YAML_FIXTURE, encoding="utf-8")

    fixtures = load_stub_fixtures(path)
    stubs = list(fixtures.build_stubs())

    assert fixtures.mock_all_requests is True
    assert fixtures.source == path.resolve()
    assert [rule for rule, _ in stubs] == [
        StubRule.get("https://x.com/a?q=1"),
        StubRule.http("/health"),
        StubRule.post("https://x.com/upload", QueryMatchPolicy.ALLOW_MISSING_QUERY_PARAMETERS),
        StubRule.delete("https://x.com/a"),
    ]

    json_response = stubs[0][1]
    assert json_response.body == b'{"ok":true}'
    assert json_response.content_type == "application/json"

    text_response = stubs[1][1]
    assert text_response.body == b"ok"
    assert text_response.headers == {"X-Env": "test"}

    file_response = stubs[2][1]
    assert file_response.body == b"\x00\x01"
    assert file_response.status_code == 201
    assert file_response.content_type == "application/octet-stream"

    empty_response = stubs[3][1]
    assert empty_response.body is None
    assert empty_response.status_code == 200


def test_json_fixture(tmp_path) -> None:
    path = tmp_path / "stubs.json"
    path.write_text(
        json.dumps({"stubs": [{"request": {"url": "/a"}, "response": {"body": "raw", "replace_headers": True}}]}),
        encoding="utf-8",
    )

    fixtures = load_stub_fixtures(path)
    [(rule, response)] = list(fixtures.build_stubs())

    assert fixtures.mock_all_requests is False
    assert rule == StubRule.http("/a")
    assert response.body == b"raw"
    assert response.replace_headers is True


def test_missing_body_file_raises(tmp_path) -> None:
    path = tmp_path / "stubs.yaml"
    path.write_text(
        'stubs:\n  - request: {url: "/a"}\n    response: {body_file: nope.bin}\n',
        encoding="utf-8",
    )

    fixtures = load_stub_fixtures(path)

    with pytest.raises(FileNotFoundError):
        list(fixtures.build_stubs())


def test_multiple_body_sources_are_rejected() -> None:
    with pytest.raises(ValidationError, match="Only one of"):
        StubResponseSpec.model_validate({"text": "a", "json": {"b": 1}})


def test_unknown_keys_are_rejected(tmp_path) -> None:
    path = tmp_path / "stubs.yaml"
    path.write_text('stubs:\n  - request: {url: "/a", verb: GET}\n', encoding="utf-8")

    with pytest.raises(ValueError):
        load_stub_fixtures(path)


def test_source_key_is_not_accepted_from_files(tmp_path) -> None:
    path = tmp_path / "stubs.yaml"
    path.write_text("source: /etc/passwd\nstubs: []\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_stub_fixtures(path)


@pytest.mark.parametrize("method", ["FETCH", "g e t"])
def test_unsupported_methods_are_rejected(method: str) -> None:
    with pytest.raises(ValidationError, match="Unsupported HTTP method"):
        StubRequestSpec.model_validate({"method": method, "url": "/a"})


@pytest.mark.parametrize("method", [None, "", "all", "*"])
def test_wildcard_method_spellings(method) -> None:
    spec = StubRequestSpec.model_validate({"method": method, "url": "/a"})

    assert spec.method is None
    assert spec.to_rule() == StubRule.http("/a")


def test_status_code_bounds() -> None:
    with pytest.raises(ValidationError):
        StubResponseSpec.model_validate({"status_code": 42})


def test_missing_file_is_reported_as_value_error(tmp_path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_stub_fixtures(tmp_path / "absent.yaml")


def test_response_file_relative_to_module(tmp_path) -> None:
    (tmp_path / "body.txt").write_text("from disk", encoding="utf-8")
    anchor = tmp_path / "test_module.py"

    response = StubResponse.file("body.txt", relative_to=anchor)

    assert response.body == b"from disk"
