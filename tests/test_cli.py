"""
StubNet CLI Tests

This module exercises the ``stubnet`` Typer application end to end through
``typer.testing.CliRunner``.

Key Scenarios:
- Lists fixture stubs as text and JSON
- Resolves requests against a fixture file and reports misses via exit code
- Prints, validates and exports the merged configuration

Usage:
    pytest tests/test_cli.py
"""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from StubNet.cli import app

runner = CliRunner()

FIXTURE = """
mock_all_requests: true
stubs:
  - request: {method: GET, url: "https://x.com/a?q=1"}
    response: {json: {ok: true}}
  - request: {url: "/health"}
    response: {status_code: 204}
  - request: {url: "?only=query"}
    response: {text: "never registered"}
"""


@pytest.fixture
def fixture_file(tmp_path):
    path = tmp_path / "stubs.yaml"
    path.write_text(FIXTURE, encoding="utf-8")
    return path


def test_stubs_list(fixture_file) -> None:
    result = runner.invoke(app, ["stubs", "list", str(fixture_file)])

    assert result.exit_code == 0, result.output
    assert "mock_all_requests: True" in result.stdout
    assert "GET: https://x.com/a?q=1  [exact_match] -> 200" in result.stdout
    assert "ALL: /health" in result.stdout
    assert "(invalid, ignored)" in result.stdout
    assert "3 stub(s)" in result.stdout


def test_stubs_list_json(fixture_file) -> None:
    result = runner.invoke(app, ["stubs", "list", str(fixture_file), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["mock_all_requests"] is True
    assert [entry["valid"] for entry in payload["stubs"]] == [True, True, False]
    assert payload["stubs"][0]["bytes"] == len(b'{"ok":true}')


def test_stubs_resolve_match(fixture_file) -> None:
    result = runner.invoke(app, ["stubs", "resolve", str(fixture_file), "get", "https://x.com/a?q=1"])

    assert result.exit_code == 0, result.output
    assert "GET: https://x.com/a?q=1 -> GET: https://x.com/a?q=1 (200)" in result.stdout
    assert '{"ok":true}' in result.stdout


def test_stubs_resolve_route_wildcard(fixture_file) -> None:
    result = runner.invoke(
        app, ["--log-level", "DEBUG", "stubs", "resolve", str(fixture_file), "DELETE", "https://svc.test/health/"]
    )

    assert result.exit_code == 0, result.output
    assert "-> ALL: /health (204)" in result.stdout


def test_stubs_resolve_miss_exits_nonzero(fixture_file) -> None:
    result = runner.invoke(app, ["stubs", "resolve", str(fixture_file), "GET", "https://x.com/missing"])

    assert result.exit_code == 1
    assert "No stub matches" in result.output


def test_stubs_list_bad_fixture(tmp_path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("stubs:\n  - response: {text: no request}\n", encoding="utf-8")

    result = runner.invoke(app, ["stubs", "list", str(path)])

    assert result.exit_code == 1
    assert "Error loading fixtures" in result.output


def test_config_show(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("STUBNET_RETRY__MAX_ATTEMPTS", raising=False)
    path = tmp_path / "stubnet.yaml"
    path.write_text("retry:\n  max_attempts: 6\n", encoding="utf-8")

    result = runner.invoke(app, ["config", "show", "-c", str(path)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["retry"]["max_attempts"] == 6


def test_config_validate(tmp_path) -> None:
    good = tmp_path / "good.yaml"
    good.write_text("log_level: debug\n", encoding="utf-8")
    bad = tmp_path / "bad.yaml"
    bad.write_text("retry:\n  max_attempts: 0\n", encoding="utf-8")

    ok = runner.invoke(app, ["config", "validate", "-c", str(good)])
    failed = runner.invoke(app, ["config", "validate", "-c", str(bad)])

    assert ok.exit_code == 0, ok.output
    assert "Config is valid" in ok.stdout
    assert failed.exit_code == 1
    assert "Config validation failed" in failed.output


def test_config_schema() -> None:
    result = runner.invoke(app, ["config", "schema"])

    assert result.exit_code == 0, result.output
    assert "retry" in json.loads(result.stdout)["properties"]
