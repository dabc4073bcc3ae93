"""End-to-end behaviour of the ``HTTPClient`` facade over a mocked network."""

from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest
from pydantic import BaseModel

from StubNet.config.models import StubNetConfig
from StubNet.Pipeline.client import HTTPClient
from StubNet.Pipeline.errors import DecodingFailed, RequestCancelled, ValidationFailed
from StubNet.Pipeline.pipeline import PipelineState
from StubNet.Stubbing.registry import StubRegistry
from StubNet.Stubbing.responses import StubResponse
from StubNet.Stubbing.rules import StubRule

BASE = "https://api.example.com"


class User(BaseModel):
    id: int
    name: str


@pytest.fixture
def users_registry() -> StubRegistry:
    registry = StubRegistry()
    registry.register(StubRule.get(f"{BASE}/users/1"), StubResponse.json({"id": 1, "name": "Ada"}))
    registry.register(StubRule.get(f"{BASE}/search?a=1&b=2"), StubResponse.json([1, 2, 3]))
    registry.register(StubRule.get(f"{BASE}/broken"), StubResponse.text("not json"))
    return registry


def test_fetch_returns_stubbed_body(users_registry: StubRegistry) -> None:
    with HTTPClient.mocked(users_registry) as client:
        result = client.fetch("GET", f"{BASE}/users/1")

    assert result.ok
    assert result.status_code == 200
    assert result.json() == {"id": 1, "name": "Ada"}
    assert result.response.extensions["stubnet"]["matched"] is True


def test_fetch_json_decodes_into_model(users_registry: StubRegistry) -> None:
    with HTTPClient.mocked(users_registry) as client:
        user = client.fetch_json("GET", f"{BASE}/users/1", User)

    assert user == User(id=1, name="Ada")


def test_fetch_json_with_params(users_registry: StubRegistry) -> None:
    with HTTPClient.mocked(users_registry) as client:
        values = client.fetch_json("GET", f"{BASE}/search", List[int], params={"b": "2", "a": "1"})

    assert values == [1, 2, 3]


@pytest.mark.parametrize(
    "path, type_",
    [("/users/1", List[int]), ("/broken", User)],
    ids=["wrong-shape", "not-json"],
)
def test_fetch_json_decoding_failure(users_registry: StubRegistry, path: str, type_) -> None:
    with HTTPClient.mocked(users_registry) as client:
        with pytest.raises(DecodingFailed) as excinfo:
            client.fetch_json("GET", f"{BASE}{path}", type_)

    assert excinfo.value.cause is not None


def test_unmatched_request_fails_validation(users_registry: StubRegistry) -> None:
    with HTTPClient.mocked(users_registry) as client:
        with pytest.raises(ValidationFailed) as excinfo:
            client.fetch("GET", f"{BASE}/nothing-here")

    assert excinfo.value.status_code == 400


def test_base_url_and_default_headers(users_registry: StubRegistry) -> None:
    client = HTTPClient.mocked(users_registry, base_url=BASE, headers={"X-Api-Key": "secret"})

    result = client.fetch("GET", "/users/1", headers={"X-Trace": "t-1"})
    client.close()

    assert str(result.request.url) == f"{BASE}/users/1"
    assert result.request.headers["X-Api-Key"] == "secret"
    assert result.response.headers["X-Trace"] == "t-1"


def test_afetch(users_registry: StubRegistry) -> None:
    client = HTTPClient.mocked(users_registry)

    async def _run():
        return await client.afetch_json("GET", f"{BASE}/users/1", User)

    try:
        user = asyncio.run(_run())
    finally:
        client.close()

    assert user.name == "Ada"


def test_afetch_threaded_transport(users_registry: StubRegistry) -> None:
    client = HTTPClient.mocked(users_registry, max_workers=2)

    async def _run():
        return await asyncio.gather(
            client.afetch("GET", f"{BASE}/users/1"),
            client.afetch("GET", f"{BASE}/search?b=2&a=1"),
        )

    try:
        first, second = asyncio.run(_run())
    finally:
        client.close()

    assert first.json()["id"] == 1
    assert second.json() == [1, 2, 3]


def test_request_body_is_encoded(recording_transport) -> None:
    transport = recording_transport()
    client = HTTPClient(transport)

    client.fetch("post", f"{BASE}/users", json={"name": "Grace"})

    sent = transport.requests[0]
    assert sent.method == "POST"
    assert json.loads(sent.content) == {"name": "Grace"}


def test_fetch_timeout_cancels_pipeline(recording_transport) -> None:
    transport = recording_transport(auto_complete=False)
    client = HTTPClient(transport)

    with pytest.raises(RequestCancelled):
        client.fetch("GET", f"{BASE}/slow", timeout=0.05)

    assert transport.cancel_calls == 1


def test_afetch_cancellation_cancels_pipeline(recording_transport) -> None:
    transport = recording_transport(auto_complete=False)
    client = HTTPClient(transport)

    async def _run() -> None:
        task = asyncio.ensure_future(client.afetch("GET", f"{BASE}/slow"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())

    assert transport.cancel_calls == 1


def test_perform_returns_running_pipeline(recording_transport) -> None:
    transport = recording_transport(auto_complete=False)
    client = HTTPClient(transport)
    results = []

    pipeline = client.perform(client.build_request("GET", f"{BASE}/users/1"), results.append)
    assert pipeline.state is PipelineState.IN_FLIGHT
    transport.tasks[0].complete(httpx.Response(200, content=b"{}"))

    assert pipeline.state is PipelineState.COMPLETED
    assert len(results) == 1


def test_from_config_retries_with_fixtures(tmp_path) -> None:
    fixture = tmp_path / "stubs.yaml"
    fixture.write_text(
        'stubs:\n  - request: {method: GET, url: "https://api.example.com/flaky"}\n'
        "    response: {status_code: 503, text: unavailable}\n",
        encoding="utf-8",
    )
    messages: List[str] = []
    registry = StubRegistry(sink=messages.append)
    config = StubNetConfig.model_validate(
        {
            "mock": {"enabled": True, "mock_all_requests": True, "fixtures": [str(fixture)]},
            "retry": {"max_attempts": 3, "backoff_max_s": 0},
            "http": {"max_workers": 1},
        }
    )

    with HTTPClient.from_config(config, registry=registry) as client:
        with pytest.raises(ValidationFailed) as excinfo:
            client.fetch("GET", "https://api.example.com/flaky", timeout=10)

    assert excinfo.value.status_code == 503
    assert len(messages) == 3


def test_from_config_without_resolution_logging(tmp_path) -> None:
    messages: List[str] = []
    registry = StubRegistry(sink=messages.append)
    registry.register(StubRule.get("/ping"), StubResponse.text("pong"))
    config = StubNetConfig.model_validate({"mock": {"enabled": True, "log_resolution": False}})

    with HTTPClient.from_config(config, registry=registry) as client:
        result = client.fetch("GET", "https://anywhere.test/ping", timeout=10)

    assert result.text == "pong"
    assert messages == []


def test_from_config_honours_fixture_mock_all_requests(tmp_path) -> None:
    fixture = tmp_path / "catch_all.yaml"
    fixture.write_text(
        "mock_all_requests: true\n"
        'stubs:\n  - request: {method: GET, url: "https://api.example.com/known"}\n'
        "    response: {text: known}\n",
        encoding="utf-8",
    )
    config = StubNetConfig.model_validate(
        {"mock": {"enabled": True, "mock_all_requests": False, "fixtures": [str(fixture)]}}
    )

    with HTTPClient.from_config(config, registry=StubRegistry()) as client:
        known = client.fetch("GET", "https://api.example.com/known", timeout=10)
        with pytest.raises(ValidationFailed) as excinfo:
            client.fetch("GET", "https://unlisted.example.com/", timeout=10)

    assert known.text == "known"
    assert excinfo.value.status_code == 400
    assert excinfo.value.response.extensions["stubnet"]["matched"] is False
