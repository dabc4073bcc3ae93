"""Command line interface for inspecting stub fixtures and configuration.

Provides commands to:
- List the stubs declared in a fixture file
- Resolve a request against a fixture file the way the interceptor would
- Print, validate and export the merged StubNet configuration

Example:
    stubnet stubs list tests/fixtures/stubs.yaml
    stubnet stubs resolve tests/fixtures/stubs.yaml GET "https://x.com/a?q=1"
    stubnet config show -c stubnet.yaml
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import typer

from StubNet.config.loader import export_config_schema, load_config
from StubNet.logging_utils import setup_logging
from StubNet.Stubbing.fixtures import load_stub_fixtures
from StubNet.Stubbing.registry import StubRegistry
from StubNet.Stubbing.rules import IncomingRequest

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="StubNet mock network and request pipeline tools", no_args_is_help=True)
stubs_app = typer.Typer(help="Inspect stub fixture files", no_args_is_help=True)
config_app = typer.Typer(help="Configuration inspection and validation", no_args_is_help=True)
app.add_typer(stubs_app, name="stubs")
app.add_typer(config_app, name="config")


@app.callback()
def _configure(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    setup_logging(level=log_level, json_format=json_logs)


def _load_registry(fixture: str) -> StubRegistry:
    registry = StubRegistry()
    try:
        registry.load_fixtures(fixture)
    except (ValueError, FileNotFoundError) as e:
        typer.secho(f"❌ Error loading fixtures: {e}", fg="red", err=True)
        raise typer.Exit(1)
    return registry


@stubs_app.command("list")
def cmd_stubs_list(
    fixture: str = typer.Argument(..., help="Fixture file (YAML/JSON)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """
    List the stubs declared in a fixture file, in registration order.

    Example:
        stubnet stubs list stubs.yaml
    """
    try:
        fixtures = load_stub_fixtures(fixture)
        stubs = list(fixtures.build_stubs())
    except (ValueError, FileNotFoundError) as e:
        typer.secho(f"❌ Error loading fixtures: {e}", fg="red", err=True)
        raise typer.Exit(1)

    if as_json:
        payload = {
            "mock_all_requests": fixtures.mock_all_requests,
            "stubs": [
                {
                    "rule": str(rule),
                    "query_policy": rule.query_policy.value,
                    "valid": rule.is_valid_for_stubbing,
                    "status_code": response.status_code,
                    "bytes": len(response.body or b""),
                }
                for rule, response in stubs
            ],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    typer.echo(f"mock_all_requests: {fixtures.mock_all_requests}")
    for rule, response in stubs:
        marker = "" if rule.is_valid_for_stubbing else "  (invalid, ignored)"
        typer.echo(f"{rule}  [{rule.query_policy.value}] -> {response.status_code}{marker}")
    typer.echo(f"{len(stubs)} stub(s)")


@stubs_app.command("resolve")
def cmd_stubs_resolve(
    fixture: str = typer.Argument(..., help="Fixture file (YAML/JSON)"),
    method: str = typer.Argument(..., help="HTTP method of the request"),
    url: str = typer.Argument(..., help="Full request URL"),
) -> None:
    """
    Resolve a request against a fixture file.

    Exit code 0 when a stub matches, 1 otherwise.

    Example:
        stubnet stubs resolve stubs.yaml GET https://x.com/a?q=1
    """
    registry = _load_registry(fixture)
    request = IncomingRequest(method=method, url=url)
    match = registry.resolve_match(request)
    if match is None:
        typer.secho(f"No stub matches {request}", fg="yellow", err=True)
        raise typer.Exit(1)
    rule, response = match
    typer.echo(f"{request} -> {rule} ({response.status_code})")
    if response.body:
        typer.echo(response.body.decode("utf-8", errors="replace"))


@config_app.command("show")
def cmd_config_show(
    config_file: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file path (YAML/JSON)",
    ),
) -> None:
    """
    Print merged configuration after precedence application.

    Shows the final configuration after file → environment → CLI precedence.

    Example:
        stubnet config show -c stubnet.yaml
    """
    try:
        cfg = load_config(config_file)
    except ValueError as e:
        typer.secho(f"❌ Error loading config: {e}", fg="red", err=True)
        raise typer.Exit(1)
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))


@config_app.command("validate")
def cmd_config_validate(
    config_file: str = typer.Option(..., "--config", "-c", help="Config file path to validate"),
) -> None:
    """
    Validate configuration file.

    Exit code 0 if valid, 1 if invalid.
    """
    try:
        cfg = load_config(config_file)
    except ValueError as e:
        typer.secho("❌ Config validation failed:", fg="red", err=True)
        typer.secho(f"   {e}", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho("✅ Config is valid", fg="green")
    typer.echo(f"   Config hash: {cfg.config_hash()[:16]}...")


@config_app.command("schema")
def cmd_config_schema() -> None:
    """Print the JSON Schema of the configuration."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


def main() -> None:
    app()


__all__ = ["app", "main"]
