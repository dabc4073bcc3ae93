"""
Configuration Loading with File/Env/CLI Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: STUBNET_* prefixed variables override file
3. **CLI level**: programmatic overrides win

Environment variables name a section and a setting of :class:`StubNetConfig`
separated by a double underscore; top-level settings have no section:
  STUBNET_RETRY__MAX_ATTEMPTS=5            →  retry.max_attempts=5
  STUBNET_MOCK__FIXTURES=a.yaml,b.yaml     →  mock.fixtures=["a.yaml", "b.yaml"]
  STUBNET_LOG_LEVEL=debug                  →  log_level="DEBUG"

List settings accept a JSON array or a comma-separated string. Every other
value is handed to pydantic as a string and coerced by the model. Relative
``mock.fixtures`` paths inside a config file are resolved against the
directory of that file.
"""

from __future__ import annotations

import json
import logging
import os
import typing
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel

from .models import StubNetConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "STUBNET_"


def read_structured_file(path: Union[str, Path]) -> dict[str, Any]:
    """
    Read a YAML or JSON document into a dictionary.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed dictionary (empty for an empty YAML document)

    Raises:
        ValueError: If the file cannot be read or parsed, or is not a mapping
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise ValueError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(data, dict):
        raise ValueError(f"Top-level document in {path} must be a mapping")
    return data


def _resolve_fixture_paths(data: dict[str, Any], base_dir: Path) -> None:
    mock = data.get("mock")
    if not isinstance(mock, dict) or not isinstance(mock.get("fixtures"), list):
        return
    mock["fixtures"] = [
        str(base_dir / entry) if isinstance(entry, str) and not Path(entry).is_absolute() else entry
        for entry in mock["fixtures"]
    ]


def _is_list_field(model: type[BaseModel], name: str) -> bool:
    return typing.get_origin(model.model_fields[name].annotation) is list


def _parse_env_value(raw: str, as_list: bool) -> Any:
    if not as_list:
        return raw
    if raw.lstrip().startswith("["):
        try:
            return json.loads(raw)
        except ValueError as e:
            raise ValueError(f"Invalid JSON list {raw!r}: {e}") from e
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_overrides(environ: Mapping[str, str], env_prefix: str) -> dict[str, Any]:
    """Translate ``STUBNET_*`` variables into a nested override dict.

    Variables that do not name a known setting are logged and skipped.
    """
    overrides: dict[str, Any] = {}
    fields = StubNetConfig.model_fields

    for env_key in sorted(environ):
        if not env_key.startswith(env_prefix):
            continue
        section, _, name = env_key[len(env_prefix) :].lower().partition("__")
        field = fields.get(section)
        if field is None:
            _LOGGER.warning("Ignoring unknown StubNet setting %s", env_key)
            continue

        submodel = field.annotation
        if isinstance(submodel, type) and issubclass(submodel, BaseModel):
            if name not in submodel.model_fields:
                _LOGGER.warning("Ignoring unknown StubNet setting %s", env_key)
                continue
            value = _parse_env_value(environ[env_key], _is_list_field(submodel, name))
            overrides.setdefault(section, {})[name] = value
            dotted = f"{section}.{name}"
        elif name:
            _LOGGER.warning("Ignoring unknown StubNet setting %s", env_key)
            continue
        else:
            value = _parse_env_value(environ[env_key], _is_list_field(StubNetConfig, section))
            overrides[section] = value
            dotted = section
        _LOGGER.debug("Environment override: %s → %s = %r", env_key, dotted, value)

    return overrides


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` into ``base`` section by section; ``overrides`` wins."""
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = dict(value) if isinstance(value, Mapping) else value
    return base


def load_config(
    path: Union[str, Path, None] = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> StubNetConfig:
    """
    Load StubNetConfig from file, environment, and CLI with proper precedence.

    **Precedence:** file < environment < CLI

    Args:
        path: Path to YAML/JSON config file (optional)
        env_prefix: Environment variable prefix (default: STUBNET_)
        cli_overrides: Nested overrides, e.g. ``{"retry": {"max_attempts": 2}}``
        environ: Environment mapping to read instead of ``os.environ``

    Returns:
        Validated StubNetConfig instance

    Raises:
        ValueError: If config is invalid or file cannot be read
    """
    data: dict[str, Any] = {}

    if path:
        try:
            data = read_structured_file(path)
        except ValueError as e:
            _LOGGER.error("Failed to load config: %s", e)
            raise
        _resolve_fixture_paths(data, Path(path).resolve().parent)
        _LOGGER.info("Loaded config from %s", path)

    _deep_merge(data, _env_overrides(os.environ if environ is None else environ, env_prefix))
    if cli_overrides:
        _deep_merge(data, cli_overrides)
        _LOGGER.debug("CLI overrides: %r", dict(cli_overrides))

    try:
        config = StubNetConfig.model_validate(data)
    except ValueError as e:
        _LOGGER.error("Configuration validation failed: %s", e)
        raise
    _LOGGER.info("Configuration validated. Config hash: %s...", config.config_hash()[:8])
    return config


def export_config_schema() -> dict[str, Any]:
    """Export the JSON Schema for StubNetConfig."""
    return StubNetConfig.model_json_schema()
