"""Typed configuration for StubNet with file/env/CLI precedence."""

from .loader import export_config_schema, load_config, read_structured_file
from .models import HttpSettings, MockSettings, RetrySettings, StubNetConfig

__all__ = [
    "HttpSettings",
    "MockSettings",
    "RetrySettings",
    "StubNetConfig",
    "export_config_schema",
    "load_config",
    "read_structured_file",
]
