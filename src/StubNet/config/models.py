"""
Pydantic v2 Configuration Models for StubNet

Provides strict, typed configuration for the StubNet subsystems:
- HTTP client settings (timeouts, TLS, worker threads)
- Retry and backoff policy used by the tenacity-backed retrier
- Mock network settings (mock-all mode, fixture files)
- Top-level StubNetConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import hashlib
import json
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = (
    "HttpSettings",
    "MockSettings",
    "RetrySettings",
    "StubNetConfig",
)


class HttpSettings(BaseModel):
    """Configuration for the httpx client used by the default transport."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(default="StubNet/0.1", description="User-Agent string")
    timeout_connect_s: float = Field(default=5.0, description="Connection timeout in seconds")
    timeout_read_s: float = Field(default=30.0, description="Read timeout in seconds")
    timeout_write_s: float = Field(default=30.0, description="Write timeout in seconds")
    timeout_pool_s: float = Field(default=5.0, description="Pool acquisition timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    http2: bool = Field(default=False, description="Negotiate HTTP/2 when h2 is installed")
    max_workers: int = Field(default=8, description="Threads performing transport I/O")

    @field_validator("timeout_connect_s", "timeout_read_s", "timeout_write_s", "timeout_pool_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be >= 1")
        return v


class RetrySettings(BaseModel):
    """Configuration for request retry behavior."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=4, description="Total attempts including the first")
    max_elapsed_s: Optional[float] = Field(
        default=None, description="Stop retrying once this much time has elapsed"
    )
    retry_statuses: List[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="HTTP status codes that trigger retry",
    )
    backoff_multiplier_s: float = Field(default=0.25, description="Exponential backoff multiplier")
    backoff_max_s: float = Field(default=8.0, description="Upper bound for one backoff delay")
    retry_after_cap_s: float = Field(default=60.0, description="Cap applied to Retry-After")
    retry_on_timeout: bool = Field(default=True, description="Retry transport timeouts")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("backoff_multiplier_s", "backoff_max_s", "retry_after_cap_s")
    @classmethod
    def validate_delays(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delay values must be >= 0")
        return v

    @field_validator("retry_statuses")
    @classmethod
    def validate_statuses(cls, v: List[int]) -> List[int]:
        invalid = [code for code in v if code < 100 or code > 599]
        if invalid:
            raise ValueError(f"Invalid HTTP status codes: {invalid}")
        return v


class MockSettings(BaseModel):
    """Configuration for the mock network layer."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Install the mock interceptor")
    mock_all_requests: bool = Field(
        default=False, description="Intercept every request; unmatched ones get HTTP 400"
    )
    fixtures: List[str] = Field(default_factory=list, description="Stub fixture files to load")
    log_resolution: bool = Field(default=True, description="Log every stub resolution at DEBUG")


class StubNetConfig(BaseModel):
    """
    Single source of truth for StubNet configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    http: HttpSettings = Field(default_factory=HttpSettings, description="HTTP client settings")
    retry: RetrySettings = Field(default_factory=RetrySettings, description="Retry policy")
    mock: MockSettings = Field(default_factory=MockSettings, description="Mock network settings")
    log_level: str = Field(default="INFO", description="Logging level for the StubNet logger")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
