"""Configuration system for kiosk-resilience.

This module implements the configuration schema using Pydantic for
validation, with support for environment variable resolution and fail-fast
validation with actionable error messages. Defaults match the values the
resilience core uses when constructed without configuration.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from kiosk_resilience.core.retry.policy import RetryConfig
from kiosk_resilience.core.supervisor.restart_policy import RestartPolicy
from kiosk_resilience.errors import ConfigurationError, EnvironmentVariableError
from kiosk_resilience.types import Feed

# Matches ${VARIABLE_NAME} where VARIABLE_NAME holds letters, digits and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")


class SupervisorConfig(BaseModel):
    """Configuration for the kiosk process supervisor.

    Defines the UI command, restart budget, heartbeat and cleanup bounds.
    """

    command: Annotated[
        list[str],
        Field(
            min_length=1,
            description="Command line launching the kiosk UI process",
        ),
    ]
    fullscreen_args: Annotated[
        list[str],
        Field(
            description="Arguments appended to the command while full-screen",
        ),
    ] = ["--kiosk"]
    max_restarts: Annotated[
        int,
        Field(
            ge=0,
            description="Maximum restarts inside one reset window",
        ),
    ] = 5
    restart_delay: Annotated[
        float,
        Field(
            ge=0,
            description="Delay before each restart in seconds",
        ),
    ] = 30.0
    reset_window: Annotated[
        float,
        Field(
            gt=0,
            description="Window after which the restart count resets, in seconds",
        ),
    ] = 300.0
    hang_threshold: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds a stopped UI process may stay stopped before it counts as hung",
        ),
    ] = 15.0
    heartbeat_file: Annotated[
        Path | None,
        Field(
            description="JSON heartbeat file for external watchdogs",
        ),
    ] = None
    heartbeat_interval: Annotated[
        float,
        Field(
            gt=0,
            description="Heartbeat interval in seconds",
        ),
    ] = 30.0
    cleanup_timeout: Annotated[
        float,
        Field(
            gt=0,
            description="Upper bound for hardware cleanup on admin shutdown, in seconds",
        ),
    ] = 10.0

    def to_policy(self) -> RestartPolicy:
        return RestartPolicy(
            max_restarts=self.max_restarts,
            restart_delay=self.restart_delay,
            reset_window=self.reset_window,
        )


class FeedConfig(BaseModel):
    """A single update feed entry."""

    name: Annotated[str, Field(min_length=1, description="Unique feed name")]
    priority: Annotated[int, Field(description="Lower values are preferred")] = 0
    provider: Annotated[
        Literal["generic", "github"],
        Field(description="Update provider kind"),
    ] = "generic"
    url: Annotated[str | None, Field(description="Base URL of a generic feed")] = None
    channel: Annotated[str, Field(min_length=1, description="Release channel of a generic feed")] = "latest"
    owner: Annotated[str | None, Field(description="Repository owner of a github feed")] = None
    repo: Annotated[str | None, Field(description="Repository name of a github feed")] = None
    health_check_url: Annotated[str | None, Field(description="URL probed with HEAD")] = None
    region: Annotated[
        str | None,
        Field(
            pattern=r"^[A-Za-z]{2}$",
            description="ISO 3166 alpha-2 region this feed serves",
        ),
    ] = None

    @field_validator("region", mode="after")
    @classmethod
    def normalize_region(cls, v: str | None) -> str | None:
        return v.upper() if v is not None else None

    @model_validator(mode="after")
    def validate_provider_endpoint(self) -> FeedConfig:
        """Validate that the endpoint fields required by the provider are set.

        Raises:
            ValueError: If a required endpoint field is missing
        """
        if self.provider == "generic" and not self.url:
            msg = f"Feed '{self.name}': generic provider requires 'url'"
            raise ValueError(msg)
        if self.provider == "github" and not (self.owner and self.repo):
            msg = f"Feed '{self.name}': github provider requires 'owner' and 'repo'"
            raise ValueError(msg)
        return self

    def to_feed(self) -> Feed:
        if self.provider == "github":
            endpoint: dict[str, object] = {"owner": self.owner, "repo": self.repo}
        else:
            endpoint = {"url": self.url, "channel": self.channel}
        return Feed(
            name=self.name,
            priority=self.priority,
            endpoint=endpoint,
            health_check_url=self.health_check_url,
            provider=self.provider,
            region=self.region,
        )


class FeedsConfig(BaseModel):
    """Configuration for update feed selection and failover."""

    sources: Annotated[
        list[FeedConfig],
        Field(
            min_length=1,
            description="Configured update feeds",
        ),
    ]
    max_retries: Annotated[
        int,
        Field(
            ge=1,
            description="Consecutive retryable check failures before failover",
        ),
    ] = 3
    retry_delay: Annotated[float, Field(ge=0, description="Same-feed recheck delay in seconds")] = 5.0
    failover_delay: Annotated[float, Field(ge=0, description="Delay before checking a new feed")] = 2.0
    check_timeout: Annotated[float, Field(gt=0, description="Upper bound for one update check")] = 60.0
    health_check_timeout: Annotated[float, Field(gt=0, description="Per-probe timeout")] = 10.0
    initial_check_delay: Annotated[float, Field(ge=0, description="Delay before the first check")] = 30.0
    check_interval: Annotated[float, Field(gt=0, description="Interval between periodic checks")] = 21600.0
    region_lookup_url: Annotated[
        str | None,
        Field(
            description="Country-code lookup endpoint; unset disables the lookup",
        ),
    ] = "https://ipapi.co/country_code/"

    @field_validator("sources", mode="after")
    @classmethod
    def validate_unique_names(cls, v: list[FeedConfig]) -> list[FeedConfig]:
        """Validate feed names are unique.

        Raises:
            ValueError: If two feeds share a name
        """
        seen: set[str] = set()
        for source in v:
            if source.name in seen:
                msg = f"Duplicate feed name: {source.name}"
                raise ValueError(msg)
            seen.add(source.name)
        return v

    def to_feeds(self) -> list[Feed]:
        return [source.to_feed() for source in self.sources]


class RetrySettings(BaseModel):
    """Default retry configuration plus background sweep timing."""

    max_attempts: Annotated[int, Field(ge=1, description="Attempts including the first")] = 3
    base_delay: Annotated[float, Field(ge=0, description="Delay before the first retry")] = 1.0
    max_delay: Annotated[float, Field(ge=0, description="Upper bound for any delay")] = 30.0
    backoff_factor: Annotated[float, Field(ge=1, description="Exponential growth factor")] = 2.0
    sweep_interval: Annotated[float, Field(gt=0, description="Retry queue sweep interval")] = 5.0

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> RetrySettings:
        if self.max_delay < self.base_delay:
            msg = f"max_delay ({self.max_delay}) must not be below base_delay ({self.base_delay})"
            raise ValueError(msg)
        return self

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
        )


class ErrorLogConfig(BaseModel):
    """Error log retention, persistence and remote mirroring."""

    retention_days: Annotated[
        float,
        Field(
            gt=0,
            description="Age after which resolved, non-critical entries are pruned",
        ),
    ] = 7.0
    cleanup_interval: Annotated[float, Field(gt=0, description="Pruning interval in seconds")] = 86400.0
    storage_file: Annotated[Path | None, Field(description="Local JSON persistence file")] = None
    collector_url: Annotated[str | None, Field(description="Remote error collector endpoint")] = None


class NotificationsConfig(BaseModel):
    """Operator notification delivery."""

    webhook_url: Annotated[
        str | None,
        Field(
            description="Webhook receiving operator notifications; unset logs them only",
        ),
    ] = None
    timeout: Annotated[float, Field(gt=0, description="Webhook request timeout")] = 10.0


class ApplicationConfig(BaseModel):
    """Configuration for application-level settings."""

    version: Annotated[str, Field(min_length=1, description="Running application version")] = "0.0.0"
    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    syslog_enabled: Annotated[bool, Field(description="Enable syslog integration")] = True


class MainConfig(BaseModel):
    """Top-level configuration container.

    Sections:
    - supervisor: kiosk process supervision
    - feeds: update feeds and failover
    - retry: default retry configuration
    - error_log: retention and mirroring
    - notifications: operator notification delivery
    - application: version, logging
    """

    supervisor: Annotated[SupervisorConfig, Field(description="Process supervisor configuration")]
    feeds: Annotated[FeedsConfig, Field(description="Update feed configuration")]
    retry: Annotated[RetrySettings, Field(description="Retry configuration")] = RetrySettings()
    error_log: Annotated[ErrorLogConfig, Field(description="Error log configuration")] = ErrorLogConfig()
    notifications: Annotated[
        NotificationsConfig,
        Field(description="Operator notification configuration"),
    ] = NotificationsConfig()
    application: Annotated[ApplicationConfig, Field(description="Application-level configuration")] = (
        ApplicationConfig()
    )


def resolve_env_var(value: str) -> str:
    """Resolve environment variable references in a string value.

    Args:
        value: String potentially containing ${VARIABLE_NAME} references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing

    Examples:
        >>> os.environ["FEED_HOST"] = "updates.example.com"
        >>> resolve_env_var("https://${FEED_HOST}/kiosk/")
        'https://updates.example.com/kiosk/'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the application."
            )
            raise EnvironmentVariableError(msg)
        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def resolve_env_vars(data: object) -> object:
    """Recursively resolve environment variables in YAML data.

    Strings are resolved, mappings and lists are traversed, and every other
    value is returned as-is.

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing
    """
    if isinstance(data, str):
        return resolve_env_var(data)
    if isinstance(data, Mapping):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return {key: resolve_env_vars(value) for key, value in data.items()}  # pyright: ignore[reportUnknownVariableType]
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]  # pyright: ignore[reportUnknownVariableType]
    return data


def format_validation_error(error: ValidationError, config_path: Path) -> str:
    """Format Pydantic validation errors with field-level diagnostics."""
    error_lines = ["Configuration validation failed:", ""]
    for detail in error.errors():
        field_path = " → ".join(str(loc) for loc in detail["loc"]) or "<root>"
        error_lines.append(f"  Field: {field_path}")
        error_lines.append(f"  Error: {detail['msg']}")
        error_lines.append(f"  Type: {detail['type']}")
        error_lines.append("")
    error_lines.append(f"Configuration file: {config_path}")
    error_lines.append("Please fix the above errors and try again.")
    return "\n".join(error_lines)


def load_config(config_path: Path) -> MainConfig:
    """Load and validate the configuration from a YAML file.

    Loads the file, resolves environment variables, and validates against the
    MainConfig schema.

    Args:
        config_path: Path to the configuration YAML file

    Returns:
        Validated MainConfig instance

    Raises:
        ConfigurationError: If the file cannot be loaded, references a missing
            environment variable, or is invalid
    """
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}"
        )
        raise ConfigurationError(msg)

    try:
        resolved_data = resolve_env_vars(raw_data)
    except EnvironmentVariableError as e:
        msg = f"Environment variable resolution failed in: {config_path}\n{e}"
        raise ConfigurationError(msg) from e

    try:
        return MainConfig.model_validate(resolved_data)
    except ValidationError as e:
        raise ConfigurationError(format_validation_error(e, config_path)) from e
