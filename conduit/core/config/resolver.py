"""
Configuration resolution.

Each option is resolved independently through the chain:
explicit value -> environment variable -> default. Options without a default
must be resolved by one of the first two steps or a ConfigError is raised.
"""

import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from conduit.core.errors import ConfigError
from conduit.core.models.pipeline_config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_EMPTY_RESULT_POLICY,
    DEFAULT_MAX_IN_FLIGHT,
    DEFAULT_POLL_FREQUENCY,
    DEFAULT_SHUTDOWN_GRACE,
    DEFAULT_VISIBILITY_TIMEOUT,
    PipelineConfig,
)
from conduit.observability.logger import get_logger

logger = get_logger(__name__)

# Marker for options that have no default value
REQUIRED = object()


@dataclass(frozen=True)
class ConfigOption:
    """A recognised option: its environment variable, parser and default."""

    name: str
    env_var: str
    parse: Callable[[str], Any] = str
    default: Any = REQUIRED


OPTIONS: tuple[ConfigOption, ...] = (
    ConfigOption("batch_size", "CONDUIT_BATCH_SIZE", int, DEFAULT_BATCH_SIZE),
    ConfigOption("poll_frequency", "CONDUIT_POLL_FREQUENCY", int, DEFAULT_POLL_FREQUENCY),
    ConfigOption("visibility_timeout", "CONDUIT_VISIBILITY_TIMEOUT", int, DEFAULT_VISIBILITY_TIMEOUT),
    ConfigOption("concurrency", "CONDUIT_CONCURRENCY", int, DEFAULT_CONCURRENCY),
    ConfigOption("queue_url", "CONDUIT_QUEUE_URL"),
    ConfigOption("egress_bucket", "CONDUIT_S3_EGRESS_BUCKET"),
    ConfigOption("max_in_flight", "CONDUIT_MAX_IN_FLIGHT", int, DEFAULT_MAX_IN_FLIGHT),
    ConfigOption("empty_result_policy", "CONDUIT_EMPTY_RESULT_POLICY", str, DEFAULT_EMPTY_RESULT_POLICY),
    ConfigOption("shutdown_grace", "CONDUIT_SHUTDOWN_GRACE", float, DEFAULT_SHUTDOWN_GRACE),
    ConfigOption("quarantine_bucket", "CONDUIT_QUARANTINE_BUCKET", str, None),
)

OPTION_NAMES = frozenset(option.name for option in OPTIONS)


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def resolve(
    explicit: Any,
    environment: Optional[str],
    default: Any = REQUIRED,
    parse: Callable[[str], Any] = str,
    name: str = "option",
) -> Any:
    """
    Resolve a single option.

    Args:
        explicit: Caller-supplied value (None or "" means unset)
        environment: Raw environment value (None or "" means unset)
        default: Fallback value, or REQUIRED if the option has none
        parse: Converts the environment string; a ValueError skips the
            environment step
        name: Option name used in error messages

    Returns:
        The resolved value

    Raises:
        ConfigError: If a required option is unresolved

    Examples:
        >>> resolve(5, "7", 10, int)
        5
        >>> resolve(None, "7", 10, int)
        7
        >>> resolve(None, "seven", 10, int)
        10
    """
    if _is_set(explicit):
        return explicit

    if _is_set(environment):
        try:
            return parse(environment.strip())
        except ValueError:
            logger.warning(f"Ignoring unparseable environment value for {name}: {environment!r}")

    if default is REQUIRED:
        raise ConfigError(f"Required option '{name}' is not set")

    return default


def resolve_config(
    explicit: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """
    Resolve every recognised option and build the immutable PipelineConfig.

    Args:
        explicit: Explicit option values keyed by option name
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigError: If an option is unknown, a required option is unresolved,
            or a resolved value fails validation
    """
    explicit = dict(explicit or {})
    environ = os.environ if environ is None else environ

    unknown = set(explicit) - OPTION_NAMES
    if unknown:
        raise ConfigError(f"Unknown configuration options: {', '.join(sorted(unknown))}")

    values = {
        option.name: resolve(
            explicit.get(option.name),
            environ.get(option.env_var),
            option.default,
            option.parse,
            option.name,
        )
        for option in OPTIONS
    }

    try:
        config = PipelineConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug("Resolved configuration", extra={"config": config.model_dump()})
    return config
