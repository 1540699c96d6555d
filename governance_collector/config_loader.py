"""
YAML Configuration Loader

Loads the collector configuration from a YAML file, validates it, and applies
a closed whitelist of environment variable overrides.

Usage:
    from governance_collector.config_loader import load_config

    config = load_config()                        # CONFIG_PATH or default path
    config = load_config("config/collector.yml")  # explicit path
    config = load_config(environ={"API_PORT": "4000"})

Path resolution order:
    1. explicit_path argument
    2. CONFIG_PATH environment variable
    3. DEFAULT_CONFIG_PATH

Environment overrides (applied only when set):
    COLLECTION_SCHEDULE -> collection.schedule
    DATABASE_PATH       -> database.path
    API_PORT            -> api.port (integer)
    LOG_LEVEL           -> logging.level
    POSTMAN_RATE_LIMIT  -> postman.rate_limit.requests_per_minute (integer)

Raises:
    ConfigurationError: If the file is missing, unparsable or invalid
"""

import copy
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = "/app/config/governance-collector.yml"

REQUIRED_SECTIONS = ("collection", "database", "api", "postman", "governance", "logging")

WEIGHT_TOLERANCE = 0.001

# minute hour day month weekday, optionally preceded by seconds
CRON_FIELD_COUNTS = (5, 6)

# (environment variable, config path, value type)
ENV_OVERRIDES: tuple[tuple[str, tuple[str, ...], type], ...] = (
    ("COLLECTION_SCHEDULE", ("collection", "schedule"), str),
    ("DATABASE_PATH", ("database", "path"), str),
    ("API_PORT", ("api", "port"), int),
    ("LOG_LEVEL", ("logging", "level"), str),
    ("POSTMAN_RATE_LIMIT", ("postman", "rate_limit", "requests_per_minute"), int),
)


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


def resolve_config_path(explicit_path: str | os.PathLike | None = None, environ: Mapping[str, str] | None = None) -> Path:
    """
    Resolve which configuration file to load.

    Args:
        explicit_path: Path passed by the caller (highest priority)
        environ: Environment snapshot (defaults to os.environ)

    Returns:
        Path to the configuration file
    """
    environ = os.environ if environ is None else environ
    return Path(explicit_path or environ.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH)


def load_config(explicit_path: str | os.PathLike | None = None, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Load, validate and override the collector configuration.

    Args:
        explicit_path: Optional explicit path to the YAML file
        environ: Environment snapshot used for CONFIG_PATH and overrides
                 (defaults to a copy of os.environ)

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: On any failure, wrapping the underlying cause
    """
    environ = dict(os.environ) if environ is None else environ
    config_path = resolve_config_path(explicit_path, environ)

    try:
        if not config_path.is_file():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            config = yaml.safe_load(f)

        validate_config(config)
        config = apply_env_overrides(config, environ)
        validate_schedule(config["collection"]["schedule"])
        return config
    except (ConfigurationError, OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def validate_config(config: Any) -> None:
    """
    Validate required sections, required fields and governance weights.

    Args:
        config: Parsed configuration

    Raises:
        ConfigurationError: Describing the first problem found
    """
    if not isinstance(config, Mapping):
        raise ConfigurationError("Configuration must be a mapping of sections")

    for section in REQUIRED_SECTIONS:
        if config.get(section) is None:
            raise ConfigurationError(f"Missing required configuration section: {section}")
        if not isinstance(config[section], Mapping):
            raise ConfigurationError(f"Configuration section '{section}' must be a mapping")

    if not config["collection"].get("schedule"):
        raise ConfigurationError("Collection schedule is required")

    if not config["database"].get("path"):
        raise ConfigurationError("Database path is required")

    if not config["api"].get("port"):
        raise ConfigurationError("API port is required")

    validate_schedule(config["collection"]["schedule"])
    validate_weights(config["governance"].get("weights"))


def validate_schedule(schedule: Any) -> None:
    """
    Check that a schedule looks like a cron expression.

    Both the five-field form and the six-field form with a leading seconds
    field are accepted.

    Raises:
        ConfigurationError: If the schedule is not a cron expression
    """
    if not isinstance(schedule, str) or len(schedule.split()) not in CRON_FIELD_COUNTS:
        raise ConfigurationError(f"Invalid cron schedule: {schedule}")


def validate_weights(weights: Any) -> float:
    """
    Check that governance weights are numeric and sum to 1.0 (within 0.001).

    Args:
        weights: Mapping of category name to fractional weight

    Returns:
        The computed sum

    Raises:
        ConfigurationError: If weights are missing, non-numeric or do not sum to 1.0
    """
    if not isinstance(weights, Mapping) or not weights:
        raise ConfigurationError("Governance weights are required")

    for category, weight in weights.items():
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ConfigurationError(f"Governance weight for '{category}' must be a number, got {weight!r}")

    total = sum(weights.values())
    # Rounded so boundary sums such as 0.999 are not rejected by float error
    if round(abs(total - 1.0), 9) > WEIGHT_TOLERANCE:
        raise ConfigurationError(f"Governance weights must sum to 1.0, got {total}")

    return total


def apply_env_overrides(config: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Apply whitelisted environment overrides to a copy of the configuration.

    Only the variables in ENV_OVERRIDES are consulted; anything else in the
    environment is ignored.

    Args:
        config: Validated configuration
        environ: Environment snapshot (defaults to os.environ)

    Returns:
        New configuration dictionary with overrides applied

    Raises:
        ConfigurationError: If an integer override is not a base-10 integer
    """
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(dict(config))

    for variable, path, value_type in ENV_OVERRIDES:
        raw = environ.get(variable)
        if not raw:
            continue

        if value_type is int:
            try:
                value: Any = int(raw.strip(), 10)
            except ValueError as e:
                raise ConfigurationError(f"{variable} must be an integer, got {raw!r}") from e
        else:
            value = raw

        target = result
        for key in path[:-1]:
            if not isinstance(target.get(key), dict):
                target[key] = {}
            target = target[key]
        target[path[-1]] = value

    return result
