"""
Budget service configuration.

Settings come from two places:

- config/.env.<ENVIRONMENT>  secrets and endpoints (DATABASE_URL, ALERT_* targets)
- config/config.yaml         tunables; the `base` section deep-merged with the
                             section named after ENVIRONMENT

ENVIRONMENT is one of development (default), test or production. Missing
files and missing or placeholder variables fail fast with ConfigurationError
or FileNotFoundError. The startup summary logs whether each endpoint is
configured, never its value.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from budget_service.utils.retry_logic import RetryPolicy

logger = logging.getLogger(__name__)

VALID_ENVIRONMENTS = ["development", "production", "test"]
VALID_TRANSPORTS = ["sns", "webhook"]

# Values copied verbatim from .env.template
PLACEHOLDER_PREFIX = "your-"
PLACEHOLDER_SUFFIX = "-here"


class ConfigurationError(Exception):
    """Configuration is missing or holds an unusable value."""


def get_project_root() -> Path:
    """Repository root; config/ lives directly below it."""
    return Path(__file__).parent.parent


def _read_yaml_sections(config_file: Path, environment: str) -> dict[str, Any]:
    if not config_file.exists():
        raise FileNotFoundError(f"Budget config not found: {config_file}")

    with open(config_file, "r") as f:
        sections = yaml.safe_load(f) or {}

    return _deep_merge(sections.get("base", {}), sections.get(environment) or {})


def load_environment() -> dict[str, Any]:
    """
    Load .env.<ENVIRONMENT> into os.environ and return the merged YAML settings.

    Returns:
        Merged settings with an added "environment" key

    Raises:
        ConfigurationError: Unknown ENVIRONMENT, bad transport or missing variables
        FileNotFoundError: The .env file or config.yaml is absent
        yaml.YAMLError: config.yaml does not parse

    Example:
        >>> load_environment()["alerts"]["cooldown_hours"]
        24
    """
    environment = os.getenv("ENVIRONMENT", "development")
    if environment not in VALID_ENVIRONMENTS:
        raise ConfigurationError(
            f"Invalid ENVIRONMENT '{environment}' (expected {' | '.join(VALID_ENVIRONMENTS)})"
        )

    config_dir = get_project_root() / "config"
    env_file = config_dir / f".env.{environment}"
    if not env_file.exists():
        raise FileNotFoundError(
            f"No {env_file.name} in {config_dir}; copy .env.template and fill in the values"
        )
    load_dotenv(env_file)

    settings = _read_yaml_sections(config_dir / "config.yaml", environment)
    settings["environment"] = environment
    logger.info(f"Budget config loaded: environment={environment}, env_file={env_file.name}")

    _validate_required_variables(environment, settings)
    _log_environment_details(environment, settings)
    return settings


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base; nested dicts merge, other values replace."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _required_variables(config: dict[str, Any]) -> list[str]:
    transport = config.get("alerts", {}).get("transport", "sns")
    if transport not in VALID_TRANSPORTS:
        raise ConfigurationError(
            f"Invalid alerts.transport '{transport}' (expected {' | '.join(VALID_TRANSPORTS)})"
        )

    topic_var = "ALERT_TOPIC_ARN" if transport == "sns" else "ALERT_WEBHOOK_URL"
    return ["DATABASE_URL", topic_var, "ALERT_DLQ_ARN"]


def _is_unset(value: str | None) -> bool:
    return (
        not value
        or value.startswith(PLACEHOLDER_PREFIX)
        or value.endswith(PLACEHOLDER_SUFFIX)
    )


def _validate_required_variables(environment: str, config: dict[str, Any]) -> None:
    """
    Fail if any variable the configured transport needs is unset or a placeholder.

    Raises:
        ConfigurationError: Listing every missing variable
    """
    missing = [var for var in _required_variables(config) if _is_unset(os.getenv(var))]
    if missing:
        raise ConfigurationError(
            f"config/.env.{environment} is missing: {', '.join(missing)}"
        )


def _log_environment_details(environment: str, config: dict[str, Any]) -> None:
    alerts = config.get("alerts", {})
    endpoints = {
        var: "configured" if os.getenv(var) else "missing"
        for var in ("DATABASE_URL", "ALERT_DLQ_ARN")
    }
    logger.info(
        f"Budget service settings: environment={environment}, "
        f"log_level={config.get('logging', {}).get('level', 'INFO')}, "
        f"transport={alerts.get('transport', 'sns')}, "
        f"cooldown_hours={alerts.get('cooldown_hours', 24)}, "
        f"database={endpoints['DATABASE_URL']}, dead_letter={endpoints['ALERT_DLQ_ARN']}"
    )


# Cached by get_config(); tests replace it directly
_config: dict[str, Any] | None = None


def get_config() -> dict[str, Any]:
    """Merged settings, loaded on first call and cached for the process."""
    global _config
    if _config is None:
        _config = load_environment()
    return _config


def get_database_url() -> str:
    """
    DATABASE_URL from the environment.

    Raises:
        ConfigurationError: If it is not set
    """
    dsn = os.getenv("DATABASE_URL")
    if not dsn:
        raise ConfigurationError("DATABASE_URL is not set; call load_environment() or export it")
    return dsn


def _positive_number(section: dict[str, Any], key: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{key} must be > 0, got {value}")
    return value


def get_alert_cooldown() -> timedelta:
    """
    Get the minimum time between two alerts for the same budget.

    Returns:
        Cooldown window (default 24 hours)
    """
    alerts = get_config().get("alerts", {})
    return timedelta(hours=_positive_number(alerts, "cooldown_hours", 24))


def get_retry_policy() -> RetryPolicy:
    """
    Get the publish retry policy from alerts.retry.

    Defaults: 3 attempts, 1s base delay, multiplier 2, 5s cap, no jitter.
    """
    retry = get_config().get("alerts", {}).get("retry", {})
    try:
        return RetryPolicy(
            max_attempts=int(retry.get("max_attempts", 3)),
            base_delay=float(retry.get("base_delay_seconds", 1.0)),
            multiplier=float(retry.get("multiplier", 2.0)),
            max_delay=float(retry.get("max_delay_seconds", 5.0)),
            jitter=bool(retry.get("jitter", False)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid alerts.retry configuration: {e}") from e


def get_publish_settings() -> dict[str, Any]:
    """
    Get pub/sub transport settings.

    Returns:
        Dict with transport, topic (ARN or URL), dead_letter_target,
        region and timeout (seconds per publish attempt).

    Raises:
        ConfigurationError: If the transport target is not configured
    """
    alerts = get_config().get("alerts", {})
    transport = alerts.get("transport", "sns")
    topic_var = "ALERT_TOPIC_ARN" if transport == "sns" else "ALERT_WEBHOOK_URL"
    topic = os.getenv(topic_var)
    dead_letter_target = os.getenv("ALERT_DLQ_ARN")

    if not topic or not dead_letter_target:
        raise ConfigurationError(
            f"{topic_var} and ALERT_DLQ_ARN must be set for the '{transport}' transport"
        )

    return {
        "transport": transport,
        "topic": topic,
        "dead_letter_target": dead_letter_target,
        "region": os.getenv("AWS_REGION", alerts.get("aws_region", "us-east-1")),
        "timeout": _positive_number(alerts, "publish_timeout_seconds", 5.0),
    }


def get_store_timeout() -> float:
    """
    Seconds a single store call may take before it fails as transient.

    The value must exceed the worst case the database side can still commit
    in: statement_timeout_ms plus the pool's connection_timeout.

    Raises:
        ConfigurationError: If call_timeout_seconds is not above that bound
    """
    store = get_config().get("store", {})
    timeout = _positive_number(store, "call_timeout_seconds", 12.0)

    floor = get_statement_timeout_ms() / 1000 + get_pool_settings()["connection_timeout"]
    if timeout <= floor:
        raise ConfigurationError(
            f"store.call_timeout_seconds ({timeout}) must exceed "
            f"statement_timeout_ms + pool connection_timeout ({floor}s)"
        )
    return timeout


def get_statement_timeout_ms() -> int:
    """Server-side statement timeout applied to every budget statement."""
    database = get_config().get("database", {})
    return int(_positive_number(database, "statement_timeout_ms", 5000))


def get_pool_settings() -> dict[str, int]:
    """Connection pool sizing from database.pool."""
    pool = get_config().get("database", {}).get("pool", {})
    return {
        "min_connections": int(pool.get("min_connections", 1)),
        "max_connections": int(pool.get("max_connections", 10)),
        "connection_timeout": int(pool.get("connection_timeout", 5)),
    }
