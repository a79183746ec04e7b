"""
Configuration dataclasses for the serdo health-check core.

This module defines the process-level configuration: the at-rest secret,
storage location, probe and lookup timeouts, notification dispatch limits,
scheduler period and logging. Tenant-level settings (WHOIS endpoint,
notification channels, auto-check intervals) live in the tenant document,
see ``serdo.models.Settings``.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ValidationError

DEFAULT_AUTH_SECRET = "serdo_default_secret"
DEFAULT_WHOIS_BASE_URL = "http://whois.of.ci/api"


@dataclass
class SecurityConfig:
    """Process secret and token lifetime."""

    auth_secret: str = DEFAULT_AUTH_SECRET
    token_ttl_seconds: int = 7 * 24 * 3600


@dataclass
class PersistenceConfig:
    """Tenant document storage configuration."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".serdo" / "data")


@dataclass
class ProbeConfig:
    """TCP reachability probe configuration."""

    timeout_seconds: float = 5.0
    fallback_ports: list[int] = field(default_factory=lambda: [80, 443])
    default_ssh_port: int = 22


@dataclass
class WhoisConfig:
    """WHOIS/DNS lookup client configuration."""

    default_base_url: str = DEFAULT_WHOIS_BASE_URL
    timeout_seconds: float = 15.0
    test_timeout_seconds: float = 10.0
    max_concurrency: int = 4


@dataclass
class NotificationConfig:
    """Notification dispatch limits."""

    dispatch_timeout_seconds: float = 30.0
    bark_timeout_seconds: float = 10.0
    smtp_timeout_seconds: float = 15.0


@dataclass
class SchedulerConfig:
    """Background scheduler configuration."""

    tick_seconds: float = 300.0
    enabled: bool = True


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    security: SecurityConfig = field(default_factory=SecurityConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    whois: WhoisConfig = field(default_factory=WhoisConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env(env_file: Optional[Path] = None) -> SystemConfig:
    """
    Build a SystemConfig from ``SERDO_*`` environment variables.

    A ``.env`` file is loaded first (without overriding variables that are
    already set).

    Args:
        env_file: Optional explicit path to a dotenv file

    Returns:
        SystemConfig populated from the environment
    """
    load_dotenv(dotenv_path=env_file)

    data_dir = os.getenv("SERDO_DATA_DIR")
    return SystemConfig(
        security=SecurityConfig(
            auth_secret=os.getenv("SERDO_AUTH_SECRET", DEFAULT_AUTH_SECRET) or DEFAULT_AUTH_SECRET,
            token_ttl_seconds=_int_env("SERDO_TOKEN_TTL_SECONDS", 7 * 24 * 3600),
        ),
        persistence=PersistenceConfig(
            data_dir=Path(data_dir) if data_dir else Path.home() / ".serdo" / "data",
        ),
        probe=ProbeConfig(
            timeout_seconds=_float_env("SERDO_PROBE_TIMEOUT", 5.0),
        ),
        whois=WhoisConfig(
            default_base_url=os.getenv("SERDO_WHOIS_BASE_URL", DEFAULT_WHOIS_BASE_URL),
            timeout_seconds=_float_env("SERDO_WHOIS_TIMEOUT", 15.0),
            test_timeout_seconds=_float_env("SERDO_WHOIS_TEST_TIMEOUT", 10.0),
            max_concurrency=max(1, _int_env("SERDO_WHOIS_CONCURRENCY", 4)),
        ),
        notifications=NotificationConfig(
            dispatch_timeout_seconds=_float_env("SERDO_NOTIFY_TIMEOUT", 30.0),
        ),
        scheduler=SchedulerConfig(
            tick_seconds=_float_env("SERDO_TICK_SECONDS", 300.0),
            enabled=_bool_env("SERDO_SCHEDULER_ENABLED", True),
        ),
        logging=LoggingConfig(
            level=os.getenv("SERDO_LOG_LEVEL", "info").lower(),
            audit_mode=_bool_env("SERDO_AUDIT_MODE", False),
            audit_signing_key=os.getenv("SERDO_AUDIT_SIGNING_KEY") or None,
            output_format=os.getenv("SERDO_LOG_FORMAT", "text").lower(),
        ),
    )


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file.

    Missing sections fall back to their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig parsed from the file

    Raises:
        ValidationError: If the file cannot be read or parsed
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ValidationError(
            code="config_not_found",
            message=f"Config file not found: {config_path}",
            details={"path": str(config_path)},
        ) from e
    except json.JSONDecodeError as e:
        raise ValidationError(
            code="config_parse_error",
            message=f"Failed to parse config file: {e}",
            details={"path": str(config_path)},
        ) from e

    security_data = data.get("security", {})
    persistence_data = data.get("persistence", {})
    probe_data = data.get("probe", {})
    whois_data = data.get("whois", {})
    notifications_data = data.get("notifications", {})
    scheduler_data = data.get("scheduler", {})
    logging_data = data.get("logging", {})

    data_dir = persistence_data.get("data_dir")

    return SystemConfig(
        security=SecurityConfig(
            auth_secret=security_data.get("auth_secret") or DEFAULT_AUTH_SECRET,
            token_ttl_seconds=security_data.get("token_ttl_seconds", 7 * 24 * 3600),
        ),
        persistence=PersistenceConfig(
            data_dir=Path(data_dir) if data_dir else Path.home() / ".serdo" / "data",
        ),
        probe=ProbeConfig(
            timeout_seconds=probe_data.get("timeout_seconds", 5.0),
            fallback_ports=probe_data.get("fallback_ports", [80, 443]),
            default_ssh_port=probe_data.get("default_ssh_port", 22),
        ),
        whois=WhoisConfig(
            default_base_url=whois_data.get("default_base_url", DEFAULT_WHOIS_BASE_URL),
            timeout_seconds=whois_data.get("timeout_seconds", 15.0),
            test_timeout_seconds=whois_data.get("test_timeout_seconds", 10.0),
            max_concurrency=whois_data.get("max_concurrency", 4),
        ),
        notifications=NotificationConfig(
            dispatch_timeout_seconds=notifications_data.get("dispatch_timeout_seconds", 30.0),
            bark_timeout_seconds=notifications_data.get("bark_timeout_seconds", 10.0),
            smtp_timeout_seconds=notifications_data.get("smtp_timeout_seconds", 15.0),
        ),
        scheduler=SchedulerConfig(
            tick_seconds=scheduler_data.get("tick_seconds", 300.0),
            enabled=scheduler_data.get("enabled", True),
        ),
        logging=LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        ),
    )


def validate_config(config: SystemConfig) -> tuple[list[str], list[str]]:
    """
    Check a configuration for problems.

    Returns:
        Tuple of (errors, warnings)
    """
    errors: list[str] = []
    warnings: list[str] = []

    if config.security.auth_secret == DEFAULT_AUTH_SECRET:
        warnings.append(
            "SERDO_AUTH_SECRET is not set; stored secrets use the built-in default key"
        )
    if config.probe.timeout_seconds <= 0:
        errors.append("probe.timeout_seconds must be positive")
    if config.whois.timeout_seconds <= 0 or config.whois.test_timeout_seconds <= 0:
        errors.append("whois timeouts must be positive")
    if config.whois.max_concurrency < 1:
        errors.append("whois.max_concurrency must be at least 1")
    if config.scheduler.tick_seconds <= 0:
        errors.append("scheduler.tick_seconds must be positive")
    if config.logging.output_format not in ("json", "text", "both"):
        errors.append(f"Invalid logging.output_format: {config.logging.output_format}")
    if config.logging.audit_mode and not config.logging.audit_signing_key:
        errors.append("logging.audit_mode requires logging.audit_signing_key")

    return errors, warnings
