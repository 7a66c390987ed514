"""
Configuration dataclasses for the domain watch system.

This module defines all configuration structures used throughout the system,
including retry behavior, cache lifetimes, the two upstream verdict sources,
the periodic scheduler, persistence and logging. It also provides helpers to
load a configuration from a JSON file or from environment variables (with
optional ``.env`` support).
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

DEFAULT_STATE_FILE = Path.home() / ".domain_watch" / "domains.json"

DEFAULT_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class RetryConfig:
    """Retry behavior of the shared outbound transport."""

    max_retries: int = 3  # Additional attempts after the first one
    retry_delay_seconds: float = 2.0  # Fixed pause after a failed attempt
    jitter_min_seconds: float = 1.0  # Randomized delay before each attempt
    jitter_max_seconds: float = 3.0
    timeout_seconds: float = 15.0


@dataclass
class CacheConfig:
    """Verdict cache lifetimes."""

    ttl_seconds: float = 15 * 60
    unsafe_ttl_seconds: float = 30 * 60  # Confirmed-unsafe full hashes


@dataclass
class ThreatMatchConfig:
    """Hash-prefix threat-matching lookup endpoint."""

    endpoint: str = "https://safebrowsing.googleapis.com/v4/fullHashes:find"
    api_key: Optional[str] = None
    client_id: str = "domain-watch"
    client_version: str = "0.1.0"
    threat_types: list[str] = field(
        default_factory=lambda: [
            "MALWARE",
            "SOCIAL_ENGINEERING",
            "UNWANTED_SOFTWARE",
            "POTENTIALLY_HARMFUL_APPLICATION",
        ]
    )


@dataclass
class BlocklistConfig:
    """Web-based blocklist lookup page."""

    url_template: str = "https://check.spamhaus.org/listed/?domain={domain}"
    not_listed_indicator: str = "not listed"
    headers: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_BROWSER_HEADERS)
    )


@dataclass
class SchedulerConfig:
    """Periodic sweep configuration."""

    interval_seconds: float = 15 * 60
    bootstrap_sweep: bool = True  # Sweep once when the registry first becomes non-empty


@dataclass
class PersistenceConfig:
    """Snapshot storage configuration."""

    state_file_path: Path = DEFAULT_STATE_FILE
    hmac_secret: str = "default-secret-change-me"
    enabled: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    threat_match: ThreatMatchConfig = field(default_factory=ThreatMatchConfig)
    blocklist: BlocklistConfig = field(default_factory=BlocklistConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def create_default_config(
    state_file: Optional[Path] = None,
    hmac_secret: Optional[str] = None,
    api_key: Optional[str] = None,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        state_file: Path to the snapshot file
        hmac_secret: Secret for snapshot HMAC protection
        api_key: API key for the threat-matching endpoint

    Returns:
        SystemConfig with default settings
    """
    config = SystemConfig()
    if state_file is not None:
        config.persistence.state_file_path = state_file
    if hmac_secret is not None:
        config.persistence.hmac_secret = hmac_secret
    if api_key is not None:
        config.threat_match.api_key = api_key
    return config


def config_from_dict(data: dict) -> SystemConfig:
    """
    Build a SystemConfig from a parsed JSON document.

    Missing sections and keys fall back to their defaults.

    Raises:
        ConfigurationError: If a section has the wrong type
    """
    try:
        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_retries=int(retry_data.get("max_retries", 3)),
            retry_delay_seconds=float(retry_data.get("retry_delay_seconds", 2.0)),
            jitter_min_seconds=float(retry_data.get("jitter_min_seconds", 1.0)),
            jitter_max_seconds=float(retry_data.get("jitter_max_seconds", 3.0)),
            timeout_seconds=float(retry_data.get("timeout_seconds", 15.0)),
        )

        cache_data = data.get("cache", {})
        cache = CacheConfig(
            ttl_seconds=float(cache_data.get("ttl_seconds", 15 * 60)),
            unsafe_ttl_seconds=float(cache_data.get("unsafe_ttl_seconds", 30 * 60)),
        )

        threat_data = data.get("threat_match", {})
        threat_match = ThreatMatchConfig()
        threat_match.endpoint = threat_data.get("endpoint", threat_match.endpoint)
        threat_match.api_key = threat_data.get("api_key", threat_match.api_key)
        threat_match.client_id = threat_data.get("client_id", threat_match.client_id)
        threat_match.client_version = threat_data.get(
            "client_version", threat_match.client_version
        )
        if "threat_types" in threat_data:
            threat_match.threat_types = list(threat_data["threat_types"])

        blocklist_data = data.get("blocklist", {})
        blocklist = BlocklistConfig()
        blocklist.url_template = blocklist_data.get("url_template", blocklist.url_template)
        blocklist.not_listed_indicator = blocklist_data.get(
            "not_listed_indicator", blocklist.not_listed_indicator
        )
        if "headers" in blocklist_data:
            blocklist.headers = dict(blocklist_data["headers"])

        scheduler_data = data.get("scheduler", {})
        scheduler = SchedulerConfig(
            interval_seconds=float(scheduler_data.get("interval_seconds", 15 * 60)),
            bootstrap_sweep=bool(scheduler_data.get("bootstrap_sweep", True)),
        )

        persistence_data = data.get("persistence", {})
        state_file_path = persistence_data.get("state_file_path")
        persistence = PersistenceConfig(
            state_file_path=Path(state_file_path) if state_file_path else DEFAULT_STATE_FILE,
            hmac_secret=persistence_data.get("hmac_secret", "default-secret-change-me"),
            enabled=bool(persistence_data.get("enabled", True)),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigurationError(
            code="invalid_config",
            message=f"Invalid configuration: {e}",
        ) from e

    return SystemConfig(
        retry=retry,
        cache=cache,
        threat_match=threat_match,
        blocklist=blocklist,
        scheduler=scheduler,
        persistence=persistence,
        logging=logging_config,
    )


def config_to_dict(config: SystemConfig) -> dict:
    """Serialize a SystemConfig into a JSON-compatible dictionary."""
    return {
        "retry": {
            "max_retries": config.retry.max_retries,
            "retry_delay_seconds": config.retry.retry_delay_seconds,
            "jitter_min_seconds": config.retry.jitter_min_seconds,
            "jitter_max_seconds": config.retry.jitter_max_seconds,
            "timeout_seconds": config.retry.timeout_seconds,
        },
        "cache": {
            "ttl_seconds": config.cache.ttl_seconds,
            "unsafe_ttl_seconds": config.cache.unsafe_ttl_seconds,
        },
        "threat_match": {
            "endpoint": config.threat_match.endpoint,
            "api_key": config.threat_match.api_key,
            "client_id": config.threat_match.client_id,
            "client_version": config.threat_match.client_version,
            "threat_types": list(config.threat_match.threat_types),
        },
        "blocklist": {
            "url_template": config.blocklist.url_template,
            "not_listed_indicator": config.blocklist.not_listed_indicator,
            "headers": dict(config.blocklist.headers),
        },
        "scheduler": {
            "interval_seconds": config.scheduler.interval_seconds,
            "bootstrap_sweep": config.scheduler.bootstrap_sweep,
        },
        "persistence": {
            "state_file_path": str(config.persistence.state_file_path),
            "hmac_secret": config.persistence.hmac_secret,
            "enabled": config.persistence.enabled,
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
        },
    }


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        The loaded SystemConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            code="not_found",
            message=f"Configuration file not found: {config_path}",
            details={"path": str(config_path)},
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            code="unreadable",
            message=f"Could not read configuration: {e}",
            details={"path": str(config_path)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            code="invalid_config",
            message="Configuration root must be a JSON object",
            details={"path": str(config_path)},
        )
    return config_from_dict(data)


def save_config_to_file(config: SystemConfig, config_path: Path) -> None:
    """
    Save configuration to a JSON file.

    Raises:
        ConfigurationError: If the file cannot be written
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ConfigurationError(
            code="unwritable",
            message=f"Could not write configuration: {e}",
            details={"path": str(config_path)},
        ) from e


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def load_config_from_env(
    dotenv_path: Optional[Path] = None,
    base: Optional[SystemConfig] = None,
) -> SystemConfig:
    """
    Apply ``DOMAIN_WATCH_*`` environment variables on top of a configuration.

    A ``.env`` file is loaded first (without overriding variables that are
    already set in the process environment).

    Recognized variables:
        DOMAIN_WATCH_API_KEY, DOMAIN_WATCH_THREAT_ENDPOINT,
        DOMAIN_WATCH_BLOCKLIST_URL, DOMAIN_WATCH_INTERVAL_SECONDS,
        DOMAIN_WATCH_STATE_FILE, DOMAIN_WATCH_HMAC_SECRET, DOMAIN_WATCH_LOG_LEVEL

    Args:
        dotenv_path: Optional explicit path of the .env file
        base: Configuration to start from (defaults to create_default_config())

    Returns:
        The resulting SystemConfig
    """
    load_dotenv(dotenv_path=dotenv_path)
    config = base or create_default_config()

    api_key = os.getenv("DOMAIN_WATCH_API_KEY", "").strip()
    if api_key:
        config.threat_match.api_key = api_key

    endpoint = os.getenv("DOMAIN_WATCH_THREAT_ENDPOINT", "").strip()
    if endpoint:
        config.threat_match.endpoint = endpoint

    blocklist_url = os.getenv("DOMAIN_WATCH_BLOCKLIST_URL", "").strip()
    if blocklist_url:
        config.blocklist.url_template = blocklist_url

    config.scheduler.interval_seconds = _float_env(
        "DOMAIN_WATCH_INTERVAL_SECONDS", config.scheduler.interval_seconds
    )

    state_file = os.getenv("DOMAIN_WATCH_STATE_FILE", "").strip()
    if state_file:
        config.persistence.state_file_path = Path(state_file)

    hmac_secret = os.getenv("DOMAIN_WATCH_HMAC_SECRET", "").strip()
    if hmac_secret:
        config.persistence.hmac_secret = hmac_secret

    log_level = os.getenv("DOMAIN_WATCH_LOG_LEVEL", "").strip().lower()
    if log_level:
        config.logging.level = log_level

    return config
