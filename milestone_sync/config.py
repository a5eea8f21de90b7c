"""Configuration management for milestone-sync.

Loads configuration from environment variables and an optional YAML file.
Secrets (the store API key) come from environment variables only.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Tuple

import yaml


DEFAULT_SETTLE_DELAYS = (0.0, 0.1, 0.5, 1.5)


def parse_delays(value: str) -> Tuple[float, ...]:
    """Parse a comma separated list of delays in seconds.

    Raises:
        ValueError: If an entry is not a number
    """
    parts = [p.strip() for p in value.split(',') if p.strip()]
    return tuple(float(p) for p in parts)


@dataclass
class StoreConfig:
    """Remote record store configuration."""

    base_url: str = ""
    api_key: str = ""
    timeout_sec: float = 10.0

    # Retry on transient failures
    max_retries: int = 3
    backoff_seconds: list = field(default_factory=lambda: [0.5, 1, 2])

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Load store configuration from environment variables."""
        return cls(
            base_url=os.environ.get("MILESTONE_SYNC_STORE_URL", ""),
            api_key=os.environ.get("MILESTONE_SYNC_API_KEY", ""),
            timeout_sec=float(os.environ.get("MILESTONE_SYNC_TIMEOUT_SEC", "10")),
        )


@dataclass
class CacheConfig:
    """Submission cache configuration."""

    ttl_sec: float = 300.0

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Load cache configuration from environment variables."""
        return cls(
            ttl_sec=float(os.environ.get("MILESTONE_SYNC_CACHE_TTL_SEC", "300")),
        )


@dataclass
class ReconcileConfig:
    """Settle-window cascade configuration."""

    settle_delays: Tuple[float, ...] = DEFAULT_SETTLE_DELAYS

    @classmethod
    def from_env(cls) -> "ReconcileConfig":
        """Load reconciliation configuration from environment variables."""
        raw = os.environ.get("MILESTONE_SYNC_SETTLE_DELAYS")
        return cls(
            settle_delays=parse_delays(raw) if raw else DEFAULT_SETTLE_DELAYS,
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Load logging configuration from environment variables."""
        return cls(
            level=os.environ.get("MILESTONE_SYNC_LOG_LEVEL", "INFO"),
            format=os.environ.get("MILESTONE_SYNC_LOG_FORMAT", "json"),
        )


@dataclass
class Config:
    """Main configuration container."""

    store: StoreConfig
    cache: CacheConfig
    reconcile: ReconcileConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls) -> "Config":
        """Load all configuration from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            cache=CacheConfig.from_env(),
            reconcile=ReconcileConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load configuration from YAML file on top of env-derived values."""
        config_path = Path(path)

        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}

        config = cls.from_env()

        if "store" in yaml_config:
            store = yaml_config["store"]
            config.store.base_url = store.get("base_url", config.store.base_url)
            config.store.timeout_sec = store.get("timeout_sec", config.store.timeout_sec)
            config.store.max_retries = store.get("max_retries", config.store.max_retries)
            config.store.backoff_seconds = store.get(
                "backoff_seconds", config.store.backoff_seconds
            )

        if "cache" in yaml_config:
            config.cache.ttl_sec = yaml_config["cache"].get(
                "ttl_sec", config.cache.ttl_sec
            )

        if "reconcile" in yaml_config:
            delays = yaml_config["reconcile"].get("settle_delays")
            if delays is not None:
                config.reconcile.settle_delays = tuple(float(d) for d in delays)

        if "logging" in yaml_config:
            config.logging.level = yaml_config["logging"].get(
                "level", config.logging.level
            )
            config.logging.format = yaml_config["logging"].get(
                "format", config.logging.format
            )

        return config

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.store.base_url:
            errors.append("MILESTONE_SYNC_STORE_URL is required")

        if self.cache.ttl_sec <= 0:
            errors.append("Cache TTL must be positive")

        delays = self.reconcile.settle_delays
        if not delays:
            errors.append("At least one settle delay is required")
        elif any(d < 0 for d in delays):
            errors.append("Settle delays must not be negative")
        elif any(b <= a for a, b in zip(delays, delays[1:])):
            errors.append("Settle delays must be strictly increasing")

        return errors


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from ``path`` (or MILESTONE_SYNC_CONFIG) if set."""
    path = path or os.environ.get("MILESTONE_SYNC_CONFIG")
    if path:
        return Config.from_yaml(path)
    return Config.from_env()
