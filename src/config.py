"""
Configuration module for deployctl.

Loads configuration from environment variables.
Supports the plugin-based architecture with provider-specific configuration.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from errors import ConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass
class GCloudConfig:
    """Google Cloud CLI configuration."""

    project: Optional[str] = None
    region: str = "us-central1"
    binary: str = "gcloud"
    command_timeout: int = 60  # seconds per read-only call

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            project=os.getenv("GCLOUD_PROJECT") or None,
            region=os.getenv("GCLOUD_REGION", "us-central1"),
            binary=os.getenv("GCLOUD_BINARY", "gcloud"),
            command_timeout=_env_int("DEPLOYCTL_COMMAND_TIMEOUT", 60),
        )


@dataclass
class ReconcileConfig:
    """Reconciliation pass configuration."""

    step_timeout: int = 1800  # seconds per apply step
    probe_timeout: int = 120  # seconds per probe
    max_concurrent_probes: int = 4

    # Post-run verification
    verify_timeout: int = 30  # seconds per HTTP check
    verify_attempts: int = 3
    verify_interval: float = 5.0  # seconds between attempts

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        cfg = cls(
            step_timeout=_env_int("DEPLOYCTL_STEP_TIMEOUT", 1800),
            probe_timeout=_env_int("DEPLOYCTL_PROBE_TIMEOUT", 120),
            max_concurrent_probes=_env_int("DEPLOYCTL_MAX_CONCURRENT_PROBES", 4),
            verify_timeout=_env_int("DEPLOYCTL_VERIFY_TIMEOUT", 30),
            verify_attempts=_env_int("DEPLOYCTL_VERIFY_ATTEMPTS", 3),
            verify_interval=_env_float("DEPLOYCTL_VERIFY_INTERVAL", 5.0),
        )
        if cfg.max_concurrent_probes < 1:
            raise ConfigError("DEPLOYCTL_MAX_CONCURRENT_PROBES must be at least 1")
        if cfg.verify_attempts < 1:
            raise ConfigError("DEPLOYCTL_VERIFY_ATTEMPTS must be at least 1")
        return cfg


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class PluginConfig:
    """Plugin system configuration."""

    # List of enabled provider names (empty = use all registered providers)
    enabled_provider_plugins: List[str] = field(default_factory=list)

    # Provider-specific configurations keyed by provider name
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_str = os.getenv("ENABLED_PROVIDER_PLUGINS", "")
        enabled = [p.strip() for p in enabled_str.split(",") if p.strip()]

        plugin_configs = {}
        raw = os.getenv("PLUGIN_CONFIGS")
        if raw:
            try:
                plugin_configs = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigError(f"PLUGIN_CONFIGS is not valid JSON: {e}")
            if not isinstance(plugin_configs, dict):
                raise ConfigError("PLUGIN_CONFIGS must be a JSON object")

        return cls(
            enabled_provider_plugins=enabled,
            plugin_configs=plugin_configs,
        )

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        """Get configuration for a specific provider."""
        return self.plugin_configs.get(plugin_name, {})


@dataclass
class Config:
    """Main configuration object."""

    gcloud: GCloudConfig
    reconcile: ReconcileConfig
    logging: LoggingConfig
    plugins: PluginConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            gcloud=GCloudConfig.from_env(),
            reconcile=ReconcileConfig.from_env(),
            logging=LoggingConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            gcloud=GCloudConfig(),
            reconcile=ReconcileConfig(),
            logging=LoggingConfig(),
            plugins=PluginConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
