"""Unit tests for config.py - Configuration management."""

import os
from unittest.mock import patch

import pytest

import config
from config import (
    Config,
    GCloudConfig,
    LoggingConfig,
    PluginConfig,
    ReconcileConfig,
    get_config,
    load_config,
    reset_config,
)
from errors import ConfigError, ExitCode


class TestGCloudConfig:
    """Tests for GCloudConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = GCloudConfig()
        assert cfg.project is None
        assert cfg.region == "us-central1"
        assert cfg.binary == "gcloud"
        assert cfg.command_timeout == 60

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "GCLOUD_PROJECT": "my-project",
            "GCLOUD_REGION": "europe-west1",
            "GCLOUD_BINARY": "/opt/google-cloud-sdk/bin/gcloud",
            "DEPLOYCTL_COMMAND_TIMEOUT": "90",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = GCloudConfig.from_env()
            assert cfg.project == "my-project"
            assert cfg.region == "europe-west1"
            assert cfg.binary == "/opt/google-cloud-sdk/bin/gcloud"
            assert cfg.command_timeout == 90

    def test_from_env_empty_project_is_none(self):
        """An empty GCLOUD_PROJECT counts as unset."""
        with patch.dict(os.environ, {"GCLOUD_PROJECT": ""}, clear=False):
            assert GCloudConfig.from_env().project is None

    def test_from_env_invalid_timeout(self):
        """A non-numeric timeout is a ConfigError."""
        with patch.dict(os.environ, {"DEPLOYCTL_COMMAND_TIMEOUT": "soon"}, clear=False):
            with pytest.raises(ConfigError) as exc_info:
                GCloudConfig.from_env()
        assert "DEPLOYCTL_COMMAND_TIMEOUT" in str(exc_info.value)
        assert exc_info.value.exit_code == ExitCode.CONFIG_ERROR


class TestReconcileConfig:
    """Tests for ReconcileConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = ReconcileConfig()
        assert cfg.step_timeout == 1800
        assert cfg.probe_timeout == 120
        assert cfg.max_concurrent_probes == 4
        assert cfg.verify_timeout == 30
        assert cfg.verify_attempts == 3
        assert cfg.verify_interval == 5.0

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "DEPLOYCTL_STEP_TIMEOUT": "600",
            "DEPLOYCTL_PROBE_TIMEOUT": "30",
            "DEPLOYCTL_MAX_CONCURRENT_PROBES": "8",
            "DEPLOYCTL_VERIFY_TIMEOUT": "10",
            "DEPLOYCTL_VERIFY_ATTEMPTS": "5",
            "DEPLOYCTL_VERIFY_INTERVAL": "0.5",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = ReconcileConfig.from_env()
            assert cfg.step_timeout == 600
            assert cfg.probe_timeout == 30
            assert cfg.max_concurrent_probes == 8
            assert cfg.verify_timeout == 10
            assert cfg.verify_attempts == 5
            assert cfg.verify_interval == 0.5

    def test_zero_concurrency_rejected(self):
        """Probe concurrency must be at least one."""
        with patch.dict(
            os.environ, {"DEPLOYCTL_MAX_CONCURRENT_PROBES": "0"}, clear=False
        ):
            with pytest.raises(ConfigError):
                ReconcileConfig.from_env()

    def test_zero_verify_attempts_rejected(self):
        """At least one verification attempt is required."""
        with patch.dict(os.environ, {"DEPLOYCTL_VERIFY_ATTEMPTS": "0"}, clear=False):
            with pytest.raises(ConfigError):
                ReconcileConfig.from_env()

    def test_invalid_interval(self):
        """A non-numeric interval is a ConfigError."""
        with patch.dict(os.environ, {"DEPLOYCTL_VERIFY_INTERVAL": "x"}, clear=False):
            with pytest.raises(ConfigError):
                ReconcileConfig.from_env()


class TestLoggingConfig:
    """Tests for LoggingConfig class."""

    def test_default_values(self):
        assert LoggingConfig().log_level == "INFO"

    def test_from_env_uppercases(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}, clear=False):
            assert LoggingConfig.from_env().log_level == "DEBUG"


class TestPluginConfig:
    """Tests for PluginConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = PluginConfig()
        assert cfg.enabled_provider_plugins == []
        assert cfg.plugin_configs == {}

    def test_from_env_with_enabled_plugins(self):
        """Test loading enabled plugins from environment."""
        with patch.dict(
            os.environ,
            {"ENABLED_PROVIDER_PLUGINS": "cloud_sql, cloud_run,"},
            clear=False,
        ):
            cfg = PluginConfig.from_env()
            assert cfg.enabled_provider_plugins == ["cloud_sql", "cloud_run"]

    def test_from_env_with_plugin_configs(self):
        """Test loading per-provider configs from PLUGIN_CONFIGS."""
        with patch.dict(
            os.environ,
            {"PLUGIN_CONFIGS": '{"cloud_sql": {"operation_timeout": 3600}}'},
            clear=False,
        ):
            cfg = PluginConfig.from_env()
            assert cfg.get_plugin_config("cloud_sql") == {"operation_timeout": 3600}
            assert cfg.get_plugin_config("cloud_run") == {}

    def test_from_env_invalid_json(self):
        """Invalid PLUGIN_CONFIGS JSON is a ConfigError."""
        with patch.dict(os.environ, {"PLUGIN_CONFIGS": "{not json"}, clear=False):
            with pytest.raises(ConfigError):
                PluginConfig.from_env()

    def test_from_env_non_object_json(self):
        """PLUGIN_CONFIGS must be a JSON object."""
        with patch.dict(os.environ, {"PLUGIN_CONFIGS": "[1, 2]"}, clear=False):
            with pytest.raises(ConfigError):
                PluginConfig.from_env()


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        """Test creating default configuration."""
        cfg = Config.default()
        assert isinstance(cfg.gcloud, GCloudConfig)
        assert isinstance(cfg.reconcile, ReconcileConfig)
        assert isinstance(cfg.logging, LoggingConfig)
        assert isinstance(cfg.plugins, PluginConfig)

    def test_from_env(self):
        """Test loading all configuration from environment."""
        with patch.dict(
            os.environ,
            {"GCLOUD_PROJECT": "env-project", "DEPLOYCTL_STEP_TIMEOUT": "60"},
            clear=False,
        ):
            cfg = Config.from_env()
            assert cfg.gcloud.project == "env-project"
            assert cfg.reconcile.step_timeout == 60


class TestConfigSingleton:
    """Tests for configuration singleton functions."""

    def test_load_config_creates_singleton(self):
        """Test that load_config creates a singleton."""
        cfg1 = load_config()
        cfg2 = load_config()
        assert cfg1 is cfg2

    def test_get_config_loads_if_needed(self):
        """Test that get_config loads config if not already loaded."""
        assert config.config is None
        cfg = get_config()
        assert cfg is not None
        assert config.config is cfg

    def test_reset_config(self):
        """Test that reset_config clears the singleton."""
        load_config()
        reset_config()
        assert config.config is None
