"""Unit tests for plugins/registry.py - Provider registration and lookup."""

from typing import Any, Dict
from unittest.mock import MagicMock, patch

import pytest

from plugins.base import ResourceKind
from plugins.providers.gcloud import CloudSQLProvider
from plugins.registry import (
    PluginRegistry,
    get_registry,
    register_builtin_plugins,
    reset_registry,
)

from conftest import FakeDatabaseProvider, FakeServiceProvider

# ==================== Test Plugins ====================


class OtherDatabaseProvider(FakeDatabaseProvider):
    @property
    def name(self) -> str:
        return "other_database"


class BrokenSchemaProvider(FakeServiceProvider):
    @property
    def name(self) -> str:
        return "broken"

    @property
    def schema(self) -> Dict[str, Any]:
        return {"type": "not-a-type"}


# ==================== PluginRegistry Tests ====================


class TestPluginRegistry:
    """Tests for provider registration in PluginRegistry."""

    def test_register_provider_plugin(self):
        """Test registering a provider plugin."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)

        assert registry.list_provider_plugins() == ["fake_database"]
        assert registry.has_provider_for_kind(ResourceKind.DATABASE) is True
        assert registry.has_provider_for_kind(ResourceKind.SERVICE) is False

    def test_provider_info(self):
        """Test provider info is available without initialization."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)

        assert registry.get_provider_info("fake_database") == {
            "name": "fake_database",
            "version": "0.0.1",
            "kind": "database",
        }
        assert registry.get_provider_info("missing") is None

    def test_describe_kind(self):
        """Test describe_kind returns an uninitialized prototype."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)

        prototype = registry.describe_kind(ResourceKind.DATABASE)
        assert isinstance(prototype, FakeDatabaseProvider)
        assert prototype.config == {}
        assert registry.describe_kind(ResourceKind.IMAGE) is None

    def test_kind_conflict_raises(self):
        """Test that two providers cannot claim the same kind."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)

        with pytest.raises(ValueError, match="already claimed"):
            registry.register_provider_plugin(OtherDatabaseProvider)

    def test_reregister_same_provider(self):
        """Test re-registering a provider replaces it."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)
        registry.register_provider_plugin(FakeDatabaseProvider)

        assert registry.list_provider_plugins() == ["fake_database"]

    def test_invalid_schema_raises(self):
        """Test that a provider with an invalid schema is rejected."""
        registry = PluginRegistry()

        with pytest.raises(ValueError, match="invalid schema"):
            registry.register_provider_plugin(BrokenSchemaProvider)
        assert registry.list_provider_plugins() == []

    def test_env_config_loaded_on_register(self, monkeypatch):
        """Test provider config is loaded from the environment."""
        monkeypatch.setenv("GCLOUD_BINARY", "/opt/google/gcloud")
        monkeypatch.setenv("DEPLOYCTL_COMMAND_TIMEOUT", "15")
        registry = PluginRegistry()
        registry.register_provider_plugin(CloudSQLProvider)

        config = registry.get_provider_config("cloud_sql")
        assert config["binary"] == "/opt/google/gcloud"
        assert config["command_timeout"] == 15
        assert registry.get_provider_config("missing") == {}

    def test_restrict_to(self, fake_registry):
        """Test disabling providers not in the enabled list."""
        fake_registry.restrict_to(["fake_database", "fake_service", "unknown"])

        assert fake_registry.list_provider_plugins() == [
            "fake_database",
            "fake_service",
        ]
        assert fake_registry.has_provider_for_kind(ResourceKind.SECRET) is False
        assert fake_registry.describe_kind(ResourceKind.IMAGE) is None


@pytest.mark.asyncio
class TestPluginRegistryAsync:
    """Tests for provider instantiation."""

    async def test_get_provider_initializes_once(self):
        """Test that provider instances are initialized and cached."""
        registry = PluginRegistry()
        registry.register_provider_plugin(FakeDatabaseProvider)

        first = await registry.get_provider("fake_database", {"binary": "x"})
        second = await registry.get_provider("fake_database", {"binary": "y"})

        assert first is second
        assert first.config == {"binary": "x"}

    async def test_get_provider_merges_env_config(self, monkeypatch):
        """Test that call-time config overrides env-loaded config."""
        monkeypatch.setenv("GCLOUD_BINARY", "/opt/google/gcloud")
        registry = PluginRegistry()
        registry.register_provider_plugin(CloudSQLProvider)

        provider = await registry.get_provider(
            "cloud_sql", {"command_timeout": 5, "operation_timeout": 600}
        )

        assert provider.binary == "/opt/google/gcloud"
        assert provider.command_timeout == 5
        assert provider.operation_timeout == 600

    async def test_get_unknown_provider_raises(self):
        """Test that getting an unknown provider raises ValueError."""
        registry = PluginRegistry()

        with pytest.raises(ValueError, match="Unknown provider plugin"):
            await registry.get_provider("nonexistent")

    async def test_get_provider_for_kind(self, fake_registry):
        provider = await fake_registry.get_provider_for_kind(ResourceKind.SERVICE)
        assert isinstance(provider, FakeServiceProvider)

    async def test_get_provider_for_unclaimed_kind_raises(self):
        registry = PluginRegistry()
        with pytest.raises(ValueError, match="No provider registered"):
            await registry.get_provider_for_kind(ResourceKind.SECRET)


# ==================== Global Registry Tests ====================


class TestGlobalRegistry:
    """Tests for the registry singleton and built-in registration."""

    def test_get_registry_singleton(self):
        assert get_registry() is get_registry()

    def test_reset_registry(self):
        first = get_registry()
        reset_registry()
        assert get_registry() is not first

    def test_register_builtin_plugins(self):
        """Test the four gcloud providers claim the four kinds."""
        with patch("plugins.registry.entry_points", return_value=[]):
            registry = register_builtin_plugins()

        assert registry is get_registry()
        assert sorted(registry.list_provider_plugins()) == [
            "artifact_registry",
            "cloud_run",
            "cloud_sql",
            "secret_manager",
        ]
        for kind in ResourceKind:
            assert registry.has_provider_for_kind(kind)

    def test_entry_point_plugins(self):
        """Test entry-point providers are loaded and failures are skipped."""
        conflicting = MagicMock()
        conflicting.name = "other"
        conflicting.load.return_value = OtherDatabaseProvider
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("no module named broken")

        with patch(
            "plugins.registry.entry_points", return_value=[conflicting, broken]
        ) as eps:
            registry = register_builtin_plugins(PluginRegistry())

        eps.assert_called_once_with(group="deployctl.providers")
        conflicting.load.assert_called_once()
        assert "other_database" not in registry.list_provider_plugins()
        assert len(registry.list_provider_plugins()) == 4
