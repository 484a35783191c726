"""
Plugin Registry - Discovery and registration of provider plugins.

This module provides the central registry for all providers, handling
discovery, registration, and instantiation.
"""

from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from plugins.base import ResourceKind, logger
from plugins.providers.base import ResourceProvider
from validation import validate_provider_schema


class PluginRegistry:
    """
    Central registry for provider plugins.

    Each resource kind is owned by exactly one provider.
    """

    def __init__(self):
        # Registered plugin classes (not instantiated)
        self._provider_plugins: Dict[str, Type[ResourceProvider]] = {}

        # Registration-time instances, used for schema/reference lookups
        # that need no initialization
        self._provider_prototypes: Dict[str, ResourceProvider] = {}

        # Instantiated and initialized plugin instances
        self._provider_instances: Dict[str, ResourceProvider] = {}

        # Plugin configurations loaded from environment
        self._provider_configs: Dict[str, Dict[str, Any]] = {}

        # Mapping from resource kind to provider name
        self._kind_to_provider: Dict[ResourceKind, str] = {}

    # Registration methods

    def register_provider_plugin(self, plugin_class: Type[ResourceProvider]) -> None:
        """
        Register a provider plugin class.

        Args:
            plugin_class: The ResourceProvider subclass to register

        Raises:
            ValueError: If the provider's schema is invalid, or its kind is
                already claimed by another provider
        """
        temp_instance = plugin_class()
        name = temp_instance.name
        kind = temp_instance.kind

        is_valid, error = validate_provider_schema(temp_instance.schema)
        if not is_valid:
            raise ValueError(f"Provider '{name}' has an invalid schema: {error}")

        existing = self._kind_to_provider.get(kind)
        if existing and existing != name:
            raise ValueError(
                f"Resource kind '{kind.value}' is already claimed by "
                f"provider '{existing}'. Cannot register '{name}'."
            )

        if name in self._provider_plugins:
            logger.warning(f"Overwriting existing provider plugin: {name}")

        self._provider_plugins[name] = plugin_class
        self._provider_prototypes[name] = temp_instance
        self._provider_instances.pop(name, None)
        # Load plugin config from environment
        self._provider_configs[name] = plugin_class.load_config_from_env()
        self._kind_to_provider[kind] = name

        logger.info(
            f"Registered provider plugin: {name} v{temp_instance.version} "
            f"(kind: {kind.value})"
        )

    # Instantiation methods

    async def get_provider(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> ResourceProvider:
        """
        Get an initialized provider instance.

        Args:
            name: The provider name to retrieve
            config: Optional configuration merged over the env-loaded config

        Returns:
            An initialized ResourceProvider instance

        Raises:
            ValueError: If the provider name is not registered
        """
        if name not in self._provider_plugins:
            available = ", ".join(self._provider_plugins.keys()) or "none"
            raise ValueError(
                f"Unknown provider plugin: {name}. Available plugins: {available}"
            )

        if name not in self._provider_instances:
            plugin_config = self.get_provider_config(name)
            plugin_config.update(config or {})
            plugin = self._provider_plugins[name]()
            await plugin.initialize(plugin_config)
            self._provider_instances[name] = plugin
            logger.info(f"Initialized provider plugin: {name}")

        return self._provider_instances[name]

    async def get_provider_for_kind(
        self, kind: ResourceKind, config: Optional[Dict[str, Any]] = None
    ) -> ResourceProvider:
        """
        Get the initialized provider that owns a resource kind.

        Raises:
            ValueError: If no provider handles the kind
        """
        name = self._kind_to_provider.get(kind)
        if name is None:
            raise ValueError(f"No provider registered for kind '{kind.value}'")
        return await self.get_provider(name, config)

    def describe_kind(self, kind: ResourceKind) -> Optional[ResourceProvider]:
        """
        Get the uninitialized provider for a kind.

        Only schema, validation and reference lookups may be used on it.

        Returns:
            A ResourceProvider instance, or None if no provider handles it
        """
        name = self._kind_to_provider.get(kind)
        if name is None:
            return None
        return self._provider_prototypes[name]

    # Discovery methods

    def list_provider_plugins(self) -> List[str]:
        """List all registered provider plugin names."""
        return list(self._provider_plugins.keys())

    def has_provider_for_kind(self, kind: ResourceKind) -> bool:
        """Check if any provider handles the given kind."""
        return kind in self._kind_to_provider

    def get_provider_info(self, name: str) -> Optional[Dict[str, str]]:
        """
        Get information about a registered provider.

        Args:
            name: The provider name

        Returns:
            Dictionary with 'name', 'version' and 'kind', or None if not found
        """
        plugin = self._provider_prototypes.get(name)
        if plugin is None:
            return None
        return {"name": plugin.name, "version": plugin.version, "kind": plugin.kind.value}

    def get_provider_config(self, name: str) -> Dict[str, Any]:
        """
        Get the env-loaded configuration for a provider.

        Args:
            name: The provider name

        Returns:
            A copy of the configuration values, or empty dict if not found
        """
        return dict(self._provider_configs.get(name, {}))

    def restrict_to(self, enabled: List[str]) -> None:
        """
        Unregister every provider not in ``enabled``.

        Args:
            enabled: Provider names to keep. Unknown names are logged.
        """
        for name in enabled:
            if name not in self._provider_plugins:
                logger.warning(f"Provider plugin '{name}' not found, skipping")
        for name in list(self._provider_plugins):
            if name in enabled:
                continue
            kind = self._provider_prototypes[name].kind
            del self._provider_plugins[name]
            del self._provider_prototypes[name]
            self._provider_instances.pop(name, None)
            self._provider_configs.pop(name, None)
            if self._kind_to_provider.get(kind) == name:
                del self._kind_to_provider[kind]
            logger.info(f"Disabled provider plugin: {name}")


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins(registry: Optional[PluginRegistry] = None) -> PluginRegistry:
    """
    Register the built-in gcloud providers and discover third-party
    providers via entry points.

    Entry-point providers are registered after the built-ins, so a
    third-party provider for an already claimed kind is rejected.

    Returns:
        The registry the plugins were registered in.
    """
    registry = registry or get_registry()

    from plugins.providers.gcloud import (
        ArtifactRegistryImageProvider,
        CloudRunProvider,
        CloudSQLProvider,
        SecretManagerProvider,
    )

    for plugin_class in (
        CloudSQLProvider,
        SecretManagerProvider,
        ArtifactRegistryImageProvider,
        CloudRunProvider,
    ):
        registry.register_provider_plugin(plugin_class)

    # Discover and register provider plugins via entry points
    for ep in entry_points(group="deployctl.providers"):
        try:
            registry.register_provider_plugin(ep.load())
        except Exception as e:
            logger.warning(f"Could not load provider plugin {ep.name}: {e}")

    return registry
