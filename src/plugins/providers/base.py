"""
Provider Plugin Base - Abstract interface for managed resource providers.

A provider owns one resource kind. It probes the external system for the
current state of a resource, compares that state with the desired config,
and applies creates and updates. Applies must be idempotent: the executor
may run them against a system that is only eventually consistent, and a
failed run is converged by running it again.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from plugins.base import ObservedState, ProviderContext, ResourceKind, StepAction
from validation import validate_spec_against_schema


class ResourceProvider(ABC):
    """
    Abstract base class for provider plugins.

    Each provider implements a standard interface for validate, probe,
    diff and apply operations on one resource kind.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g., 'cloud_sql')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Provider version string."""
        pass

    @property
    @abstractmethod
    def kind(self) -> ResourceKind:
        """The resource kind this provider manages."""
        pass

    @property
    def schema(self) -> Dict[str, Any]:
        """JSON Schema (Draft 7) that a resource config must satisfy."""
        return {"type": "object"}

    @property
    def output_attributes(self) -> List[str]:
        """Attributes other resources may reference as {{ name.attribute }}."""
        return []

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the provider with configuration.

        Called once when the provider is first requested from the registry.

        Args:
            config: Provider-specific configuration dictionary
        """
        pass

    def validate_spec(self, config: Dict[str, Any]) -> tuple[bool, Optional[str]]:
        """
        Validate that a resource config is valid for this provider.

        Args:
            config: The resource configuration to validate

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is None.
        """
        return validate_spec_against_schema(config, self.schema)

    def references(self, config: Dict[str, Any]) -> List[str]:
        """
        Names of declared resources this config binds to.

        Used in addition to explicit depends_on entries and {{ }} references.

        Args:
            config: The resource configuration

        Returns:
            List of resource names.
        """
        return []

    @abstractmethod
    async def probe(self, ctx: ProviderContext) -> ObservedState:
        """
        Read the current state of the resource. Must not mutate anything.

        Args:
            ctx: The provider context with the resource's config

        Returns:
            ObservedState.absent() or ObservedState.present(attributes).
            Failures are raised, not returned.
        """
        pass

    @abstractmethod
    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        """
        Compare desired config with observed attributes.

        Args:
            ctx: The provider context; ctx.config has references resolved
            attributes: Attributes from a PRESENT ObservedState

        Returns:
            Names of divergent fields. Empty when the resource matches.
        """
        pass

    @abstractmethod
    async def apply(
        self,
        ctx: ProviderContext,
        action: StepAction,
        observed: ObservedState,
    ) -> Dict[str, Any]:
        """
        Create or update the resource so that it matches ctx.config.

        Args:
            ctx: The provider context with the resolved config
            action: StepAction.CREATE or StepAction.UPDATE
            observed: The state observed before planning

        Returns:
            The resource's attributes after the apply (its outputs).
        """
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load provider-specific configuration from environment variables.

        Override this method in subclasses to define how the provider
        loads its configuration from the environment.

        Returns:
            Dictionary of configuration values for this provider.
        """
        return {}

    def health_url(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> Optional[str]:
        """
        URL the verifier should GET to check the resource is serving.

        Returns:
            A URL, or None for resources that do not serve traffic.
        """
        return None

    def readiness_problems(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> List[str]:
        """
        Describe why a present resource is not ready for use.

        Covers the resource's own serving state and its bindings to the
        resources it depends on.

        Args:
            ctx: The provider context; ctx.dependency_outputs holds the
                attributes of the resource's dependencies
            attributes: Attributes from a PRESENT ObservedState

        Returns:
            Human-readable problems. Empty when the resource is ready.
        """
        return []
