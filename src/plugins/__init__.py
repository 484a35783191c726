"""
Plugin system for deployctl.

This package provides the shared reconciliation types and the provider
plugin architecture.
"""

from plugins.base import (
    ExecutionResult,
    ObservedState,
    ObservedStatus,
    PlanStep,
    ProviderContext,
    ResourceKind,
    ResourceSpec,
    StepAction,
    StepOutcome,
)
from plugins.providers.base import ResourceProvider
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "ExecutionResult",
    "ObservedState",
    "ObservedStatus",
    "PlanStep",
    "ProviderContext",
    "ResourceKind",
    "ResourceSpec",
    "StepAction",
    "StepOutcome",
    "ResourceProvider",
    "PluginRegistry",
    "get_registry",
]
