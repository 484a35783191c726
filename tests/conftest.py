"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

import config
from plugins.base import (
    ObservedState,
    ProviderContext,
    ResourceKind,
    ResourceSpec,
    StepAction,
)
from plugins.providers.base import ResourceProvider
from plugins.registry import PluginRegistry, reset_registry

# ==================== Test Helpers ====================


class FakeProvider(ResourceProvider):
    """In-memory provider. Resource attributes live in ``state`` by name."""

    resource_kind = ResourceKind.DATABASE

    def __init__(self):
        self.config: Dict[str, Any] = {}
        self.state: Dict[str, Dict[str, Any]] = {}
        self.probe_errors: Dict[str, Exception] = {}
        self.apply_errors: Dict[str, Exception] = {}
        self.apply_delay: float = 0
        self.applied: List[Tuple[str, StepAction, Dict[str, Any]]] = []
        self.problems: Dict[str, List[str]] = {}

    @property
    def name(self) -> str:
        return f"fake_{self.resource_kind.value}"

    @property
    def version(self) -> str:
        return "0.0.1"

    @property
    def kind(self) -> ResourceKind:
        return self.resource_kind

    @property
    def output_attributes(self) -> List[str]:
        return ["id", "endpoint"]

    async def initialize(self, config: Dict[str, Any]) -> None:
        self.config = config

    async def probe(self, ctx: ProviderContext) -> ObservedState:
        if ctx.resource_name in self.probe_errors:
            raise self.probe_errors[ctx.resource_name]
        if ctx.resource_name in self.state:
            return ObservedState.present(self.state[ctx.resource_name])
        return ObservedState.absent()

    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        return [k for k, v in ctx.config.items() if attributes.get(k) != v]

    async def apply(
        self, ctx: ProviderContext, action: StepAction, observed: ObservedState
    ) -> Dict[str, Any]:
        self.applied.append((ctx.resource_name, action, dict(ctx.config)))
        if self.apply_delay:
            await asyncio.sleep(self.apply_delay)
        if ctx.resource_name in self.apply_errors:
            raise self.apply_errors[ctx.resource_name]
        attributes = dict(ctx.config)
        attributes["id"] = ctx.resource_name
        attributes["endpoint"] = f"https://{ctx.resource_name}.example.com"
        self.state[ctx.resource_name] = attributes
        return attributes

    def readiness_problems(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> List[str]:
        return list(self.problems.get(ctx.resource_name, []))


class FakeDatabaseProvider(FakeProvider):
    resource_kind = ResourceKind.DATABASE


class FakeSecretProvider(FakeProvider):
    resource_kind = ResourceKind.SECRET


class FakeImageProvider(FakeProvider):
    resource_kind = ResourceKind.IMAGE


class FakeServiceProvider(FakeProvider):
    resource_kind = ResourceKind.SERVICE

    def health_url(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> Optional[str]:
        if not attributes.get("endpoint"):
            return None
        return attributes["endpoint"] + ctx.config.get("health_path", "/")


FAKE_PROVIDERS = (
    FakeDatabaseProvider,
    FakeSecretProvider,
    FakeImageProvider,
    FakeServiceProvider,
)


def make_spec(
    name: str,
    kind: ResourceKind,
    config: Optional[Dict[str, Any]] = None,
    depends_on: Tuple[str, ...] = (),
) -> ResourceSpec:
    return ResourceSpec(
        name=name, kind=kind, config=config or {}, depends_on=tuple(depends_on)
    )


# ==================== Fixtures ====================


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the config and registry singletons around every test."""
    config.reset_config()
    reset_registry()
    yield
    config.reset_config()
    reset_registry()


@pytest.fixture
def fake_registry():
    """A registry holding the in-memory fake providers."""
    registry = PluginRegistry()
    for plugin_class in FAKE_PROVIDERS:
        registry.register_provider_plugin(plugin_class)
    return registry


@pytest_asyncio.fixture
async def fakes(fake_registry) -> Dict[ResourceKind, FakeProvider]:
    """The initialized fake provider instances, keyed by kind."""
    return {
        kind: await fake_registry.get_provider_for_kind(kind)
        for kind in (
            ResourceKind.DATABASE,
            ResourceKind.SECRET,
            ResourceKind.IMAGE,
            ResourceKind.SERVICE,
        )
    }


@pytest.fixture
def runbook_specs() -> List[ResourceSpec]:
    """A database, a secret and a service that depends on both."""
    return [
        make_spec("db", ResourceKind.DATABASE, {"tier": "small"}),
        make_spec("secret", ResourceKind.SECRET, {"value": "s3cret"}),
        make_spec(
            "app",
            ResourceKind.SERVICE,
            {"image": "app:1", "database": "{{ db.endpoint }}"},
            depends_on=("db", "secret"),
        ),
    ]


@pytest.fixture
def converged_state() -> Dict[str, Dict[str, Any]]:
    """Attributes of the runbook resources once they match their specs."""
    return {
        "db": {"tier": "small", "id": "db", "endpoint": "https://db.example.com"},
        "secret": {"value": "s3cret", "id": "secret", "endpoint": None},
        "app": {
            "image": "app:1",
            "database": "https://db.example.com",
            "id": "app",
            "endpoint": "https://app.example.com",
        },
    }


@pytest.fixture
def mock_runner():
    """A GCloudRunner double whose calls are AsyncMocks."""
    runner = MagicMock()
    runner.run = AsyncMock()
    runner.run_json = AsyncMock(return_value=None)
    runner.describe = AsyncMock(return_value=None)
    return runner


@pytest.fixture
def ctx_factory():
    """Build ProviderContexts for provider tests."""

    def _make(
        name: str,
        config: Dict[str, Any],
        dependency_outputs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> ProviderContext:
        return ProviderContext(
            resource_name=name,
            project="my-project",
            region="us-central1",
            config=config,
            dependency_outputs=dependency_outputs or {},
        )

    return _make
