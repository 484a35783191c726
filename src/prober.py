"""
State Prober - reads the current state of every declared resource.

Probes are read-only and independent, so they run concurrently. A failing
probe only marks its own resource as errored.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from plugins.base import ObservedState, ProviderContext, ResourceSpec
from plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class StateProber:
    """Probes resources through their providers."""

    def __init__(
        self,
        registry: PluginRegistry,
        project: Optional[str],
        region: str,
        timeout: int = 120,
        max_concurrent: int = 4,
    ):
        self.registry = registry
        self.project = project
        self.region = region
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def probe_all(self, specs: List[ResourceSpec]) -> Dict[str, ObservedState]:
        """
        Probe every spec.

        Args:
            specs: Resources to probe

        Returns:
            Mapping of resource name to its ObservedState, in spec order.
        """
        resources = {spec.name: spec for spec in specs}
        states = await asyncio.gather(
            *(self.probe(spec, resources) for spec in specs)
        )
        return {spec.name: state for spec, state in zip(specs, states)}

    async def probe(
        self, spec: ResourceSpec, resources: Dict[str, ResourceSpec]
    ) -> ObservedState:
        """Probe one resource, converting any failure into an error state."""
        async with self.semaphore:
            ctx = ProviderContext(
                resource_name=spec.name,
                project=self.project,
                region=self.region,
                config=dict(spec.config),
                resources=resources,
            )
            try:
                provider = await self.registry.get_provider_for_kind(spec.kind)
                state = await asyncio.wait_for(provider.probe(ctx), self.timeout)
            except asyncio.TimeoutError:
                logger.error(f"Probe of {spec.name} timed out after {self.timeout}s")
                return ObservedState.failed(f"probe timed out after {self.timeout}s")
            except Exception as e:
                logger.error(f"Probe of {spec.name} failed: {e}")
                return ObservedState.failed(str(e))

            logger.info(f"Probed {spec.name} ({spec.kind.value}): {state.status.value}")
            return state
