"""
Plan Builder - turns desired specs and observed state into ordered steps.

The plan is a deterministic function of its inputs: steps follow a
topological order of the dependency graph, and ties are broken by
declaration order so that identical inputs always give identical plans.
"""

import heapq
import logging
from typing import Dict, List, Mapping, Optional

from errors import ConfigError, ProbeError
from plugins.base import (
    ObservedState,
    PlanStep,
    ProviderContext,
    ResourceSpec,
    StepAction,
)
from plugins.registry import PluginRegistry
from references import UnresolvedReference, resolve_references

logger = logging.getLogger(__name__)


def topological_order(specs: List[ResourceSpec]) -> List[ResourceSpec]:
    """
    Order specs so that every spec follows all of its dependencies.

    Uses Kahn's algorithm with a priority queue keyed by declaration index:
    among the specs whose dependencies are all placed, the earliest
    declared goes first.

    Raises:
        ConfigError: If a dependency is undeclared or the graph has a cycle.
    """
    index = {spec.name: i for i, spec in enumerate(specs)}
    remaining = {spec.name: 0 for spec in specs}
    dependents: Dict[str, List[str]] = {spec.name: [] for spec in specs}

    for spec in specs:
        for dependency in spec.depends_on:
            if dependency not in index:
                raise ConfigError(
                    f"depends on undeclared resource '{dependency}'",
                    resource=spec.name,
                )
            remaining[spec.name] += 1
            dependents[dependency].append(spec.name)

    ready = [index[name] for name, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    ordered: List[ResourceSpec] = []

    while ready:
        spec = specs[heapq.heappop(ready)]
        ordered.append(spec)
        for dependent in dependents[spec.name]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, index[dependent])

    if len(ordered) != len(specs):
        stuck = sorted((n for n, c in remaining.items() if c > 0), key=index.get)
        raise ConfigError(
            f"dependency cycle among: {', '.join(stuck)}", resource=stuck[0]
        )

    return ordered


class PlanBuilder:
    """Builds a plan by asking each kind's provider for a diff."""

    def __init__(
        self,
        registry: PluginRegistry,
        project: Optional[str],
        region: str,
    ):
        """
        Args:
            registry: Registry whose providers compute diffs
            project: Default project id
            region: Default region
        """
        self.registry = registry
        self.project = project
        self.region = region

    def build(
        self,
        specs: List[ResourceSpec],
        observed: Mapping[str, ObservedState],
    ) -> List[PlanStep]:
        """
        Build the ordered plan.

        Args:
            specs: Desired resources
            observed: ObservedState for every spec

        Returns:
            One PlanStep per spec, dependencies first.

        Raises:
            ProbeError: If any resource's state is unknown (probe error or
                missing observation). No plan is built from unknown state.
            ConfigError: If the dependency graph is invalid.
        """
        unknown: Dict[str, str] = {}
        for spec in specs:
            state = observed.get(spec.name)
            if state is None:
                unknown[spec.name] = "not probed"
            elif state.is_error:
                unknown[spec.name] = state.error
        if unknown:
            details = "; ".join(f"{name} ({why})" for name, why in unknown.items())
            raise ProbeError(
                f"cannot plan with unknown state: {details}",
                resource=next(iter(unknown)) if len(unknown) == 1 else None,
            )

        resources = {spec.name: spec for spec in specs}
        steps = []
        for spec in topological_order(specs):
            step = self._plan_step(spec, observed, resources)
            logger.debug(
                f"Planned {step.action.value} for {spec.name}"
                + (f" ({', '.join(step.changes)})" if step.changes else "")
            )
            steps.append(step)
        return steps

    def _plan_step(
        self,
        spec: ResourceSpec,
        observed: Mapping[str, ObservedState],
        resources: Dict[str, ResourceSpec],
    ) -> PlanStep:
        state = observed[spec.name]
        if state.is_absent:
            return PlanStep(spec=spec, action=StepAction.CREATE)

        # Outputs of dependencies that exist now. Absent dependencies are
        # created by this plan, so their outputs are unknown yet.
        outputs = {
            name: observed[name].attributes
            for name in spec.depends_on
            if observed[name].is_present
        }
        try:
            config = resolve_references(dict(spec.config), outputs)
        except UnresolvedReference as e:
            return PlanStep(
                spec=spec,
                action=StepAction.UPDATE,
                changes=(f"{e.resource}.{e.attribute}",),
            )

        ctx = ProviderContext(
            resource_name=spec.name,
            project=self.project,
            region=self.region,
            config=config,
            dependency_outputs=outputs,
            resources=resources,
        )
        provider = self.registry.describe_kind(spec.kind)
        changes = provider.diff(ctx, state.attributes)
        if changes:
            return PlanStep(spec=spec, action=StepAction.UPDATE, changes=tuple(changes))
        return PlanStep(spec=spec, action=StepAction.SKIP)
