"""
Reconciler - one reconciliation pass over a descriptor.

Wires the loader, prober, plan builder, executor and verifier together and
collects everything a pass produced into a RunResult whose exit code the
CLI reports.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import Config
from errors import ApplyError, DeployError, ExitCode, VerificationError
from executor import Executor
from loader import Descriptor, load_resources
from planner import PlanBuilder
from plugins.base import (
    ExecutionResult,
    ObservedState,
    PlanStep,
    StepAction,
    StepOutcome,
)
from plugins.registry import PluginRegistry
from prober import StateProber
from verifier import VerificationReport, Verifier

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Everything one reconciliation pass produced."""

    descriptor: Descriptor
    observed: Dict[str, ObservedState] = field(default_factory=dict)
    steps: List[PlanStep] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)
    reports: List[VerificationReport] = field(default_factory=list)
    error: Optional[DeployError] = None
    cancelled: bool = False

    @property
    def has_changes(self) -> bool:
        return any(step.action is not StepAction.SKIP for step in self.steps)

    @property
    def outputs(self) -> Dict[str, Dict[str, Any]]:
        """Attributes of every resource whose step succeeded."""
        return {r.name: r.outputs for r in self.results if r.succeeded}

    @property
    def exit_code(self) -> ExitCode:
        if self.cancelled:
            return ExitCode.CANCELLED
        if self.error is not None:
            return self.error.exit_code
        return ExitCode.OK


class Reconciler:
    """Runs plan, apply and verify passes against one descriptor."""

    def __init__(
        self,
        config: Config,
        registry: PluginRegistry,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.registry = registry
        self._shutdown_event = shutdown_event or asyncio.Event()

    def load(self, path: Path) -> Descriptor:
        """
        Load a descriptor, using configured defaults for project and region.

        Raises:
            ConfigError: If the descriptor is invalid
        """
        return load_resources(
            path,
            self.registry,
            default_project=self.config.gcloud.project,
            default_region=self.config.gcloud.region,
        )

    async def initialize_providers(self, descriptor: Descriptor) -> None:
        """Initialize the provider of every kind the descriptor uses."""
        for kind in dict.fromkeys(spec.kind for spec in descriptor.resources):
            name = self.registry.describe_kind(kind).name
            provider_config = {
                "binary": self.config.gcloud.binary,
                "command_timeout": self.config.gcloud.command_timeout,
            }
            provider_config.update(self.config.plugins.get_plugin_config(name))
            await self.registry.get_provider(name, provider_config)

    async def plan(self, descriptor: Descriptor) -> RunResult:
        """
        Probe every resource and build the plan.

        Returns:
            A RunResult with observed state and steps. If any probe failed,
            error is a ProbeError and steps is empty.
        """
        result = RunResult(descriptor=descriptor)
        await self.initialize_providers(descriptor)

        logger.info(f"Phase 1: Probing {len(descriptor.resources)} resources")
        reconcile = self.config.reconcile
        prober = StateProber(
            self.registry,
            descriptor.project,
            descriptor.region,
            timeout=reconcile.probe_timeout,
            max_concurrent=reconcile.max_concurrent_probes,
        )
        result.observed = await prober.probe_all(descriptor.resources)

        logger.info("Phase 2: Planning")
        builder = PlanBuilder(self.registry, descriptor.project, descriptor.region)
        try:
            result.steps = builder.build(descriptor.resources, result.observed)
        except DeployError as e:
            logger.error(f"Planning failed: {e}")
            result.error = e
            return result

        if not result.has_changes:
            logger.info("No changes needed, all resources are up to date")
        return result

    async def execute(self, result: RunResult) -> RunResult:
        """
        Apply a plan built by plan().

        Sets error to an ApplyError naming the failed steps, and cancelled
        when the run was aborted before all steps ran.
        """
        descriptor = result.descriptor
        logger.info(f"Phase 3: Applying {len(result.steps)} steps")
        executor = Executor(
            self.registry,
            descriptor.project,
            descriptor.region,
            step_timeout=self.config.reconcile.step_timeout,
            shutdown_event=self._shutdown_event,
        )
        result.results = await executor.execute(result.steps, result.observed)

        result.cancelled = any(
            r.outcome is StepOutcome.CANCELLED for r in result.results
        )
        failed = [r.name for r in result.results if r.outcome is StepOutcome.FAILED]
        if failed:
            result.error = ApplyError(
                f"{len(failed)} step(s) failed: {', '.join(failed)}"
            )
        return result

    async def verify(self, result: RunResult) -> RunResult:
        """
        Verify the descriptor's services, reusing any outputs of the run.

        Sets error to a VerificationError when any service is not healthy.
        """
        descriptor = result.descriptor
        logger.info("Phase 4: Verifying")
        await self.initialize_providers(descriptor)
        reconcile = self.config.reconcile
        verifier = Verifier(
            self.registry,
            descriptor.project,
            descriptor.region,
            timeout=reconcile.verify_timeout,
            attempts=reconcile.verify_attempts,
            interval=reconcile.verify_interval,
            probe_timeout=reconcile.probe_timeout,
        )
        result.reports = await verifier.verify(descriptor.resources, result.outputs)

        unhealthy = [r.name for r in result.reports if not r.healthy]
        if unhealthy:
            result.error = VerificationError(
                f"{len(unhealthy)} service(s) not healthy: {', '.join(unhealthy)}"
            )
        return result

    async def reconcile(self, descriptor: Descriptor, verify: bool = True) -> RunResult:
        """
        Run a full pass: probe, plan, apply and (optionally) verify.

        Verification only runs when every step succeeded.
        """
        result = await self.plan(descriptor)
        if result.error is not None:
            return result

        await self.execute(result)
        if result.error is not None or result.cancelled:
            return result

        if verify:
            await self.verify(result)
        return result
