"""
Executor - applies a plan one step at a time.

Steps run strictly in plan order. Outputs of finished steps feed the
{{ resource.attribute }} references of later steps. A step whose dependency
did not succeed is never attempted, and an abort request is honored only
between steps.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from errors import ApplyError
from plugins.base import (
    ExecutionResult,
    ObservedState,
    PlanStep,
    ProviderContext,
    StepAction,
    StepOutcome,
)
from plugins.registry import PluginRegistry
from references import UnresolvedReference, resolve_references

logger = logging.getLogger(__name__)


class Executor:
    """Runs plan steps through their providers."""

    def __init__(
        self,
        registry: PluginRegistry,
        project: Optional[str],
        region: str,
        step_timeout: int = 1800,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.registry = registry
        self.project = project
        self.region = region
        self.step_timeout = step_timeout
        self._shutdown_event = shutdown_event or asyncio.Event()

    async def execute(
        self,
        steps: List[PlanStep],
        observed: Mapping[str, ObservedState],
    ) -> List[ExecutionResult]:
        """
        Execute a plan.

        Args:
            steps: Plan steps in dependency order
            observed: Probed state, used for Skip outputs and as the
                starting point of each apply

        Returns:
            One ExecutionResult per step, in plan order.
        """
        results: Dict[str, ExecutionResult] = {}
        outputs: Dict[str, Dict[str, Any]] = {}
        resources = {step.name: step.spec for step in steps}

        for step in steps:
            if self._shutdown_event.is_set():
                logger.warning(f"Run cancelled before {step.name}")
                result = ExecutionResult(
                    name=step.name,
                    action=step.action,
                    outcome=StepOutcome.CANCELLED,
                    reason="run cancelled before this step",
                )
            else:
                blocked = [
                    name
                    for name in step.depends_on
                    if name in results and not results[name].succeeded
                ]
                if blocked:
                    logger.warning(
                        f"Skipping {step.name}: dependency {', '.join(blocked)} "
                        "did not succeed"
                    )
                    result = ExecutionResult(
                        name=step.name,
                        action=step.action,
                        outcome=StepOutcome.SKIPPED_DEPENDENCY_FAILED,
                        reason=f"dependency failed: {', '.join(blocked)}",
                    )
                else:
                    result = await self._run_step(
                        step, observed.get(step.name), outputs, resources
                    )

            results[step.name] = result
            if result.succeeded:
                outputs[step.name] = result.outputs

        return [results[step.name] for step in steps]

    async def _run_step(
        self,
        step: PlanStep,
        observed: Optional[ObservedState],
        outputs: Dict[str, Dict[str, Any]],
        resources: Dict[str, Any],
    ) -> ExecutionResult:
        observed = observed or ObservedState.absent()

        if step.action is StepAction.SKIP:
            logger.info(f"No changes needed for {step.name}")
            return ExecutionResult(
                name=step.name,
                action=step.action,
                outcome=StepOutcome.SUCCEEDED,
                outputs=dict(observed.attributes),
            )

        logger.info(f"Applying {step.action.value} for {step.name}")
        start_time = time.monotonic()
        try:
            dependency_outputs = {name: outputs[name] for name in step.depends_on}
            ctx = ProviderContext(
                resource_name=step.name,
                project=self.project,
                region=self.region,
                config=resolve_references(dict(step.spec.config), dependency_outputs),
                dependency_outputs=dependency_outputs,
                resources=resources,
            )
            provider = await self.registry.get_provider_for_kind(step.spec.kind)
            step_outputs = await asyncio.wait_for(
                provider.apply(ctx, step.action, observed), self.step_timeout
            )
        except asyncio.TimeoutError:
            error = ApplyError(
                f"timed out after {self.step_timeout}s", resource=step.name
            )
            return self._failed(step, error, start_time)
        except UnresolvedReference as e:
            error = ApplyError(
                f"{{{{ {e.resource}.{e.attribute} }}}} has no value", resource=step.name
            )
            return self._failed(step, error, start_time)
        except ApplyError as e:
            if e.resource is None:
                e.resource = step.name
            return self._failed(step, e, start_time)
        except Exception as e:
            error = ApplyError(str(e), resource=step.name)
            return self._failed(step, error, start_time)

        duration_seconds = time.monotonic() - start_time
        logger.info(
            f"Successfully applied {step.action.value} for {step.name} "
            f"in {duration_seconds:.1f}s"
        )
        return ExecutionResult(
            name=step.name,
            action=step.action,
            outcome=StepOutcome.SUCCEEDED,
            outputs=dict(step_outputs or {}),
            duration_seconds=duration_seconds,
        )

    def _failed(
        self, step: PlanStep, error: ApplyError, start_time: float
    ) -> ExecutionResult:
        logger.error(f"Apply failed: {error}")
        return ExecutionResult(
            name=step.name,
            action=step.action,
            outcome=StepOutcome.FAILED,
            reason=error.message,
            duration_seconds=time.monotonic() - start_time,
        )
