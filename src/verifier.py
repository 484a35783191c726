"""
Verifier - confirms post-conditions after a run.

Every service is checked for three things: it exists and serves HTTP, its
own configuration is ready (revision ready, secrets bound, database
attached), and the resources it depends on are ready to be used.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp

from plugins.base import ProviderContext, ResourceKind, ResourceSpec
from plugins.registry import PluginRegistry
from references import UnresolvedReference, resolve_references

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Verification result for one service."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


@dataclass
class VerificationReport:
    """Result of verifying one service."""

    name: str
    status: HealthStatus
    reason: Optional[str] = None
    url: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


class Verifier:
    """Checks that services are reachable and bound to their dependencies."""

    def __init__(
        self,
        registry: PluginRegistry,
        project: Optional[str],
        region: str,
        timeout: int = 30,
        attempts: int = 3,
        interval: float = 5.0,
        probe_timeout: int = 120,
    ):
        """
        Args:
            registry: Registry holding the providers
            project: Default project id
            region: Default region
            timeout: Seconds per HTTP check
            attempts: HTTP check attempts before a service is unreachable
            interval: Seconds between HTTP check attempts
            probe_timeout: Seconds per re-probe of a resource
        """
        self.registry = registry
        self.project = project
        self.region = region
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.interval = interval
        self.probe_timeout = probe_timeout

    async def verify(
        self,
        specs: List[ResourceSpec],
        outputs: Optional[Mapping[str, Dict[str, Any]]] = None,
    ) -> List[VerificationReport]:
        """
        Verify every service in the descriptor.

        Args:
            specs: All declared resources
            outputs: Attributes of resources a run just applied. Resources
                missing here are probed.

        Returns:
            One VerificationReport per service, in declaration order.
        """
        resources = {spec.name: spec for spec in specs}
        reports = []
        for spec in specs:
            if spec.kind is not ResourceKind.SERVICE:
                continue
            report = await self.verify_service(spec, resources, outputs or {})
            if report.healthy:
                logger.info(f"Verified {spec.name}: healthy")
            else:
                logger.warning(
                    f"Verified {spec.name}: {report.status.value} ({report.reason})"
                )
            reports.append(report)
        return reports

    async def verify_service(
        self,
        spec: ResourceSpec,
        resources: Dict[str, ResourceSpec],
        outputs: Mapping[str, Dict[str, Any]],
    ) -> VerificationReport:
        """Verify one service and the dependencies it is bound to."""
        dependency_outputs, problems = await self._check_dependencies(
            spec, resources, outputs
        )

        try:
            config = resolve_references(dict(spec.config), dependency_outputs)
            resolved = True
        except UnresolvedReference:
            config = dict(spec.config)
            resolved = False

        ctx = self._context(spec, config, dependency_outputs, resources)
        provider = await self.registry.get_provider_for_kind(spec.kind)
        try:
            state = await asyncio.wait_for(provider.probe(ctx), self.probe_timeout)
        except Exception as e:
            return VerificationReport(
                name=spec.name,
                status=HealthStatus.UNREACHABLE,
                reason=f"cannot read service: {str(e) or type(e).__name__}",
            )
        if not state.is_present:
            return VerificationReport(
                name=spec.name,
                status=HealthStatus.UNREACHABLE,
                reason="service does not exist",
            )

        if resolved:
            problems.extend(provider.readiness_problems(ctx, state.attributes))

        url = provider.health_url(ctx, state.attributes)
        if url is None:
            return VerificationReport(
                name=spec.name,
                status=HealthStatus.UNREACHABLE,
                reason="service has no URL",
            )

        error = await self.check_http(url)
        if error is not None:
            return VerificationReport(
                name=spec.name, status=HealthStatus.UNREACHABLE, reason=error, url=url
            )
        if problems:
            return VerificationReport(
                name=spec.name,
                status=HealthStatus.DEGRADED,
                reason="; ".join(problems),
                url=url,
            )
        return VerificationReport(name=spec.name, status=HealthStatus.HEALTHY, url=url)

    async def check_http(self, url: str) -> Optional[str]:
        """
        GET a URL until it answers with a status below 500.

        Returns:
            None when the URL answered, otherwise the last error.
        """
        error = None
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        for attempt in range(1, self.attempts + 1):
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.get(url, allow_redirects=False) as resp:
                        if resp.status < 500:
                            logger.debug(f"GET {url} returned HTTP {resp.status}")
                            return None
                        error = f"HTTP {resp.status}"
            except asyncio.TimeoutError:
                error = f"no response within {self.timeout}s"
            except aiohttp.ClientError as e:
                error = str(e) or type(e).__name__

            logger.debug(f"GET {url} attempt {attempt}/{self.attempts} failed: {error}")
            if attempt < self.attempts:
                await asyncio.sleep(self.interval)

        return f"GET {url} failed after {self.attempts} attempts: {error}"

    async def _check_dependencies(
        self,
        spec: ResourceSpec,
        resources: Dict[str, ResourceSpec],
        outputs: Mapping[str, Dict[str, Any]],
    ) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
        """Collect dependency attributes and their readiness problems."""
        dependency_outputs: Dict[str, Dict[str, Any]] = {}
        problems: List[str] = []

        for name in spec.depends_on:
            dependency = resources[name]
            provider = await self.registry.get_provider_for_kind(dependency.kind)
            ctx = self._context(dependency, dict(dependency.config), {}, resources)

            if name in outputs:
                attributes = outputs[name]
            else:
                try:
                    state = await asyncio.wait_for(
                        provider.probe(ctx), self.probe_timeout
                    )
                except Exception as e:
                    cause = str(e) or type(e).__name__
                    problems.append(f"cannot read {name}: {cause}")
                    continue
                if not state.is_present:
                    problems.append(f"{name} does not exist")
                    continue
                attributes = state.attributes

            dependency_outputs[name] = attributes
            problems.extend(
                f"{name}: {problem}"
                for problem in provider.readiness_problems(ctx, attributes)
            )

        return dependency_outputs, problems

    def _context(
        self,
        spec: ResourceSpec,
        config: Dict[str, Any],
        dependency_outputs: Dict[str, Dict[str, Any]],
        resources: Dict[str, ResourceSpec],
    ) -> ProviderContext:
        return ProviderContext(
            resource_name=spec.name,
            project=self.project,
            region=self.region,
            config=config,
            dependency_outputs=dependency_outputs,
            resources=resources,
        )
