"""
Main entry point for deployctl.

Provides a terraform-like CLI (plan, apply, verify) over the reconciler,
with per-step outcome tables and exit codes for every failure class.
"""

import asyncio
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click
import yaml
from tabulate import tabulate

from config import Config, get_config
from errors import DeployError, ExitCode
from plugins.base import StepAction, StepOutcome
from plugins.registry import PluginRegistry, get_registry, register_builtin_plugins
from reconciler import Reconciler, RunResult
from verifier import VerificationReport

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


class Application:
    """Builds the registry and reconciler and runs one command."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.registry: Optional[PluginRegistry] = None
        self.shutdown_event: Optional[asyncio.Event] = None

    def initialize(self) -> PluginRegistry:
        """Register provider plugins, honoring ENABLED_PROVIDER_PLUGINS."""
        if self.registry is None:
            register_builtin_plugins()
            self.registry = get_registry()
            enabled = self.config.plugins.enabled_provider_plugins
            if enabled:
                self.registry.restrict_to(enabled)
        return self.registry

    @asynccontextmanager
    async def _reconciler(self):
        """Yield a Reconciler whose run stops between steps on SIGINT/SIGTERM."""
        self.shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.warning("Received shutdown signal, stopping after the current step")
            self.shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)
        try:
            yield Reconciler(self.config, self.initialize(), self.shutdown_event)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    async def plan(self, path: Path) -> RunResult:
        async with self._reconciler() as reconciler:
            return await reconciler.plan(reconciler.load(path))

    async def apply(
        self,
        path: Path,
        verify: bool = True,
        confirm: Optional[Callable[[RunResult], Any]] = None,
    ) -> RunResult:
        """
        Plan, confirm, apply and verify.

        Args:
            path: Descriptor file
            verify: Run the verifier after a successful apply
            confirm: Called with the plan when it has changes; may raise
                click.Abort to stop before anything is applied
        """
        async with self._reconciler() as reconciler:
            result = await reconciler.plan(reconciler.load(path))
            if result.error is not None:
                return result
            if result.has_changes and confirm is not None:
                confirm(result)

            await reconciler.execute(result)
            if verify and result.error is None and not result.cancelled:
                await reconciler.verify(result)
            return result

    async def verify(self, path: Path) -> RunResult:
        async with self._reconciler() as reconciler:
            return await reconciler.verify(RunResult(descriptor=reconciler.load(path)))


def setup_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _run(coro):
    """Run a command coroutine, turning DeployErrors into exit codes."""
    try:
        return asyncio.run(coro)
    except DeployError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(int(e.exit_code))


# Rendering


def plan_rows(result: RunResult) -> List[Dict[str, Any]]:
    """One row per resource: observed state and planned action."""
    steps = {step.name: step for step in result.steps}
    rows = []
    for spec in result.descriptor.resources:
        state = result.observed.get(spec.name)
        step = steps.get(spec.name)
        rows.append(
            {
                "name": spec.name,
                "kind": spec.kind.value,
                "state": state.status.value if state else None,
                "error": state.error if state else None,
                "action": step.action.value if step else None,
                "changes": list(step.changes) if step else [],
                "depends_on": list(spec.depends_on),
            }
        )
    return rows


def render_plan(result: RunResult) -> str:
    rows = [
        [
            row["name"],
            row["kind"],
            row["state"] or "-",
            row["action"] or "-",
            ", ".join(row["changes"]) or row["error"] or "",
        ]
        for row in plan_rows(result)
    ]
    return tabulate(
        rows,
        headers=["RESOURCE", "KIND", "STATE", "ACTION", "DETAILS"],
        tablefmt="grid",
    )


def render_results(result: RunResult) -> str:
    rows = [
        [
            r.name,
            r.action.value,
            r.outcome.value,
            f"{r.duration_seconds:.1f}s" if r.action is not StepAction.SKIP else "-",
            r.reason or "",
        ]
        for r in result.results
    ]
    return tabulate(
        rows,
        headers=["RESOURCE", "ACTION", "OUTCOME", "DURATION", "REASON"],
        tablefmt="grid",
    )


def render_reports(reports: List[VerificationReport]) -> str:
    rows = [[r.name, r.status.value, r.url or "-", r.reason or ""] for r in reports]
    return tabulate(
        rows, headers=["SERVICE", "STATUS", "URL", "REASON"], tablefmt="grid"
    )


def summarize(result: RunResult) -> str:
    """Final status line of a run."""
    if result.cancelled:
        done = sum(1 for r in result.results if r.outcome is StepOutcome.SUCCEEDED)
        return (
            f"Cancelled after {done}/{len(result.results)} steps. "
            "Applied resources were left in place; re-run to converge."
        )
    if result.error is not None:
        return f"Error: {result.error}"

    counts = {action: 0 for action in StepAction}
    for step in result.steps:
        counts[step.action] += 1
    return (
        f"Converged: {counts[StepAction.CREATE]} created, "
        f"{counts[StepAction.UPDATE]} updated, "
        f"{counts[StepAction.SKIP]} unchanged."
    )


def _finish(result: RunResult) -> None:
    """Print the final status and exit with the run's exit code."""
    code = result.exit_code
    click.echo(summarize(result), err=code is not ExitCode.OK)
    sys.exit(int(code))


# Commands


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (defaults to LOG_LEVEL or INFO)",
)
@click.pass_context
def cli(ctx, log_level):
    """deployctl - deploy Cloud SQL, secrets, images and Cloud Run from a file"""
    try:
        config = get_config()
    except DeployError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(int(e.exit_code))
    setup_logging(log_level or config.logging.log_level)
    ctx.obj = Application(config)


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def plan(app, filename, output):
    """Show the changes apply would make, without changing anything"""
    result = _run(app.plan(Path(filename)))

    if output == "table":
        click.echo(render_plan(result))
    else:
        document = {
            "project": result.descriptor.project,
            "region": result.descriptor.region,
            "resources": plan_rows(result),
            "error": str(result.error) if result.error else None,
        }
        if output == "json":
            click.echo(json.dumps(document, indent=2))
        else:
            click.echo(yaml.dump(document, default_flow_style=False, sort_keys=False))

    if result.error is not None:
        click.echo(f"Error: {result.error}", err=True)
    sys.exit(int(result.exit_code))


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.option("--skip-verify", is_flag=True, help="Do not verify services after apply")
@click.pass_obj
def apply(app, filename, yes, skip_verify):
    """Create or update resources so that they match FILENAME"""

    def confirm(result: RunResult) -> None:
        click.echo(render_plan(result))
        if not yes:
            click.confirm("Apply these changes?", abort=True)

    result = _run(app.apply(Path(filename), verify=not skip_verify, confirm=confirm))

    if result.results:
        click.echo(render_results(result))
    elif result.steps or result.observed:
        click.echo(render_plan(result))
    if result.reports:
        click.echo(render_reports(result.reports))
    _finish(result)


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def verify(app, filename):
    """Check that the services in FILENAME are reachable and bound"""
    result = _run(app.verify(Path(filename)))

    if not result.reports:
        click.echo("No services to verify")
        sys.exit(int(ExitCode.OK))

    click.echo(render_reports(result.reports))
    if result.error is not None:
        click.echo(f"Error: {result.error}", err=True)
    else:
        click.echo(f"All {len(result.reports)} service(s) healthy")
    sys.exit(int(result.exit_code))


@cli.command()
@click.pass_obj
def providers(app):
    """List registered provider plugins"""
    registry = app.initialize()
    rows = []
    for name in registry.list_provider_plugins():
        info = registry.get_provider_info(name)
        rows.append([info["name"], info["version"], info["kind"]])
    click.echo(tabulate(rows, headers=["NAME", "VERSION", "KIND"], tablefmt="grid"))


if __name__ == "__main__":
    cli()
