"""Unit tests for prober.py - Concurrent state probing."""

import asyncio

import pytest

from plugins.base import ObservedState, ObservedStatus, ResourceKind
from prober import StateProber


@pytest.mark.asyncio
class TestStateProber:
    """Tests for StateProber."""

    async def test_absent_and_present(self, fake_registry, fakes, runbook_specs):
        fakes[ResourceKind.DATABASE].state["db"] = {"tier": "small"}
        prober = StateProber(fake_registry, "my-project", "us-central1")

        observed = await prober.probe_all(runbook_specs)

        assert list(observed) == ["db", "secret", "app"]
        assert observed["db"].is_present
        assert observed["db"].attributes == {"tier": "small"}
        assert observed["secret"].is_absent
        assert observed["app"].is_absent

    async def test_failure_is_isolated_to_one_resource(
        self, fake_registry, fakes, runbook_specs
    ):
        """A failing database probe does not stop the secret probe."""
        fakes[ResourceKind.DATABASE].probe_errors["db"] = RuntimeError("API down")
        fakes[ResourceKind.SECRET].state["secret"] = {"value": "s3cret"}
        prober = StateProber(fake_registry, "my-project", "us-central1")

        observed = await prober.probe_all(runbook_specs)

        assert observed["db"].status == ObservedStatus.ERROR
        assert observed["db"].error == "API down"
        assert observed["secret"].is_present
        assert observed["app"].is_absent

    async def test_timeout_marks_error(self, fake_registry, fakes, runbook_specs):
        database = fakes[ResourceKind.DATABASE]

        async def slow_probe(ctx):
            await asyncio.sleep(5)

        database.probe = slow_probe
        prober = StateProber(fake_registry, "my-project", "us-central1", timeout=0.05)

        observed = await prober.probe_all(runbook_specs)

        assert observed["db"].is_error
        assert "timed out" in observed["db"].error
        assert observed["secret"].is_absent

    async def test_concurrency_is_bounded(self, fake_registry, fakes, runbook_specs):
        running = 0
        peak = 0

        async def tracking_probe(ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return ObservedState.absent()

        for kind in (ResourceKind.DATABASE, ResourceKind.SECRET, ResourceKind.SERVICE):
            fakes[kind].probe = tracking_probe
        prober = StateProber(
            fake_registry, "my-project", "us-central1", max_concurrent=1
        )

        await prober.probe_all(runbook_specs)

        assert peak == 1

    async def test_probe_receives_context(self, fake_registry, fakes, runbook_specs):
        seen = []
        service = fakes[ResourceKind.SERVICE]

        async def recording_probe(ctx):
            seen.append(ctx)
            return await type(service).probe(service, ctx)

        service.probe = recording_probe
        prober = StateProber(fake_registry, "my-project", "europe-west1")

        await prober.probe_all(runbook_specs)

        assert len(seen) == 1
        ctx = seen[0]
        assert ctx.resource_name == "app"
        assert ctx.project == "my-project"
        assert ctx.region == "europe-west1"
        assert set(ctx.resources) == {"db", "secret", "app"}
