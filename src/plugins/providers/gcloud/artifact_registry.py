"""
Artifact Registry Provider - mirrors an upstream container image.

The upstream image is pulled, re-tagged and pushed by a Cloud Build job,
so the image lands in Artifact Registry without a local Docker daemon.
"""

import logging
import os
import tempfile
from typing import Any, Dict, List

import yaml

from errors import ApplyError
from plugins.base import ObservedState, ProviderContext, ResourceKind, StepAction
from plugins.providers.gcloud.base import GCloudProvider

logger = logging.getLogger(__name__)

DOCKER_BUILDER = "gcr.io/cloud-builders/docker"


def split_image(source: str) -> tuple[str, str]:
    """
    Split an image reference into (repository path, tag).

    A registry port ("host:5000/app") is not mistaken for a tag. Digest
    references keep their digest as the tag part.
    """
    if "@" in source:
        path, digest = source.split("@", 1)
        # name:tag@digest pins by digest; the tag is informational.
        if ":" in path.rsplit("/", 1)[-1]:
            path = path.rsplit(":", 1)[0]
        return path, digest
    last = source.rsplit("/", 1)[-1]
    if ":" in last:
        path, tag = source.rsplit(":", 1)
        return path, tag
    return source, "latest"


class ArtifactRegistryImageProvider(GCloudProvider):
    """
    Provider for mirrored images in an Artifact Registry docker repository.

    The target image is present once its tag resolves in the registry. Tags
    of upstream images can move, so an existing mirror is never re-pulled;
    bump ``tag`` (or pin ``source`` by digest) to mirror a new release.
    """

    @property
    def name(self) -> str:
        return "artifact_registry"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.IMAGE

    @property
    def schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["source", "repository"],
            "additionalProperties": False,
            "properties": {
                "source": {"type": "string", "minLength": 1},
                "repository": {"type": "string", "pattern": "^[a-z][a-z0-9-]*$"},
                "image": {"type": "string", "pattern": "^[a-z0-9][a-z0-9._/-]*$"},
                "tag": {
                    "type": "string",
                    "pattern": "^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$",
                },
                "location": {"type": "string"},
            },
        }

    @property
    def output_attributes(self) -> List[str]:
        return ["uri", "digest", "image_ref"]

    def location(self, ctx: ProviderContext) -> str:
        return ctx.config.get("location") or ctx.region

    def target_uri(self, ctx: ProviderContext) -> str:
        """The fully qualified Artifact Registry tag this resource mirrors to."""
        config = ctx.config
        path, source_tag = split_image(config["source"])
        image = config.get("image") or path.rsplit("/", 1)[-1]
        tag = config.get("tag")
        if tag is None:
            tag = "latest" if source_tag.startswith("sha256:") else source_tag
        project = self.require_project(ctx)
        return (
            f"{self.location(ctx)}-docker.pkg.dev/{project}/"
            f"{config['repository']}/{image}:{tag}"
        )

    async def probe(self, ctx: ProviderContext) -> ObservedState:
        runner = self.runner(ctx)
        repository = await runner.describe(
            [
                "artifacts",
                "repositories",
                "describe",
                ctx.config["repository"],
                f"--location={self.location(ctx)}",
            ]
        )
        if repository is None:
            return ObservedState.absent()

        uri = self.target_uri(ctx)
        data = await runner.describe(["artifacts", "docker", "images", "describe", uri])
        if data is None:
            return ObservedState.absent()

        digest = (data.get("image_summary") or {}).get("digest")
        return ObservedState.present(
            {
                "uri": uri,
                "digest": digest,
                "image_ref": f"{uri.rsplit(':', 1)[0]}@{digest}" if digest else uri,
            }
        )

    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        if attributes.get("uri") != self.target_uri(ctx):
            return ["uri"]
        return []

    async def apply(
        self,
        ctx: ProviderContext,
        action: StepAction,
        observed: ObservedState,
    ) -> Dict[str, Any]:
        await self._ensure_repository(ctx)
        await self._mirror(ctx)

        current = await self.probe(ctx)
        if not current.is_present:
            raise ApplyError(
                "mirrored image not found after the build finished",
                resource=ctx.resource_name,
            )
        return current.attributes

    async def _ensure_repository(self, ctx: ProviderContext) -> None:
        runner = self.runner(ctx)
        repository = ctx.config["repository"]
        location = f"--location={self.location(ctx)}"

        existing = await runner.describe(
            ["artifacts", "repositories", "describe", repository, location]
        )
        if existing is not None:
            return

        logger.info(f"Creating Artifact Registry repository {repository}")
        await runner.run(
            [
                "artifacts",
                "repositories",
                "create",
                repository,
                "--repository-format=docker",
                location,
            ],
            timeout=self.operation_timeout,
        )

    def build_config(self, ctx: ProviderContext) -> Dict[str, Any]:
        """Cloud Build config that pulls, re-tags and pushes the image."""
        source = ctx.config["source"]
        target = self.target_uri(ctx)
        return {
            "steps": [
                {"name": DOCKER_BUILDER, "args": ["pull", source]},
                {"name": DOCKER_BUILDER, "args": ["tag", source, target]},
            ],
            "images": [target],
        }

    async def _mirror(self, ctx: ProviderContext) -> None:
        source = ctx.config["source"]
        logger.info(f"Mirroring {source} to {self.target_uri(ctx)} with Cloud Build")

        fd, path = tempfile.mkstemp(prefix="deployctl-build-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(self.build_config(ctx), f, default_flow_style=False)
            await self.runner(ctx).run(
                [
                    "builds",
                    "submit",
                    "--no-source",
                    f"--config={path}",
                    f"--region={self.location(ctx)}",
                ],
                timeout=self.operation_timeout,
            )
        finally:
            os.unlink(path)
