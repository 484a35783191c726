"""
Shared plumbing for providers that drive the gcloud CLI.
"""

import logging
import os
from typing import Any, Dict, Optional

from errors import ApplyError
from plugins.base import ProviderContext
from plugins.providers.base import ResourceProvider
from plugins.providers.gcloud.runner import GCloudRunner

logger = logging.getLogger(__name__)


class GCloudProvider(ResourceProvider):
    """
    Base class for gcloud-backed providers.

    Holds the CLI settings and builds a GCloudRunner per project. Read-only
    calls use command_timeout; mutating calls use operation_timeout, since
    creating a Cloud SQL instance or running a build takes minutes.
    """

    def __init__(self):
        self.binary: str = "gcloud"
        self.command_timeout: int = 60
        self.operation_timeout: int = 1800
        self.runner_factory = GCloudRunner

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load gcloud settings from environment variables."""
        return {
            "binary": os.getenv("GCLOUD_BINARY", "gcloud"),
            "command_timeout": int(os.getenv("DEPLOYCTL_COMMAND_TIMEOUT", "60")),
            "operation_timeout": int(os.getenv("GCLOUD_OPERATION_TIMEOUT", "1800")),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the provider with configuration."""
        self.binary = config.get("binary", self.binary)
        self.command_timeout = int(config.get("command_timeout", self.command_timeout))
        self.operation_timeout = int(
            config.get("operation_timeout", self.operation_timeout)
        )
        logger.debug(
            f"{self.name} provider initialized: binary={self.binary}, "
            f"command_timeout={self.command_timeout}s, "
            f"operation_timeout={self.operation_timeout}s"
        )

    def runner(self, ctx: ProviderContext) -> GCloudRunner:
        """Build a runner scoped to the context's project."""
        return self.runner_factory(
            binary=self.binary,
            project=ctx.project,
            timeout=self.command_timeout,
        )

    @staticmethod
    def region(ctx: ProviderContext) -> str:
        """The resource's region: its own config, else the descriptor default."""
        return ctx.config.get("region") or ctx.region

    @staticmethod
    def require_project(ctx: ProviderContext) -> str:
        if not ctx.project:
            raise ApplyError("a project id is required", resource=ctx.resource_name)
        return ctx.project


def format_labels(labels: Optional[Dict[str, str]]) -> str:
    """Render labels as gcloud's k1=v1,k2=v2 form, sorted for stable commands."""
    return ",".join(f"{k}={v}" for k, v in sorted((labels or {}).items()))
