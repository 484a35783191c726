"""Built-in providers backed by the gcloud CLI."""

from plugins.providers.gcloud.artifact_registry import ArtifactRegistryImageProvider
from plugins.providers.gcloud.cloud_run import CloudRunProvider
from plugins.providers.gcloud.cloud_sql import CloudSQLProvider
from plugins.providers.gcloud.runner import GCloudRunner
from plugins.providers.gcloud.secret_manager import SecretManagerProvider

__all__ = [
    "ArtifactRegistryImageProvider",
    "CloudRunProvider",
    "CloudSQLProvider",
    "GCloudRunner",
    "SecretManagerProvider",
]
