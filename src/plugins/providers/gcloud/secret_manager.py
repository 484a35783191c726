"""
Secret Manager Provider - manages a secret and its latest version.
"""

import hashlib
import logging
import secrets
from typing import Any, Dict, List, Optional

from errors import ApplyError, GCloudError
from plugins.base import ObservedState, ProviderContext, ResourceKind, StepAction
from plugins.providers.gcloud.base import GCloudProvider, format_labels

logger = logging.getLogger(__name__)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class SecretManagerProvider(GCloudProvider):
    """
    Provider for Secret Manager secrets.

    A secret either carries an explicit ``value`` (usually substituted from
    the environment) or asks for a ``generate``d one. Explicit values are
    compared by SHA-256 digest with the latest version and a new version is
    added when they differ. Generated values are only created while the
    secret has no enabled version; they are never rotated.
    """

    @property
    def name(self) -> str:
        return "secret_manager"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.SECRET

    @property
    def schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "additionalProperties": False,
            "oneOf": [{"required": ["value"]}, {"required": ["generate"]}],
            "properties": {
                "secret_id": {"type": "string", "pattern": "^[A-Za-z0-9_-]{1,255}$"},
                "value": {"type": "string", "minLength": 1},
                "generate": {"type": "boolean", "const": True},
                "length": {"type": "integer", "minimum": 16, "maximum": 512},
                "locations": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 1,
                },
                "labels": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
            },
        }

    @property
    def output_attributes(self) -> List[str]:
        return ["secret_id", "resource_name"]

    def secret_id(self, ctx: ProviderContext) -> str:
        return ctx.config.get("secret_id") or ctx.resource_name

    async def probe(self, ctx: ProviderContext) -> ObservedState:
        secret_id = self.secret_id(ctx)
        runner = self.runner(ctx)

        data = await runner.describe(["secrets", "describe", secret_id])
        if data is None:
            return ObservedState.absent()

        versions = await runner.run_json(
            [
                "secrets",
                "versions",
                "list",
                secret_id,
                "--filter=state:ENABLED",
                "--limit=1",
            ]
        )
        attributes = {
            "secret_id": secret_id,
            "resource_name": data.get("name"),
            "labels": data.get("labels") or {},
            "has_version": bool(versions),
            "value_sha256": None,
        }

        # Only explicit values are compared; never read generated secrets.
        if attributes["has_version"] and "value" in ctx.config:
            latest = await runner.run(
                ["secrets", "versions", "access", "latest", f"--secret={secret_id}"]
            )
            attributes["value_sha256"] = _digest(latest.stdout)

        return ObservedState.present(attributes)

    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        config = ctx.config
        changes = []

        if not attributes.get("has_version"):
            changes.append("value")
        elif "value" in config and attributes.get("value_sha256") != _digest(
            config["value"]
        ):
            changes.append("value")

        if "labels" in config and config["labels"] != attributes.get("labels", {}):
            changes.append("labels")

        return changes

    async def apply(
        self,
        ctx: ProviderContext,
        action: StepAction,
        observed: ObservedState,
    ) -> Dict[str, Any]:
        secret_id = self.secret_id(ctx)
        runner = self.runner(ctx)
        config = ctx.config

        if action is StepAction.CREATE:
            created = await self._create(ctx, secret_id)
            if created:
                return await self._outputs(ctx)
            # Someone created it after our probe; converge it as an update.
            observed = await self.probe(ctx)

        changes = self.diff(ctx, observed.attributes)
        if "value" in changes:
            logger.info(f"Adding a new version to secret {secret_id}")
            await runner.run(
                ["secrets", "versions", "add", secret_id, "--data-file=-"],
                input_text=self._value(config),
                timeout=self.operation_timeout,
            )
        if "labels" in changes:
            await runner.run(
                self.label_args(secret_id, config["labels"], observed.attributes),
                timeout=self.operation_timeout,
            )

        return await self._outputs(ctx)

    @staticmethod
    def label_args(
        secret_id: str, labels: Dict[str, str], attributes: Dict[str, Any]
    ) -> List[str]:
        """Build a secrets update that leaves exactly the given labels."""
        args = ["secrets", "update", secret_id]
        # --update-labels merges, so labels dropped from config are removed.
        stale = sorted(set(attributes.get("labels") or {}) - set(labels))
        if stale:
            args.append(f"--remove-labels={','.join(stale)}")
        if labels:
            args.append(f"--update-labels={format_labels(labels)}")
        return args

    async def _create(self, ctx: ProviderContext, secret_id: str) -> bool:
        config = ctx.config
        args = ["secrets", "create", secret_id, "--data-file=-"]
        if config.get("locations"):
            args.append("--replication-policy=user-managed")
            args.append(f"--locations={','.join(config['locations'])}")
        else:
            args.append("--replication-policy=automatic")
        if config.get("labels"):
            args.append(f"--labels={format_labels(config['labels'])}")

        logger.info(f"Creating secret {secret_id}")
        try:
            await self.runner(ctx).run(
                args, input_text=self._value(config), timeout=self.operation_timeout
            )
        except GCloudError as e:
            if "already exists" not in e.stderr.lower():
                raise
            logger.info(f"Secret {secret_id} already exists")
            return False
        return True

    async def _outputs(self, ctx: ProviderContext) -> Dict[str, Any]:
        current = await self.probe(ctx)
        if not current.is_present:
            raise ApplyError("secret not visible after apply", resource=ctx.resource_name)
        return current.attributes

    @staticmethod
    def _value(config: Dict[str, Any]) -> str:
        value: Optional[str] = config.get("value")
        if value is None:
            value = secrets.token_urlsafe(config.get("length", 48))
        return value
