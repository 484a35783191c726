"""
Cloud SQL Provider - manages a Cloud SQL instance and its databases.
"""

import logging
from typing import Any, Dict, List

from errors import ApplyError, GCloudError
from plugins.base import ObservedState, ProviderContext, ResourceKind, StepAction
from plugins.providers.gcloud.base import GCloudProvider

logger = logging.getLogger(__name__)

# Fields that Cloud SQL cannot change on an existing instance.
IMMUTABLE_FIELDS = ("database_version", "region")

# Instance state while it accepts connections.
RUNNABLE = "RUNNABLE"


class CloudSQLProvider(GCloudProvider):
    """
    Provider for Cloud SQL instances.

    The instance is created with gcloud sql instances create and changed
    with gcloud sql instances patch. Databases listed in the config are
    created inside the instance when missing; extra databases are left
    alone.
    """

    @property
    def name(self) -> str:
        return "cloud_sql"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.DATABASE

    @property
    def schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["database_version", "tier"],
            "additionalProperties": False,
            "properties": {
                "instance": {"type": "string", "pattern": "^[a-z][a-z0-9-]*$"},
                "database_version": {"type": "string"},
                "tier": {"type": "string"},
                "region": {"type": "string"},
                "edition": {"enum": ["ENTERPRISE", "ENTERPRISE_PLUS"]},
                "storage_size_gb": {"type": "integer", "minimum": 10},
                "databases": {
                    "type": "array",
                    "items": {"type": "string"},
                    "uniqueItems": True,
                },
                "root_password": {
                    "type": "string",
                    "description": "Set when the instance is created only; "
                    "never compared or changed afterwards.",
                },
            },
        }

    @property
    def output_attributes(self) -> List[str]:
        return ["instance", "connection_name", "ip_address", "databases"]

    def instance_name(self, ctx: ProviderContext) -> str:
        return ctx.config.get("instance") or ctx.resource_name

    async def probe(self, ctx: ProviderContext) -> ObservedState:
        instance = self.instance_name(ctx)
        runner = self.runner(ctx)

        data = await runner.describe(["sql", "instances", "describe", instance])
        if data is None:
            return ObservedState.absent()

        attributes = parse_instance(data)
        databases = await runner.run_json(
            ["sql", "databases", "list", f"--instance={instance}"]
        )
        attributes["databases"] = sorted(d["name"] for d in databases or [])
        return ObservedState.present(attributes)

    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        config = ctx.config
        changes = []

        for key in ("database_version", "tier", "edition"):
            if key in config and config[key] != attributes.get(key):
                changes.append(key)
        if self.region(ctx) != attributes.get("region"):
            changes.append("region")

        # Storage only grows (automatic increases may push it past the config).
        desired_size = config.get("storage_size_gb")
        observed_size = attributes.get("storage_size_gb") or 0
        if desired_size is not None and observed_size < desired_size:
            changes.append("storage_size_gb")

        missing = set(config.get("databases", [])) - set(attributes.get("databases", []))
        if missing:
            changes.append("databases")

        return changes

    def readiness_problems(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> List[str]:
        state = attributes.get("state")
        if state != RUNNABLE:
            instance = attributes.get("instance")
            return [f"instance {instance} is {state or 'in an unknown state'}"]
        return []

    async def apply(
        self,
        ctx: ProviderContext,
        action: StepAction,
        observed: ObservedState,
    ) -> Dict[str, Any]:
        runner = self.runner(ctx)
        instance = self.instance_name(ctx)
        config = ctx.config

        if action is StepAction.CREATE:
            await self._create_instance(ctx, instance)
        else:
            changes = self.diff(ctx, observed.attributes)
            if config.get("root_password"):
                logger.warning(
                    f"root_password of {instance} is only used at creation; "
                    "change it with gcloud sql users set-password"
                )
            blocked = [f for f in IMMUTABLE_FIELDS if f in changes]
            if blocked:
                raise ApplyError(
                    f"cannot change {', '.join(blocked)} of an existing instance",
                    resource=ctx.resource_name,
                )
            patch_args = self._patch_args(config, changes)
            if patch_args:
                logger.info(f"Patching Cloud SQL instance {instance}")
                await runner.run(
                    ["sql", "instances", "patch", instance, *patch_args],
                    timeout=self.operation_timeout,
                )

        current = await self.probe(ctx)
        if not current.is_present:
            raise ApplyError(
                "instance not visible after apply", resource=ctx.resource_name
            )

        existing = set(current.attributes.get("databases", []))
        for database in config.get("databases", []):
            if database in existing:
                continue
            logger.info(f"Creating database {database} on {instance}")
            await runner.run(
                ["sql", "databases", "create", database, f"--instance={instance}"],
                timeout=self.operation_timeout,
            )
            current.attributes["databases"].append(database)

        current.attributes["databases"] = sorted(current.attributes["databases"])
        return current.attributes

    async def _create_instance(self, ctx: ProviderContext, instance: str) -> None:
        config = ctx.config
        args = [
            "sql",
            "instances",
            "create",
            instance,
            f"--database-version={config['database_version']}",
            f"--tier={config['tier']}",
            f"--region={self.region(ctx)}",
        ]
        if config.get("edition"):
            args.append(f"--edition={config['edition']}")
        if config.get("storage_size_gb"):
            args.append(f"--storage-size={config['storage_size_gb']}GB")
        if config.get("root_password"):
            args.append(f"--root-password={config['root_password']}")

        logger.info(f"Creating Cloud SQL instance {instance} (this takes minutes)")
        try:
            await self.runner(ctx).run(args, timeout=self.operation_timeout)
        except GCloudError as e:
            # A previous run may have created it after our probe.
            if "already exists" not in e.stderr.lower():
                raise
            logger.info(f"Cloud SQL instance {instance} already exists")

    @staticmethod
    def _patch_args(config: Dict[str, Any], changes: List[str]) -> List[str]:
        args = []
        if "tier" in changes:
            args.append(f"--tier={config['tier']}")
        if "edition" in changes:
            args.append(f"--edition={config['edition']}")
        if "storage_size_gb" in changes:
            args.append(f"--storage-size={config['storage_size_gb']}GB")
        return args


def parse_instance(data: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the attributes we compare and export from an instance resource."""
    settings = data.get("settings", {})
    ip_address = None
    for address in data.get("ipAddresses", []):
        if address.get("type") == "PRIMARY":
            ip_address = address.get("ipAddress")
            break

    size = settings.get("dataDiskSizeGb")
    return {
        "instance": data.get("name"),
        "connection_name": data.get("connectionName"),
        "database_version": data.get("databaseVersion"),
        "region": data.get("region"),
        "tier": settings.get("tier"),
        "edition": settings.get("edition"),
        "storage_size_gb": int(size) if size is not None else None,
        "ip_address": ip_address,
        "state": data.get("state"),
    }
