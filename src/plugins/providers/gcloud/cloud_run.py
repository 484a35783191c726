"""
Cloud Run Provider - deploys a container image as a Cloud Run service.
"""

import logging
from typing import Any, Dict, List, Optional

from errors import ApplyError
from plugins.base import ObservedState, ProviderContext, ResourceKind, StepAction
from plugins.providers.gcloud.base import GCloudProvider

logger = logging.getLogger(__name__)

MIN_SCALE = "autoscaling.knative.dev/minScale"
MAX_SCALE = "autoscaling.knative.dev/maxScale"
CLOUDSQL_INSTANCES = "run.googleapis.com/cloudsql-instances"
INVOKER_ROLE = "roles/run.invoker"

# gcloud list-flag delimiter override, so values may contain commas.
ENV_DELIMITER = "@@"


def split_secret_ref(ref: str) -> tuple[str, str]:
    """Split "name[:version]" into (name, version)."""
    name, _, version = ref.partition(":")
    return name, version or "latest"


class CloudRunProvider(GCloudProvider):
    """
    Provider for Cloud Run services.

    Create and update are the same gcloud run deploy call, which is
    idempotent: deploying an unchanged configuration yields no new revision.
    Environment variables, secret bindings and Cloud SQL attachments are
    always set in full, so entries removed from the config are removed from
    the service.
    """

    @property
    def name(self) -> str:
        return "cloud_run"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.SERVICE

    @property
    def schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["image"],
            "additionalProperties": False,
            "properties": {
                "service": {"type": "string", "pattern": "^[a-z][a-z0-9-]*$"},
                "image": {"type": "string", "minLength": 1},
                "region": {"type": "string"},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "cpu": {"type": ["string", "number"]},
                "memory": {"type": "string"},
                "min_instances": {"type": "integer", "minimum": 0},
                "max_instances": {"type": "integer", "minimum": 1},
                "timeout_seconds": {"type": "integer", "minimum": 1, "maximum": 3600},
                "service_account": {"type": "string"},
                "allow_unauthenticated": {"type": "boolean"},
                "env": {
                    "type": "object",
                    "additionalProperties": {"type": ["string", "number", "boolean"]},
                },
                "secrets": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "string",
                        "pattern": "^[a-z][a-z0-9-]*(:[A-Za-z0-9]+)?$",
                    },
                },
                "cloudsql_instances": {
                    "type": "array",
                    "items": {"type": "string"},
                },
                "health_path": {"type": "string", "pattern": "^/"},
            },
        }

    @property
    def output_attributes(self) -> List[str]:
        return ["url", "service", "latest_ready_revision"]

    def references(self, config: Dict[str, Any]) -> List[str]:
        """Secret resources bound into the service's environment."""
        names = []
        for ref in (config.get("secrets") or {}).values():
            name, _ = split_secret_ref(ref)
            if name not in names:
                names.append(name)
        return names

    def service_name(self, ctx: ProviderContext) -> str:
        return ctx.config.get("service") or ctx.resource_name

    async def probe(self, ctx: ProviderContext) -> ObservedState:
        service = self.service_name(ctx)
        region = f"--region={self.region(ctx)}"
        runner = self.runner(ctx)

        data = await runner.describe(
            ["run", "services", "describe", service, region, "--platform=managed"]
        )
        if data is None:
            return ObservedState.absent()

        attributes = parse_service(data)
        policy = await runner.run_json(
            ["run", "services", "get-iam-policy", service, region]
        )
        attributes["allow_unauthenticated"] = is_public(policy)
        return ObservedState.present(attributes)

    def desired_secrets(self, ctx: ProviderContext) -> Dict[str, str]:
        """Secret bindings as ENV -> "secret_id:version"."""
        bound = {}
        for env_name, ref in (ctx.config.get("secrets") or {}).items():
            name, version = split_secret_ref(ref)
            outputs = ctx.dependency_outputs.get(name) or {}
            secret_id = outputs.get("secret_id") or name
            bound[env_name] = f"{secret_id}:{version}"
        return bound

    def diff(self, ctx: ProviderContext, attributes: Dict[str, Any]) -> List[str]:
        config = ctx.config
        changes = []

        if config["image"] != attributes.get("image"):
            changes.append("image")

        for key in ("port", "min_instances", "max_instances", "timeout_seconds"):
            if key in config and config[key] != attributes.get(key):
                changes.append(key)
        for key in ("cpu", "memory", "service_account"):
            if key in config and str(config[key]) != str(attributes.get(key)):
                changes.append(key)

        desired_env = {k: str(v) for k, v in (config.get("env") or {}).items()}
        if desired_env != attributes.get("env", {}):
            changes.append("env")
        if self.desired_secrets(ctx) != attributes.get("secrets", {}):
            changes.append("secrets")
        if sorted(config.get("cloudsql_instances") or []) != sorted(
            attributes.get("cloudsql_instances", [])
        ):
            changes.append("cloudsql_instances")
        if bool(config.get("allow_unauthenticated", False)) != attributes.get(
            "allow_unauthenticated", False
        ):
            changes.append("allow_unauthenticated")

        return changes

    def deploy_args(self, ctx: ProviderContext) -> List[str]:
        """Arguments for gcloud run deploy that set the full configuration."""
        config = ctx.config
        args = [
            "run",
            "deploy",
            self.service_name(ctx),
            f"--image={config['image']}",
            f"--region={self.region(ctx)}",
            "--platform=managed",
        ]
        for key, flag in (
            ("port", "--port"),
            ("cpu", "--cpu"),
            ("memory", "--memory"),
            ("min_instances", "--min-instances"),
            ("max_instances", "--max-instances"),
            ("timeout_seconds", "--timeout"),
            ("service_account", "--service-account"),
        ):
            if key in config:
                args.append(f"{flag}={config[key]}")

        env = config.get("env") or {}
        if env:
            pairs = ENV_DELIMITER.join(f"{k}={v}" for k, v in sorted(env.items()))
            args.append(f"--set-env-vars=^{ENV_DELIMITER}^{pairs}")
        else:
            args.append("--clear-env-vars")

        bound = self.desired_secrets(ctx)
        if bound:
            args.append(
                "--set-secrets="
                + ",".join(f"{k}={v}" for k, v in sorted(bound.items()))
            )
        else:
            args.append("--clear-secrets")

        instances = config.get("cloudsql_instances") or []
        if instances:
            args.append(f"--set-cloudsql-instances={','.join(instances)}")
        else:
            args.append("--clear-cloudsql-instances")

        if config.get("allow_unauthenticated"):
            args.append("--allow-unauthenticated")
        else:
            args.append("--no-allow-unauthenticated")

        return args

    def health_url(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> Optional[str]:
        url = attributes.get("url")
        if not url:
            return None
        return url.rstrip("/") + ctx.config.get("health_path", "/")

    def readiness_problems(
        self, ctx: ProviderContext, attributes: Dict[str, Any]
    ) -> List[str]:
        problems = []
        if not attributes.get("ready"):
            problems.append("latest revision is not ready")

        bound = attributes.get("secrets", {})
        for env_name, ref in sorted(self.desired_secrets(ctx).items()):
            if bound.get(env_name) != ref:
                problems.append(f"secret {ref} is not bound to {env_name}")

        attached = attributes.get("cloudsql_instances", [])
        for instance in ctx.config.get("cloudsql_instances") or []:
            if instance not in attached:
                problems.append(f"Cloud SQL instance {instance} is not attached")

        return problems

    async def apply(
        self,
        ctx: ProviderContext,
        action: StepAction,
        observed: ObservedState,
    ) -> Dict[str, Any]:
        service = self.service_name(ctx)
        logger.info(f"Deploying Cloud Run service {service} ({action.value})")
        await self.runner(ctx).run(
            self.deploy_args(ctx), timeout=self.operation_timeout
        )

        current = await self.probe(ctx)
        if not current.is_present:
            raise ApplyError(
                "service not visible after deploy", resource=ctx.resource_name
            )
        return current.attributes


def parse_service(data: Dict[str, Any]) -> Dict[str, Any]:
    """Extract comparable attributes from a Knative service resource."""
    template = data.get("spec", {}).get("template", {})
    annotations = template.get("metadata", {}).get("annotations", {})
    spec = template.get("spec", {})
    containers = spec.get("containers") or [{}]
    container = containers[0]
    limits = container.get("resources", {}).get("limits", {})
    ports = container.get("ports") or []
    status = data.get("status", {})

    env: Dict[str, str] = {}
    bound: Dict[str, str] = {}
    for entry in container.get("env", []):
        ref = entry.get("valueFrom", {}).get("secretKeyRef")
        if ref:
            bound[entry["name"]] = f"{ref.get('name')}:{ref.get('key', 'latest')}"
        else:
            env[entry["name"]] = entry.get("value", "")

    instances = annotations.get(CLOUDSQL_INSTANCES, "")
    ready = any(
        c.get("type") == "Ready" and c.get("status") == "True"
        for c in status.get("conditions", [])
    )

    return {
        "service": data.get("metadata", {}).get("name"),
        "url": status.get("url"),
        "ready": ready,
        "latest_ready_revision": status.get("latestReadyRevisionName"),
        "image": container.get("image"),
        "port": ports[0].get("containerPort") if ports else None,
        "cpu": limits.get("cpu"),
        "memory": limits.get("memory"),
        "min_instances": _int_or_none(annotations.get(MIN_SCALE)),
        "max_instances": _int_or_none(annotations.get(MAX_SCALE)),
        "timeout_seconds": spec.get("timeoutSeconds"),
        "service_account": spec.get("serviceAccountName"),
        "env": env,
        "secrets": bound,
        "cloudsql_instances": [i for i in instances.split(",") if i],
    }


def is_public(policy: Optional[Dict[str, Any]]) -> bool:
    """Whether an IAM policy grants the invoker role to allUsers."""
    for binding in (policy or {}).get("bindings", []):
        if binding.get("role") == INVOKER_ROLE and "allUsers" in binding.get(
            "members", []
        ):
            return True
    return False


def _int_or_none(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None
