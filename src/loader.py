"""
Resource Descriptor Loader - reads desired resources from a YAML/JSON file.

The descriptor names a project, a default region and an ordered list of
resources. Environment variables are substituted into string values, and
dependencies are resolved from explicit ``depends_on`` entries,
``{{ resource.attribute }}`` output references, and provider-declared
bindings.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from errors import ConfigError
from plugins.base import ResourceKind, ResourceSpec
from plugins.registry import PluginRegistry
from references import find_references
from validation import validate_resource_name

logger = logging.getLogger(__name__)

# ${VAR} or ${VAR:-default}
ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

RESOURCE_KEYS = {"name", "kind", "config", "depends_on"}


@dataclass(frozen=True)
class Descriptor:
    """A loaded descriptor: defaults plus resources in declaration order."""

    project: Optional[str]
    region: str
    resources: List[ResourceSpec]

    def by_name(self) -> Dict[str, ResourceSpec]:
        return {spec.name: spec for spec in self.resources}


def substitute_env(value: Any, environ: Mapping[str, str], path: str = "") -> Any:
    """
    Replace ${VAR} and ${VAR:-default} in every string of a nested value.

    Raises:
        ConfigError: If a variable is unset and has no default.
    """
    if isinstance(value, str):

        def _replace(match: "re.Match[str]") -> str:
            name, default = match.group(1), match.group(2)
            if name in environ:
                return environ[name]
            if default is not None:
                return default
            raise ConfigError(
                f"environment variable {name} is not set (referenced at {path or 'root'})"
            )

        return ENV_VAR_RE.sub(_replace, value)
    if isinstance(value, Mapping):
        return {
            k: substitute_env(v, environ, f"{path}.{k}" if path else str(k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [
            substitute_env(v, environ, f"{path}[{i}]") for i, v in enumerate(value)
        ]
    return value


def read_document(path: Path) -> Any:
    """Parse a descriptor file as YAML, or JSON for .json files."""
    try:
        with open(path, "r") as f:
            if path.suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read descriptor {path}: {e.strerror}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse descriptor {path}: {e}")


def load_resources(
    path: Path,
    registry: PluginRegistry,
    default_project: Optional[str] = None,
    default_region: str = "us-central1",
    environ: Optional[Mapping[str, str]] = None,
) -> Descriptor:
    """
    Load and validate a descriptor file.

    Args:
        path: YAML or JSON descriptor
        registry: Registry used to validate each kind's config
        default_project: Project used when the descriptor names none
        default_region: Region used when the descriptor names none
        environ: Variables for ${VAR} substitution (defaults to os.environ)

    Returns:
        The loaded Descriptor.

    Raises:
        ConfigError: On any invalid or unresolvable input.
    """
    document = read_document(Path(path))
    descriptor = parse_resources(
        document,
        registry,
        default_project=default_project,
        default_region=default_region,
        environ=environ,
    )
    logger.info(f"Loaded {len(descriptor.resources)} resources from {path}")
    return descriptor


def parse_resources(
    document: Any,
    registry: PluginRegistry,
    default_project: Optional[str] = None,
    default_region: str = "us-central1",
    environ: Optional[Mapping[str, str]] = None,
) -> Descriptor:
    """Validate an already-parsed descriptor document. See load_resources."""
    if not isinstance(document, Mapping):
        raise ConfigError("descriptor must be a mapping")

    document = substitute_env(document, os.environ if environ is None else environ)

    project = document.get("project") or default_project
    if not project:
        raise ConfigError(
            "no project id: set 'project' in the descriptor or GCLOUD_PROJECT"
        )
    region = document.get("region") or default_region

    raw_resources = document.get("resources")
    if not isinstance(raw_resources, list) or not raw_resources:
        raise ConfigError("descriptor must declare a non-empty 'resources' list")

    entries = [
        _parse_entry(raw, index, registry) for index, raw in enumerate(raw_resources)
    ]

    names = [entry["name"] for entry in entries]
    seen = set()
    for name in names:
        if name in seen:
            raise ConfigError("duplicate resource name", resource=name)
        seen.add(name)

    by_name = {entry["name"]: entry for entry in entries}
    specs = [_resolve_dependencies(entry, by_name, registry) for entry in entries]
    check_acyclic(specs)

    return Descriptor(project=project, region=region, resources=specs)


def _parse_entry(raw: Any, index: int, registry: PluginRegistry) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"resources[{index}] must be a mapping")

    name = raw.get("name")
    if name is None:
        raise ConfigError(f"resources[{index}] is missing required field 'name'")
    is_valid, error = validate_resource_name(name)
    if not is_valid:
        raise ConfigError(error)

    unknown = set(raw) - RESOURCE_KEYS
    if unknown:
        raise ConfigError(f"unknown fields: {', '.join(sorted(unknown))}", resource=name)

    if "kind" not in raw:
        raise ConfigError("missing required field 'kind'", resource=name)
    try:
        kind = ResourceKind(raw["kind"])
    except ValueError:
        allowed = ", ".join(k.value for k in ResourceKind)
        raise ConfigError(
            f"unknown kind {raw['kind']!r} (expected one of: {allowed})",
            resource=name,
        )

    provider = registry.describe_kind(kind)
    if provider is None:
        raise ConfigError(
            f"no provider registered for kind '{kind.value}'", resource=name
        )

    config = raw.get("config") or {}
    if not isinstance(config, Mapping):
        raise ConfigError("'config' must be a mapping", resource=name)
    is_valid, error = provider.validate_spec(dict(config))
    if not is_valid:
        raise ConfigError(f"invalid config: {error}", resource=name)

    depends_on = raw.get("depends_on") or []
    if not isinstance(depends_on, list) or not all(
        isinstance(d, str) for d in depends_on
    ):
        raise ConfigError(
            "'depends_on' must be a list of resource names", resource=name
        )

    return {"name": name, "kind": kind, "config": dict(config), "depends_on": depends_on}


def _resolve_dependencies(
    entry: Dict[str, Any],
    by_name: Dict[str, Dict[str, Any]],
    registry: PluginRegistry,
) -> ResourceSpec:
    name = entry["name"]
    provider = registry.describe_kind(entry["kind"])
    dependencies: List[str] = []

    def _add(dependency: str, origin: str) -> None:
        if dependency == name:
            raise ConfigError(f"{origin} refers to itself", resource=name)
        if dependency not in by_name:
            raise ConfigError(
                f"{origin} refers to unknown resource '{dependency}'", resource=name
            )
        if dependency not in dependencies:
            dependencies.append(dependency)

    for dependency in entry["depends_on"]:
        _add(dependency, "depends_on")

    for dependency, attribute in find_references(entry["config"]):
        _add(dependency, f"reference '{{{{ {dependency}.{attribute} }}}}'")
        target = registry.describe_kind(by_name[dependency]["kind"])
        if attribute not in target.output_attributes:
            raise ConfigError(
                f"resource '{dependency}' has no attribute '{attribute}' "
                f"(available: {', '.join(target.output_attributes) or 'none'})",
                resource=name,
            )

    for dependency in provider.references(entry["config"]):
        _add(dependency, "binding")

    return ResourceSpec(
        name=name,
        kind=entry["kind"],
        config=entry["config"],
        depends_on=tuple(dependencies),
    )


def check_acyclic(specs: List[ResourceSpec]) -> None:
    """
    Raise ConfigError if the dependency graph has a cycle.

    The error names one resource on the cycle and the cycle path.
    """
    by_name = {spec.name: spec for spec in specs}
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done

    def _visit(name: str, trail: List[str]) -> None:
        state[name] = 1
        for dependency in by_name[name].depends_on:
            if state.get(dependency) == 1:
                cycle = trail[trail.index(dependency):] + [name, dependency]
                raise ConfigError(
                    f"dependency cycle: {' -> '.join(cycle)}", resource=dependency
                )
            if dependency not in state:
                _visit(dependency, trail + [name])
        state[name] = 2

    for spec in specs:
        if spec.name not in state:
            _visit(spec.name, [])
