"""
Output references between resources.

A config string may embed ``{{ <resource>.<attribute> }}``. The referenced
resource becomes a dependency, and the placeholder is replaced by the
attribute from that resource's observed state or apply outputs.
"""

import re
from typing import Any, List, Mapping, Tuple

REFERENCE_RE = re.compile(
    r"\{\{\s*([a-z][a-z0-9-]*)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}"
)


class UnresolvedReference(KeyError):
    """A referenced resource or attribute has no value yet."""

    def __init__(self, resource: str, attribute: str):
        self.resource = resource
        self.attribute = attribute
        super().__init__(f"{resource}.{attribute}")


def find_references(value: Any) -> List[Tuple[str, str]]:
    """
    Collect every ``(resource, attribute)`` reference in a config value.

    Walks nested dicts and lists. Order of first appearance is kept and
    duplicates are dropped.
    """
    found: List[Tuple[str, str]] = []

    def _walk(node: Any) -> None:
        if isinstance(node, str):
            for match in REFERENCE_RE.finditer(node):
                ref = (match.group(1), match.group(2))
                if ref not in found:
                    found.append(ref)
        elif isinstance(node, Mapping):
            for item in node.values():
                _walk(item)
        elif isinstance(node, (list, tuple)):
            for item in node:
                _walk(item)

    _walk(value)
    return found


def resolve_references(
    value: Any, outputs: Mapping[str, Mapping[str, Any]]
) -> Any:
    """
    Substitute references in a config value.

    A string that is exactly one reference takes the attribute's value
    unchanged (so lists and numbers survive). Embedded references are
    formatted into the surrounding text.

    Raises:
        UnresolvedReference: If a resource or attribute has no value.
    """
    if isinstance(value, str):
        whole = REFERENCE_RE.fullmatch(value.strip())
        if whole:
            return _lookup(outputs, whole.group(1), whole.group(2))
        return REFERENCE_RE.sub(
            lambda m: str(_lookup(outputs, m.group(1), m.group(2))), value
        )
    if isinstance(value, Mapping):
        return {k: resolve_references(v, outputs) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_references(v, outputs) for v in value]
    return value


def _lookup(
    outputs: Mapping[str, Mapping[str, Any]], resource: str, attribute: str
) -> Any:
    attrs = outputs.get(resource)
    if attrs is None or attrs.get(attribute) is None:
        raise UnresolvedReference(resource, attribute)
    return attrs[attribute]

