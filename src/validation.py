"""
Schema Validation - JSON Schema validation utilities.

Provides functions to validate provider schemas, resource configs and
resource names.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError

logger = logging.getLogger(__name__)

# Lowercase letters, digits and hyphens, starting with a letter. Matches the
# naming rules shared by Cloud SQL instances and Cloud Run services.
RESOURCE_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,62}$")


def validate_provider_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a provider's config schema is a valid JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource config against a JSON Schema.

    Args:
        spec: The resource configuration to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    errors = sorted(
        validator.iter_errors(spec),
        key=lambda e: [str(p) for p in e.absolute_path],
    )

    if not errors:
        return True, None

    # Collect all validation errors
    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def validate_resource_name(name: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource name.

    Args:
        name: The declared resource name

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(name, str) or not RESOURCE_NAME_RE.match(name):
        return False, (
            f"Invalid resource name {name!r}. Use lowercase letters, numbers and "
            "hyphens, starting with a letter (max 63 chars)."
        )
    return True, None
