"""
Schema Validation - Hostname spec validation.

The Hostname spec schema is expressed as JSON Schema Draft 7 (the dialect
OpenAPI v3 uses) and checked with jsonschema.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

INT32_MAX = 2**31 - 1

# RFC 1123 labels, optional trailing dot
FQDN_PATTERN = (
    r"^(?=.{1,253}\.?$)"
    r"([A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)"
    r"(\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.?$"
)

HOSTNAME_SPEC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["hostname", "ddnsService"],
    "properties": {
        "hostname": {
            "type": "string",
            "minLength": 1,
            "pattern": FQDN_PATTERN,
            "description": "Fully qualified domain name to publish",
        },
        "address": {
            "type": "string",
            "description": "IP address to publish; empty detects the public IP",
            "anyOf": [
                {"maxLength": 0},
                {"format": "ipv4"},
                {"format": "ipv6"},
            ],
        },
        "checkIntervalMinutes": {
            "type": "integer",
            "minimum": 0,
            "maximum": INT32_MAX,
            "description": "Minutes between checks; 0 checks once",
        },
        "ddnsService": {
            "type": "object",
            "required": ["endpoint", "authSecretRef"],
            "properties": {
                "endpoint": {
                    "type": "string",
                    "minLength": 1,
                    "pattern": r"\S",
                    "description": "Provider name or dyndns2 API URL",
                },
                "authSecretRef": {
                    "type": "object",
                    "required": ["name"],
                    "properties": {
                        "name": {"type": "string", "minLength": 1},
                        "namespace": {"type": "string"},
                    },
                    "additionalProperties": False,
                },
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def validate_openapi_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is a valid OpenAPI v3 / JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except Exception as e:
        return False, f"Invalid schema: {str(e)}"


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a spec against an OpenAPI v3 schema.

    Args:
        spec: The document to validate
        schema: The OpenAPI v3 JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
        errors = sorted(
            validator.iter_errors(spec),
            key=lambda e: [str(p) for p in e.absolute_path],
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"
    except Exception as e:
        logger.error(f"Unexpected error during validation: {e}")
        return False, f"Validation failed: {str(e)}"


def validate_hostname_spec(spec: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate a Hostname spec document."""
    return validate_spec_against_schema(spec, HOSTNAME_SPEC_SCHEMA)


def check_hostname_schema(schema: Dict[str, Any] = HOSTNAME_SPEC_SCHEMA) -> None:
    """Fail fast if the built-in Hostname schema is not a valid schema."""
    valid, error = validate_openapi_schema(schema)
    if not valid:
        raise RuntimeError(f"Hostname spec schema is broken: {error}")


check_hostname_schema()
