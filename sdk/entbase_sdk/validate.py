"""
Payload validation for EntBase SDK.

This module checks write payloads against an entity type:
- Slug source ('name') presence on create
- Scalar value types through KIND_TRAITS validators, item-wise for list ui types

Invariants:
    - Validation errors are deterministic
    - Error messages include the field name
    - None is accepted for every kind (clears the value)
    - Keys without a matching field are passed through untouched
"""

from __future__ import annotations

import logging
from difflib import get_close_matches
from typing import Any, List, Mapping, Tuple

from .errors import ValidationError
from .schema import EntitySchema

logger = logging.getLogger(__name__)


def require_name(data: Mapping[str, Any]) -> str:
    """Return the non-empty textual 'name' used to derive the slug.

    Raises:
        ValidationError: If 'name' is missing, blank or not a string
    """
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name", "Name field is required for slug generation")
    return name


def collect_errors(schema: EntitySchema, data: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Validate data values against the schema.

    Returns:
        List of (field name, message) pairs, empty when valid
    """
    errors: List[Tuple[str, str]] = []
    known = [f.name for f in schema.fields]
    for key, value in data.items():
        field_spec = schema.get_field(key)
        if field_spec is None:
            suggestions = get_close_matches(key, known, n=3)
            if suggestions:
                logger.debug(
                    "Unknown data key kept as-is",
                    extra={"key": key, "schema_id": schema.id, "suggestions": suggestions},
                )
            continue
        if value is None:
            continue
        if not field_spec.accepts(value):
            errors.append((key, f"expected {field_spec.kind.value}, got {type(value).__name__}"))
    return errors


def validate_data(schema: EntitySchema, data: Mapping[str, Any]) -> None:
    """Validate data values.

    Raises:
        ValidationError: For the first known field carrying a value of the wrong type
    """
    errors = collect_errors(schema, data)
    if errors:
        field_name, message = errors[0]
        raise ValidationError(field_name, message)
