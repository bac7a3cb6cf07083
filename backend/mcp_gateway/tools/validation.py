"""
Tool input validation against a tool's parameter schema.

Checks required keys, primitive types, enums and numeric/length bounds, and
fills in declared defaults. Keys not declared in the schema are dropped
unless the schema allows additional properties.
"""

import copy
from typing import Any

import structlog

from mcp_gateway.core.errors import ValidationError
from mcp_gateway.schemas.tools import ParameterProperty, ToolParameters

logger = structlog.get_logger(__name__)


def _type_matches(expected: str, value: Any) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    # Unknown or "any" types are not checked
    return True


def _coerce(expected: str, value: Any) -> Any:
    """Accept whole floats for integer parameters (models often emit 5.0)."""
    if expected == "integer" and isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _check_value(path: str, schema: ParameterProperty, value: Any) -> Any:
    value = _coerce(schema.type, value)

    if not _type_matches(schema.type, value):
        raise ValidationError(f"Parameter '{path}' must be of type {schema.type}")

    if schema.enum is not None and value not in schema.enum:
        allowed = ", ".join(str(v) for v in schema.enum)
        raise ValidationError(f"Parameter '{path}' must be one of: {allowed}")

    if schema.type in ("integer", "number"):
        if schema.minimum is not None and value < schema.minimum:
            raise ValidationError(f"Parameter '{path}' must be >= {schema.minimum:g}")
        if schema.maximum is not None and value > schema.maximum:
            raise ValidationError(f"Parameter '{path}' must be <= {schema.maximum:g}")

    if schema.type == "string":
        if schema.min_length is not None and len(value) < schema.min_length:
            raise ValidationError(f"Parameter '{path}' must be at least {schema.min_length} characters")
        if schema.max_length is not None and len(value) > schema.max_length:
            raise ValidationError(f"Parameter '{path}' must be at most {schema.max_length} characters")

    if schema.type == "array" and schema.items is not None:
        value = [_check_value(f"{path}[{i}]", schema.items, item) for i, item in enumerate(value)]

    if schema.type == "object" and schema.properties:
        for name in schema.required or []:
            if value.get(name) is None:
                raise ValidationError(f"Missing required parameter: {path}.{name}")
        checked = dict(value)
        for name, child in schema.properties.items():
            if value.get(name) is not None:
                checked[name] = _check_value(f"{path}.{name}", child, value[name])
        value = checked

    return value


def validate_tool_input(tool_name: str, parameters: ToolParameters, data: Any) -> dict[str, Any]:
    """
    Validate and normalize the input of one tool call.

    Args:
        tool_name: Tool being called (for messages and logs)
        parameters: The tool's parameter schema
        data: Raw input

    Returns:
        The input with defaults applied

    Raises:
        ValidationError: On a missing required parameter or a type/enum/bounds violation
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Input for tool '{tool_name}' must be an object")

    for name in parameters.required:
        if data.get(name) is None or data.get(name) == "":
            raise ValidationError(f"Missing required parameter: {name}")

    validated: dict[str, Any] = {}
    for name, schema in parameters.properties.items():
        if data.get(name) is not None:
            validated[name] = _check_value(name, schema, data[name])
        elif schema.default is not None:
            validated[name] = copy.deepcopy(schema.default)

    unknown = [key for key in data if key not in parameters.properties]
    if unknown:
        if parameters.additional_properties:
            validated.update({key: data[key] for key in unknown})
        else:
            logger.debug("Ignoring undeclared tool parameters", tool_name=tool_name, keys=unknown)

    return validated
