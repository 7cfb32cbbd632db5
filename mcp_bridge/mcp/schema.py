"""Argument validation against a tool's declared parameter schema."""

import copy
from typing import Any

from jsonschema import Draft202012Validator

from mcp_bridge.mcp.errors import InvalidArguments
from mcp_bridge.mcp.models import ToolDescriptor


def input_schema(descriptor: ToolDescriptor) -> dict[str, Any]:
    """Render the parameter schema as JSON Schema for ``tools/list``."""
    properties: dict[str, Any] = {}
    for param in descriptor.parameters:
        prop: dict[str, Any] = {}
        if param.type != "any":
            prop["type"] = param.type
        if param.description:
            prop["description"] = param.description
        if not param.required and param.default is not None:
            prop["default"] = param.default
        properties[param.name] = prop

    return {
        "type": "object",
        "properties": properties,
        "required": [p.name for p in descriptor.parameters if p.required],
        "additionalProperties": descriptor.allow_extra,
    }


def _violations(descriptor: ToolDescriptor, arguments: dict[str, Any]) -> list[dict[str, str]]:
    """Every schema error for the arguments, in parameter order."""
    schema = input_schema(descriptor)
    declared = [param.name for param in descriptor.parameters]
    missing = iter([name for name in schema["required"] if name not in arguments])

    violations: list[dict[str, str]] = []
    for error in Draft202012Validator(schema).iter_errors(arguments):
        if error.validator == "required":
            # One error per absent name, raised in the order they are declared
            violations.append({
                "parameter": next(missing),
                "reason": "missing",
                "message": error.message,
            })
        elif error.validator == "additionalProperties":
            violations.extend(
                {
                    "parameter": name,
                    "reason": "unexpected",
                    "message": f"unexpected parameter '{name}'",
                }
                for name in arguments
                if name not in schema["properties"]
            )
        elif error.path:
            violations.append({
                "parameter": str(error.path[0]),
                "reason": "type",
                "message": error.message,
            })

    def position(violation: dict[str, str]) -> int:
        name = violation["parameter"]
        return declared.index(name) if name in declared else len(declared)

    return sorted(violations, key=position)


def validate_arguments(descriptor: ToolDescriptor, arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Check arguments against the descriptor and bind defaults.

    Every violation is collected before raising, so the caller learns about
    all offending parameters at once. An explicit ``null`` for an optional
    parameter counts as omitted.

    Returns:
        The bound arguments, declared parameters first in schema order.

    Raises:
        InvalidArguments: listing each missing, mistyped or unexpected parameter.
    """
    optional = {param.name for param in descriptor.parameters if not param.required}
    arguments = {
        name: value
        for name, value in arguments.items()
        if not (value is None and name in optional)
    }

    violations = _violations(descriptor, arguments)
    if violations:
        raise InvalidArguments(violations)

    bound: dict[str, Any] = {}
    for param in descriptor.parameters:
        if param.name in arguments:
            bound[param.name] = arguments[param.name]
        else:
            bound[param.name] = copy.deepcopy(param.default)
    for name, value in arguments.items():
        if name not in bound:
            bound[name] = value
    return bound
