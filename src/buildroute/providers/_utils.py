"""Shared utilities for model client implementations."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from buildroute.errors import APIError


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict function calling.

    For every object node (``$defs`` included):
    1. additionalProperties is False
    2. All defined properties are listed in 'required'
    """
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated = {key: walk(value) for key, value in node.items()}
        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                updated["required"] = list(properties.keys())
        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise APIError("Invalid tool parameters: expected object schema")
    return result


def tool_definitions(tools: tuple[dict[str, Any], ...]) -> list[dict[str, Any]]:
    """Convert ``{"name", "description", "parameters"}`` tools to chat-completions form."""
    definitions: list[dict[str, Any]] = []
    for tool in tools:
        function: dict[str, Any] = {"name": tool["name"], "strict": True}
        if "description" in tool:
            function["description"] = tool["description"]
        params = tool.get("parameters")
        if isinstance(params, dict):
            function["parameters"] = to_strict_schema(params)
        definitions.append({"type": "function", "function": function})
    return definitions
