"""
Value objects for tool catalog requests and responses.

ToolFilterCriteria is parsed from the request's tool-type CSV and never
rejects input; ToolDescriptor renders to the function-calling shape the API
layer returns.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from integration_hub.integrations.registry import (
    SYSTEM_TYPE,
    ToolDeclaration,
    ToolParameter,
    is_system_type,
)


def _ordered_unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen = {}
    for value in values:
        token = value.strip() if isinstance(value, str) else ""
        if token and token not in seen:
            seen[token] = None
    return tuple(seen)


@dataclass(frozen=True)
class ToolFilterCriteria:
    """
    Which tool types a request asked for.

    tool_types keeps first-seen order, trimmed and without empties or
    duplicates. An empty tuple means no filter.
    """
    workflow_user_id: Optional[str] = None
    tool_types: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tool_types", _ordered_unique(self.tool_types))

    @classmethod
    def from_csv(cls, workflow_user_id: Optional[str] = None, csv: Optional[str] = None) -> "ToolFilterCriteria":
        """Parse a comma-separated tool-type list. Never raises."""
        if not csv or not isinstance(csv, str):
            return cls(workflow_user_id=workflow_user_id)
        return cls(workflow_user_id=workflow_user_id, tool_types=tuple(csv.split(",")))

    def has_filter(self) -> bool:
        return bool(self.tool_types)

    def includes_system(self) -> bool:
        return SYSTEM_TYPE in self.tool_types

    def includes_type(self, provider_type: str) -> bool:
        return provider_type in self.tool_types

    def includes_only_system_types(self) -> bool:
        return self.has_filter() and all(is_system_type(t) for t in self.tool_types)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: Tuple[ToolParameter, ...] = field(default=())

    @classmethod
    def from_declaration(
        cls,
        declaration: ToolDeclaration,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "ToolDescriptor":
        return cls(
            name=name or declaration.name,
            description=description or declaration.description,
            parameters=declaration.parameters,
        )

    def parameters_schema(self) -> Dict[str, Any]:
        return ToolDeclaration(self.name, self.description, self.parameters).parameters_schema()

    def to_function(self) -> Dict[str, Any]:
        """Function-calling shape consumed by the API layer."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }
