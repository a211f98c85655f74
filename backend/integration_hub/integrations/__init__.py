"""
Provider registry and built-in provider catalog.

Usage:
    from integration_hub.integrations import get_default_registry

    registry = get_default_registry()
    registry.get("jira").tool_names
"""

from integration_hub.integrations.registry import (
    ProviderRegistration,
    ProviderRegistry,
    ToolDeclaration,
    ToolParameter,
    is_system_type,
)
from integration_hub.integrations.catalog import (
    build_default_registry,
    get_default_registry,
)

__all__ = [
    "ProviderRegistration",
    "ProviderRegistry",
    "ToolDeclaration",
    "ToolParameter",
    "is_system_type",
    "build_default_registry",
    "get_default_registry",
]
