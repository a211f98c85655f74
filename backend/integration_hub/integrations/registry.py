"""
Static provider registry.

Each provider type declares whether it needs per-instance credentials and
which tools it exposes. The registry is built once at startup and is
read-only afterwards; iteration order is registration order, which is also
the order of the composed tool catalog.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

SYSTEM_TYPE = "system"
SYSTEM_TYPE_PREFIX = "system."


def is_system_type(provider_type: str) -> bool:
    return provider_type == SYSTEM_TYPE or provider_type.startswith(SYSTEM_TYPE_PREFIX)


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool as declared by its provider."""
    name: str
    description: str
    parameters: Tuple[ToolParameter, ...] = ()

    def parameters_schema(self) -> dict:
        """
        Render parameters as a JSON-schema object.

        `required` lists the required parameter names in declaration order.
        """
        return {
            "type": "object",
            "properties": {
                param.name: {"type": param.type, "description": param.description}
                for param in self.parameters
            },
            "required": [param.name for param in self.parameters if param.required],
        }


@dataclass(frozen=True)
class ProviderRegistration:
    type: str
    name: str
    requires_credentials: bool
    declared_tools: Tuple[ToolDeclaration, ...] = ()

    @property
    def tool_names(self) -> Tuple[str, ...]:
        return tuple(tool.name for tool in self.declared_tools)


class ProviderRegistry:
    """
    Ordered, read-only map of provider type to registration.

    Raises ValueError at build time on duplicate provider types or on a tool
    name declared by two providers, so composed catalogs cannot collide.
    """

    def __init__(self, registrations: Iterable[ProviderRegistration] = ()):
        providers: Dict[str, ProviderRegistration] = {}
        tool_owner: Dict[str, str] = {}

        for registration in registrations:
            if registration.type in providers:
                raise ValueError(f"Provider type '{registration.type}' already registered")
            if not registration.requires_credentials and not is_system_type(registration.type):
                logger.warning(
                    "Credential-free provider outside the system namespace",
                    extra={"provider_type": registration.type},
                )
            for tool_name in registration.tool_names:
                if tool_name in tool_owner:
                    raise ValueError(
                        f"Duplicate tool name '{tool_name}' found. "
                        f"Existing: {tool_owner[tool_name]}, "
                        f"New: {registration.type}"
                    )
                tool_owner[tool_name] = registration.type
            providers[registration.type] = registration

        self._providers = MappingProxyType(providers)

    def __contains__(self, provider_type: object) -> bool:
        return provider_type in self._providers

    def __iter__(self) -> Iterator[ProviderRegistration]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def get(self, provider_type: str) -> Optional[ProviderRegistration]:
        return self._providers.get(provider_type)

    def all(self) -> List[ProviderRegistration]:
        return list(self._providers.values())

    def types(self) -> List[str]:
        return list(self._providers.keys())

    def declared_tool_names(self, provider_type: str) -> Tuple[str, ...]:
        registration = self._providers.get(provider_type)
        return registration.tool_names if registration else ()
