"""
Capability composer - the tool catalog a caller may use right now.

For one request (organisation, optional workflow user, optional tool-type
filter) the composer walks the provider registry in order and emits:

- system providers (no credentials): only when the filter names "system" or
  the provider type; never with an empty filter. Tool names are unsuffixed.
- credentialed providers: one tool set per active instance with a secret,
  each tool name suffixed with the instance id so two accounts of the same
  provider never collide. Descriptions carry the instance's base URL when
  one can be read from its secret.

Instance visibility per workflow user is owned by CredentialStore.

Usage:
    composer = CapabilityComposer(db_session)
    tools = composer.get_tools(organisation_id, workflow_user_id="wf-42", tool_types_csv="jira,system")
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from integration_hub.credentials.encryption import DecryptionFailed, EncryptionVault
from integration_hub.credentials.secrets import SecretValidationError, parse_secret
from integration_hub.credentials.store import CredentialStore, CredentialStoreError
from integration_hub.integrations import ProviderRegistration, ProviderRegistry, get_default_registry
from integration_hub.models.integration_credential import IntegrationCredential
from integration_hub.schemas.tools import ToolDescriptor, ToolFilterCriteria

logger = logging.getLogger(__name__)


class CapabilityComposer:
    """Builds per-request tool catalogs from the registry and stored instances."""

    def __init__(
        self,
        db_session: Session,
        registry: Optional[ProviderRegistry] = None,
        vault: Optional[EncryptionVault] = None,
    ):
        self.db = db_session
        self.registry = registry or get_default_registry()
        self._vault = vault

    def get_tools(
        self,
        organisation_id: str,
        workflow_user_id: Optional[str] = None,
        tool_types_csv: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Composed catalog in function-calling shape."""
        criteria = ToolFilterCriteria.from_csv(workflow_user_id, tool_types_csv)
        return [tool.to_function() for tool in self.compose(organisation_id, criteria)]

    def compose(self, organisation_id: str, criteria: ToolFilterCriteria) -> List[ToolDescriptor]:
        store = CredentialStore(self.db, organisation_id, vault=self._vault, registry=self.registry)

        by_type: Dict[str, List[IntegrationCredential]] = defaultdict(list)
        for instance in store.list_instances(criteria.workflow_user_id):
            by_type[instance.provider_type].append(instance)

        tools: List[ToolDescriptor] = []
        for registration in self.registry:
            instances = by_type.get(registration.type, [])
            if registration.requires_credentials:
                tools.extend(self._credentialed_tools(store, registration, instances, criteria))
            else:
                tools.extend(self._system_tools(registration, instances, criteria))

        logger.debug(
            "Composed tool catalog",
            extra={
                "organisation_id": organisation_id,
                "workflow_user_id": criteria.workflow_user_id,
                "tool_types": list(criteria.tool_types),
                "tool_count": len(tools),
            }
        )

        return tools

    def _system_tools(
        self,
        registration: ProviderRegistration,
        instances: List[IntegrationCredential],
        criteria: ToolFilterCriteria,
    ) -> List[ToolDescriptor]:
        if not criteria.has_filter():
            return []
        if not (criteria.includes_system() or criteria.includes_type(registration.type)):
            return []

        # At most one instance record per system provider carries its settings.
        instance = instances[0] if instances else None
        if instance is not None and not instance.active:
            return []

        disabled = instance.disabled_tool_names if instance is not None else frozenset()
        return [
            ToolDescriptor.from_declaration(tool)
            for tool in registration.declared_tools
            if tool.name not in disabled
        ]

    def _credentialed_tools(
        self,
        store: CredentialStore,
        registration: ProviderRegistration,
        instances: List[IntegrationCredential],
        criteria: ToolFilterCriteria,
    ) -> List[ToolDescriptor]:
        if criteria.includes_only_system_types():
            return []
        if criteria.has_filter() and not criteria.includes_type(registration.type):
            return []

        tools: List[ToolDescriptor] = []
        for instance in instances:
            if not instance.active or not instance.has_credentials:
                continue

            hint = self._instance_hint(store, instance)
            disabled = instance.disabled_tool_names
            for tool in registration.declared_tools:
                if tool.name in disabled:
                    continue
                description = f"{tool.description} ({hint})" if hint else tool.description
                tools.append(ToolDescriptor.from_declaration(
                    tool,
                    name=f"{tool.name}_{instance.id}",
                    description=description,
                ))

        return tools

    def _instance_hint(self, store: CredentialStore, instance: IntegrationCredential) -> Optional[str]:
        """Best-effort base URL from the decrypted secret; None on any failure."""
        try:
            data = store.get_secret_data(instance.id)
            return parse_secret(instance.provider_type, data).instance_hint()
        except (DecryptionFailed, SecretValidationError, CredentialStoreError) as e:
            logger.debug(
                "No instance hint",
                extra={
                    "instance_id": instance.id,
                    "provider_type": instance.provider_type,
                    "error_kind": type(e).__name__,
                }
            )
            return None
