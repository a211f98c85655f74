"""
Credential store - system of record for integration credential instances.

SECURITY REQUIREMENTS:
- Secrets are validated against their provider variant, then encrypted
  before they reach the database
- No plaintext secrets outside process memory
- Organisation-scoped access only; instance visibility per workflow user
  is decided here and nowhere else

Usage:
    store = CredentialStore(db_session, organisation_id)

    instance = store.create_instance(
        "gitlab",
        {"gitlab_url": "https://gitlab.example.com", "api_token": "glpat-..."},
    )
    instances = store.list_instances(workflow_user_id="wf-42")
    secret = store.get_secret(instance.id)   # typed ProviderSecret
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from integration_hub.credentials.encryption import EncryptionVault, get_vault
from integration_hub.credentials.redaction import AuditEventType, CredentialAuditLogger
from integration_hub.credentials.secrets import (
    ProviderSecret,
    SecretValidationError,
    parse_secret,
)
from integration_hub.integrations import ProviderRegistration, ProviderRegistry, get_default_registry
from integration_hub.models.base import utcnow
from integration_hub.models.integration_credential import (
    MAX_DISCONNECT_REASON_LENGTH,
    ConnectionState,
    IntegrationCredential,
)
from integration_hub.models.organisation_member import OrganisationMember
from integration_hub.platform.errors import AppError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_ELLIPSIS = "..."


class CredentialStoreError(AppError):
    """Base exception for credential store errors."""
    pass


class CredentialNotFoundError(CredentialStoreError, NotFoundError):
    """Instance not found or not accessible to this organisation."""

    def __init__(self, instance_id: str):
        super().__init__("Credential instance", instance_id)
        self.instance_id = instance_id


class MissingSecretError(CredentialStoreError, NotFoundError):
    """Instance exists but has no stored secret."""

    def __init__(self, instance_id: str):
        super().__init__("Credentials for instance", instance_id)
        self.instance_id = instance_id


class DuplicateDisplayNameError(CredentialStoreError, ConflictError):
    def __init__(self, display_name: str):
        super().__init__(
            f"An integration named '{display_name}' already exists",
            details={"display_name": display_name},
        )


class UnknownProviderError(CredentialStoreError, ValidationError):
    def __init__(self, provider_type: str):
        super().__init__(
            f"Unknown provider type '{provider_type}'",
            details={"provider_type": provider_type},
        )


class UnknownToolError(CredentialStoreError, ValidationError):
    """Disabled-tool names must be declared by the instance's provider."""

    def __init__(self, provider_type: str, tool_names: List[str]):
        super().__init__(
            f"Tools not declared by provider '{provider_type}': {', '.join(tool_names)}",
            details={"provider_type": provider_type, "tool_names": tool_names},
        )


def truncate_disconnect_reason(reason: str) -> str:
    """Cap a disconnect reason at 500 characters, ending in '...' when cut."""
    if len(reason) <= MAX_DISCONNECT_REASON_LENGTH:
        return reason
    return reason[:MAX_DISCONNECT_REASON_LENGTH - len(_ELLIPSIS)] + _ELLIPSIS


class CredentialStore:
    """
    Organisation-scoped access to credential instances.

    All reads and writes are filtered by organisation_id. Secrets are
    encrypted with the process-wide EncryptionVault unless one is injected.
    """

    def __init__(
        self,
        db_session: Session,
        organisation_id: str,
        vault: Optional[EncryptionVault] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        """
        Initialize credential store.

        Args:
            db_session: Database session
            organisation_id: Owning organisation (from the authenticated context)
            vault: Encryption vault; defaults to the process-wide vault
            registry: Provider registry; defaults to the built-in catalog

        Raises:
            ValueError: If organisation_id is not provided
        """
        if not organisation_id:
            raise ValueError("organisation_id is required")

        self.db = db_session
        self.organisation_id = organisation_id
        self.registry = registry or get_default_registry()
        self.audit = CredentialAuditLogger(organisation_id)
        self._vault = vault

    @property
    def vault(self) -> EncryptionVault:
        if self._vault is None:
            self._vault = get_vault()
        return self._vault

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_instances(self, workflow_user_id: Optional[str] = None) -> List[IntegrationCredential]:
        """
        List instances visible to a workflow user.

        Without a workflow user every instance of the organisation is
        returned. With one, organisation-wide instances (no owner) plus those
        owned by the platform user mapped to that workflow user.
        """
        query = self.db.query(IntegrationCredential).filter(
            IntegrationCredential.organisation_id == self.organisation_id,
        )

        if workflow_user_id:
            owner_ids = select(OrganisationMember.user_id).where(
                OrganisationMember.organisation_id == self.organisation_id,
                OrganisationMember.workflow_user_id == workflow_user_id,
            )
            query = query.filter(
                or_(
                    IntegrationCredential.owner_user_id.is_(None),
                    IntegrationCredential.owner_user_id.in_(owner_ids),
                )
            )

        return query.order_by(
            IntegrationCredential.provider_type,
            IntegrationCredential.created_at,
            IntegrationCredential.id,
        ).all()

    def get_instance(self, instance_id: str) -> IntegrationCredential:
        instance = self.db.query(IntegrationCredential).filter(
            IntegrationCredential.id == instance_id,
            IntegrationCredential.organisation_id == self.organisation_id,
        ).first()

        if not instance:
            raise CredentialNotFoundError(instance_id)

        return instance

    def get_decrypted_secret(self, instance_id: str) -> bytes:
        """
        Decrypt the stored secret of an instance.

        Reads the column straight from the database so a secret persisted by
        another session is never served from the identity map.

        Raises:
            CredentialNotFoundError: Unknown instance
            MissingSecretError: Instance has no secret
            DecryptionFailed: Stored blob is corrupt or was encrypted with another key
        """
        return self.vault.decrypt(self._load_encrypted_secret(instance_id))

    def get_secret_data(self, instance_id: str, for_update: bool = False) -> Dict[str, Any]:
        """
        Decrypted secret as a plain dict.

        With for_update the row is read with SELECT ... FOR UPDATE. The
        row lock is held until the session's transaction ends.
        """
        return self.vault.decrypt_json(self._load_encrypted_secret(instance_id, for_update=for_update))

    def get_secret(self, instance_id: str) -> ProviderSecret:
        """
        Decrypt and validate the secret against its provider variant.

        Raises:
            SecretValidationError: Stored secret no longer matches its variant
        """
        instance = self.get_instance(instance_id)
        return parse_secret(instance.provider_type, self.get_secret_data(instance_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_instance(
        self,
        provider_type: str,
        secret: Optional[Mapping[str, Any]] = None,
        display_name: Optional[str] = None,
        owner_user_id: Optional[str] = None,
        active: bool = True,
    ) -> IntegrationCredential:
        """
        Create a credential instance.

        Raises:
            UnknownProviderError: provider_type is not registered
            SecretValidationError: secret missing or invalid for the provider
            DuplicateDisplayNameError: name already used in the owner scope
        """
        registration = self.registry.get(provider_type)
        if registration is None:
            raise UnknownProviderError(provider_type)

        encrypted_secret = None
        if registration.requires_credentials:
            if secret is None:
                raise SecretValidationError(provider_type, f"Credentials are required for {provider_type}")
            encrypted_secret = self._encrypt_secret(provider_type, secret)
        elif secret:
            raise SecretValidationError(provider_type, f"{provider_type} does not take credentials")

        if display_name and display_name.strip():
            name = display_name.strip()
            self._ensure_unique_display_name(name, owner_user_id)
        else:
            name = self._default_display_name(registration, owner_user_id)

        instance = IntegrationCredential(
            organisation_id=self.organisation_id,
            owner_user_id=owner_user_id,
            provider_type=provider_type,
            display_name=name,
            encrypted_secret=encrypted_secret,
            active=active,
            disabled_tools=[],
            connection_state=ConnectionState.CONNECTED,
        )

        self.db.add(instance)
        self.db.flush()

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_CREATED,
            instance_id=instance.id,
            provider_type=provider_type,
            display_name=name,
            metadata={"owner_user_id": owner_user_id},
        )

        logger.info(
            "Integration instance created",
            extra={
                "instance_id": instance.id,
                "organisation_id": self.organisation_id,
                "provider_type": provider_type,
            }
        )

        return instance

    def update_secret(self, instance_id: str, secret: Mapping[str, Any]) -> IntegrationCredential:
        """Validate, encrypt and store a replacement secret."""
        instance = self.get_instance(instance_id)
        instance.encrypted_secret = self._encrypt_secret(instance.provider_type, secret)
        self.db.flush()

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_UPDATED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=instance.display_name,
            metadata={"field": "secret"},
        )

        return instance

    def persist_secret(self, instance_id: str, opaque: str) -> None:
        """
        Store an already-encrypted secret in a single UPDATE.

        Commits the caller's session before returning, including any other
        pending changes in it. This releases the row lock taken by
        get_secret_data(for_update=True) and makes the new tokens visible to
        other sessions; callers hold the per-instance refresh lock across
        this call.
        """
        updated = self.db.query(IntegrationCredential).filter(
            IntegrationCredential.id == instance_id,
            IntegrationCredential.organisation_id == self.organisation_id,
        ).update(
            {
                IntegrationCredential.encrypted_secret: opaque,
                IntegrationCredential.updated_at: utcnow(),
            }
        )

        if not updated:
            raise CredentialNotFoundError(instance_id)

        self.db.commit()

    def set_connection_state(
        self,
        instance_id: str,
        state: ConnectionState,
        reason: Optional[str] = None,
    ) -> IntegrationCredential:
        """Set connection health; the secret is never touched."""
        instance = self.get_instance(instance_id)

        instance.connection_state = state
        if state == ConnectionState.DISCONNECTED:
            instance.last_disconnect_reason = truncate_disconnect_reason(reason) if reason else None
            instance.disconnected_at = utcnow()
        else:
            instance.last_disconnect_reason = None
            instance.disconnected_at = None

        self.db.flush()
        return instance

    def set_active(self, instance_id: str, active: bool) -> IntegrationCredential:
        instance = self.get_instance(instance_id)
        instance.active = active
        self.db.flush()

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_UPDATED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=instance.display_name,
            metadata={"field": "active", "active": active},
        )
        return instance

    def rename_instance(self, instance_id: str, display_name: str) -> IntegrationCredential:
        instance = self.get_instance(instance_id)
        name = (display_name or "").strip()
        if not name:
            raise ValidationError("display_name must not be empty")
        if name != instance.display_name:
            self._ensure_unique_display_name(name, instance.owner_user_id)
            instance.display_name = name
            self.db.flush()
        return instance

    def set_disabled_tools(self, instance_id: str, tool_names: Iterable[str]) -> IntegrationCredential:
        """
        Replace the set of disabled tools.

        Raises:
            UnknownToolError: A name is not declared by the provider
        """
        instance = self.get_instance(instance_id)
        declared = self.registry.declared_tool_names(instance.provider_type)

        requested = list(tool_names)
        unknown = [name for name in requested if name not in declared]
        if unknown:
            raise UnknownToolError(instance.provider_type, unknown)

        wanted = set(requested)
        instance.disabled_tools = [name for name in declared if name in wanted]
        self.db.flush()

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_UPDATED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=instance.display_name,
            metadata={"field": "disabled_tools", "disabled_tools": instance.disabled_tools},
        )
        return instance

    def touch(self, instance_id: str) -> None:
        """Record that the instance was just used."""
        instance = self.get_instance(instance_id)
        instance.last_accessed_at = utcnow()
        self.db.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_encrypted_secret(self, instance_id: str, for_update: bool = False) -> str:
        query = self.db.query(IntegrationCredential.encrypted_secret).filter(
            IntegrationCredential.id == instance_id,
            IntegrationCredential.organisation_id == self.organisation_id,
        )
        if for_update:
            query = query.with_for_update()
        row = query.first()

        if row is None:
            raise CredentialNotFoundError(instance_id)
        if not row[0]:
            raise MissingSecretError(instance_id)

        return row[0]

    def _encrypt_secret(self, provider_type: str, secret: Mapping[str, Any]) -> str:
        validated = parse_secret(provider_type, secret)
        return self.vault.encrypt_json(validated.model_dump(exclude_none=True))

    def _owner_scope_filter(self, owner_user_id: Optional[str]):
        if owner_user_id is None:
            return IntegrationCredential.owner_user_id.is_(None)
        return IntegrationCredential.owner_user_id == owner_user_id

    def _display_name_taken(self, display_name: str, owner_user_id: Optional[str]) -> bool:
        return self.db.query(IntegrationCredential.id).filter(
            IntegrationCredential.organisation_id == self.organisation_id,
            self._owner_scope_filter(owner_user_id),
            IntegrationCredential.display_name == display_name,
        ).first() is not None

    def _ensure_unique_display_name(self, display_name: str, owner_user_id: Optional[str]) -> None:
        if self._display_name_taken(display_name, owner_user_id):
            raise DuplicateDisplayNameError(display_name)

    def _default_display_name(
        self,
        registration: ProviderRegistration,
        owner_user_id: Optional[str],
    ) -> str:
        """Provider name, numbered from 2 when instances of the type already exist."""
        existing = self.db.query(IntegrationCredential.id).filter(
            IntegrationCredential.organisation_id == self.organisation_id,
            self._owner_scope_filter(owner_user_id),
            IntegrationCredential.provider_type == registration.type,
        ).count()

        number = existing + 1
        name = registration.name if existing == 0 else f"{registration.name} {number}"
        while self._display_name_taken(name, owner_user_id):
            number += 1
            name = f"{registration.name} {number}"
        return name
