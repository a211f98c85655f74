"""
IntegrationCredential model - one configured connection to a third-party provider.

SECURITY REQUIREMENTS:
- encrypted_secret holds an EncryptionVault blob; plaintext never touches the DB
- The secret is NEVER included in repr(), to_safe_dict() or logs
- Organisation-scoped access only

Lifecycle:
- active is an owner toggle, independent of connection health
- connection_state is driven by provider failure classification
"""

import enum
import uuid

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, Index, JSON, String, Text, UniqueConstraint,
)

from integration_hub.db_base import Base
from integration_hub.models.base import OrganisationScopedMixin, TimestampMixin

MAX_DISCONNECT_REASON_LENGTH = 500


class ConnectionState(str, enum.Enum):
    """Connection health as last observed against the provider."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class IntegrationCredential(Base, TimestampMixin, OrganisationScopedMixin):
    """
    A credential instance for one provider account.

    Instances without an owner are organisation-wide; owned instances are
    visible only to their owner's workflow user.
    """

    __tablename__ = "integration_credentials"

    id = Column(
        String(64),
        primary_key=True,
        default=lambda: uuid.uuid4().hex,
        comment="Primary key; also used as the tool-name suffix"
    )
    owner_user_id = Column(
        String(255),
        nullable=True,
        comment="Owning platform user; NULL for organisation-wide instances"
    )
    provider_type = Column(
        String(100),
        nullable=False,
        comment="Provider registry key (jira, hubspot, system.web_search, ...)"
    )
    display_name = Column(
        String(255),
        nullable=False,
        comment="Unique per organisation and owner scope"
    )

    # Encrypted secret - NEVER log this value
    encrypted_secret = Column(
        Text,
        nullable=True,
        comment="EncryptionVault blob of the provider secret - NEVER log"
    )

    active = Column(
        Boolean,
        default=True,
        nullable=False,
        comment="Owner toggle; inactive instances contribute no tools"
    )
    disabled_tools = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Declared tool names the owner opted out of"
    )

    connection_state = Column(
        Enum(ConnectionState),
        default=ConnectionState.CONNECTED,
        nullable=False,
        comment="CONNECTED / DISCONNECTED"
    )
    last_disconnect_reason = Column(
        String(MAX_DISCONNECT_REASON_LENGTH),
        nullable=True,
        comment="Why the instance was last disconnected (truncated)"
    )
    disconnected_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the instance was marked disconnected"
    )
    last_accessed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the instance was last used for a provider call"
    )

    __table_args__ = (
        Index("ix_integration_credentials_org_provider", "organisation_id", "provider_type"),
        Index("ix_integration_credentials_org_owner", "organisation_id", "owner_user_id"),
        UniqueConstraint(
            "organisation_id", "owner_user_id", "display_name",
            name="uq_integration_credentials_org_owner_name"
        ),
    )

    def __repr__(self) -> str:
        """Safe repr - NEVER include the secret."""
        return (
            f"<IntegrationCredential("
            f"id={self.id}, "
            f"provider_type={self.provider_type}, "
            f"display_name={self.display_name}, "
            f"active={self.active}, "
            f"connection_state={self.connection_state})>"
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.encrypted_secret)

    @property
    def is_connected(self) -> bool:
        return self.connection_state != ConnectionState.DISCONNECTED

    @property
    def disabled_tool_names(self) -> frozenset:
        return frozenset(self.disabled_tools or ())

    def is_tool_disabled(self, tool_name: str) -> bool:
        return tool_name in self.disabled_tool_names

    def to_safe_dict(self) -> dict:
        """Metadata safe for API responses and logs."""
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "owner_user_id": self.owner_user_id,
            "provider_type": self.provider_type,
            "display_name": self.display_name,
            "active": self.active,
            "has_credentials": self.has_credentials,
            "disabled_tools": list(self.disabled_tools or []),
            "connection_state": self.connection_state.value if self.connection_state else None,
            "last_disconnect_reason": self.last_disconnect_reason,
            "disconnected_at": self.disconnected_at.isoformat() if self.disconnected_at else None,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
