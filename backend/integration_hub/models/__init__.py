"""
Database models for integration credential instances.

All models follow strict organisation isolation patterns.
Organisation-scoped models inherit from OrganisationScopedMixin.
"""

from integration_hub.models.base import TimestampMixin, OrganisationScopedMixin
from integration_hub.models.integration_credential import (
    IntegrationCredential,
    ConnectionState,
)
from integration_hub.models.organisation_member import OrganisationMember

__all__ = [
    "TimestampMixin",
    "OrganisationScopedMixin",
    "IntegrationCredential",
    "ConnectionState",
    "OrganisationMember",
]
