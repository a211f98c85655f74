"""
Shared column mixins for ORM models.

Organisation-scoped models inherit OrganisationScopedMixin; every query
against them must filter on organisation_id.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """created_at / updated_at columns maintained by the ORM."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Row creation time (UTC)"
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last modification time (UTC)"
    )


class OrganisationScopedMixin:
    """Owning organisation for multi-tenant isolation."""

    organisation_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning organisation - never taken from client input"
    )
