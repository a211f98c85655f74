"""
OrganisationMember model - maps platform users to agent workflow users.

The agent platform identifies callers by workflow user id; credential
instances are owned by platform users. This table joins the two per
organisation.
"""

import uuid

from sqlalchemy import Column, String, UniqueConstraint

from integration_hub.db_base import Base
from integration_hub.models.base import OrganisationScopedMixin, TimestampMixin


class OrganisationMember(Base, TimestampMixin, OrganisationScopedMixin):
    __tablename__ = "organisation_members"

    id = Column(
        String(64),
        primary_key=True,
        default=lambda: uuid.uuid4().hex,
    )
    user_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Platform user id"
    )
    workflow_user_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="User id as known to the agent workflow platform"
    )

    __table_args__ = (
        UniqueConstraint("organisation_id", "user_id", name="uq_organisation_members_org_user"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrganisationMember(organisation_id={self.organisation_id}, "
            f"user_id={self.user_id}, workflow_user_id={self.workflow_user_id})>"
        )
