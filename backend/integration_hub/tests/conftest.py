"""Shared fixtures for integration hub tests."""

import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from integration_hub.config import settings as settings_module
from integration_hub.credentials import encryption as encryption_module
from integration_hub.credentials.encryption import EncryptionVault
from integration_hub.db_base import Base
from integration_hub.integrations import (
    ProviderRegistration,
    ProviderRegistry,
    ToolDeclaration,
    ToolParameter,
    build_default_registry,
)


TEST_ENCRYPTION_KEY = "test-integration-hub-key-32-byte"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Each test starts with a fresh settings/vault singleton and a known key."""
    monkeypatch.setenv("INTEGRATION_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings_module, "_settings", None)
    monkeypatch.setattr(encryption_module, "_vault", None)
    yield


@pytest.fixture
def vault() -> EncryptionVault:
    return EncryptionVault(key=EncryptionVault.generate_key())


@pytest.fixture
def db_session():
    """Create in-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:")

    # Import models to register with Base
    from integration_hub.models import IntegrationCredential, OrganisationMember  # noqa: F401

    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def organisation_id() -> str:
    return f"org-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def registry() -> ProviderRegistry:
    return build_default_registry()


@pytest.fixture
def small_registry() -> ProviderRegistry:
    """Registry with one credentialed and one system provider."""
    return ProviderRegistry([
        ProviderRegistration(
            type="jira",
            name="Jira",
            requires_credentials=True,
            declared_tools=(
                ToolDeclaration(
                    "jira_search",
                    "Search issues with JQL",
                    (
                        ToolParameter("jql", "string", "JQL query", required=True),
                        ToolParameter("maxResults", "integer", "Result limit"),
                    ),
                ),
                ToolDeclaration(
                    "jira_get_issue",
                    "Get an issue",
                    (ToolParameter("issueKey", "string", "Issue key", required=True),),
                ),
                ToolDeclaration(
                    "jira_delete_issue",
                    "Delete an issue",
                    (ToolParameter("issueKey", "string", "Issue key", required=True),),
                ),
            ),
        ),
        ProviderRegistration(
            type="system.calendar",
            name="Calendar",
            requires_credentials=False,
            declared_tools=(
                ToolDeclaration("calendar_list_events", "List upcoming events"),
                ToolDeclaration("calendar_create_event", "Create an event"),
            ),
        ),
    ])

