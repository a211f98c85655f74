"""
Tests for CredentialStore.

Validates:
- Secrets are validated and encrypted before reaching the database
- Organisation isolation and per-workflow-user visibility
- Display name defaults and uniqueness per owner scope
- Disabled-tool validation, connection state and secret persistence
"""

import pytest

from integration_hub.credentials.secrets import JiraSecret, SecretValidationError
from integration_hub.credentials.store import (
    CredentialNotFoundError,
    CredentialStore,
    DuplicateDisplayNameError,
    MissingSecretError,
    UnknownProviderError,
    UnknownToolError,
    truncate_disconnect_reason,
)
from integration_hub.models import ConnectionState, IntegrationCredential, OrganisationMember
from integration_hub.platform.errors import ValidationError


JIRA_SECRET = {
    "url": "https://acme.atlassian.net/",
    "username": "ops@acme.example",
    "api_token": "ATATT-jira-token-value",
}


@pytest.fixture
def store(db_session, organisation_id, vault, small_registry) -> CredentialStore:
    return CredentialStore(db_session, organisation_id, vault=vault, registry=small_registry)


def add_member(db_session, organisation_id, user_id, workflow_user_id):
    db_session.add(OrganisationMember(
        organisation_id=organisation_id,
        user_id=user_id,
        workflow_user_id=workflow_user_id,
    ))
    db_session.flush()


# =============================================================================
# CONSTRUCTION
# =============================================================================


class TestConstruction:

    def test_organisation_id_required(self, db_session, vault):
        with pytest.raises(ValueError, match="organisation_id"):
            CredentialStore(db_session, "", vault=vault)

    def test_vault_defaults_to_process_vault(self, db_session, organisation_id):
        store = CredentialStore(db_session, organisation_id)
        assert store.vault is not None
        assert store.vault is store.vault


# =============================================================================
# CREATE
# =============================================================================


class TestCreateInstance:

    def test_secret_is_encrypted_at_rest(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        assert instance.encrypted_secret
        assert "ATATT-jira-token-value" not in instance.encrypted_secret
        assert instance.has_credentials is True
        assert instance.connection_state == ConnectionState.CONNECTED
        assert instance.disabled_tools == []

    def test_secret_round_trips_as_typed_variant(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        secret = store.get_secret(instance.id)
        assert isinstance(secret, JiraSecret)
        assert secret.url == "https://acme.atlassian.net"
        assert store.get_secret_data(instance.id)["api_token"] == "ATATT-jira-token-value"

    def test_stored_secret_omits_unset_fields(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)
        assert "refresh_token" not in store.get_secret_data(instance.id)

    def test_invalid_secret_is_rejected_before_insert(self, store, db_session):
        with pytest.raises(SecretValidationError):
            store.create_instance("jira", {"url": "https://acme.atlassian.net"})
        assert db_session.query(IntegrationCredential).count() == 0

    def test_missing_secret_for_credentialed_provider(self, store):
        with pytest.raises(SecretValidationError, match="required"):
            store.create_instance("jira")

    def test_unknown_provider(self, store):
        with pytest.raises(UnknownProviderError) as exc_info:
            store.create_instance("salesforce", {})
        assert exc_info.value.status_code == 400

    def test_system_provider_takes_no_secret(self, store):
        instance = store.create_instance("system.calendar")
        assert instance.encrypted_secret is None
        assert instance.has_credentials is False

        with pytest.raises(SecretValidationError):
            store.create_instance("system.calendar", {"api_key": "x"}, display_name="Other")

    def test_missing_secret_read(self, store):
        instance = store.create_instance("system.calendar")
        with pytest.raises(MissingSecretError):
            store.get_secret_data(instance.id)


# =============================================================================
# DISPLAY NAMES
# =============================================================================


class TestDisplayNames:

    def test_default_names_are_numbered(self, store):
        first = store.create_instance("jira", JIRA_SECRET)
        second = store.create_instance("jira", JIRA_SECRET)
        third = store.create_instance("jira", JIRA_SECRET)

        assert [first.display_name, second.display_name, third.display_name] == ["Jira", "Jira 2", "Jira 3"]

    def test_default_name_skips_taken_names(self, store):
        store.create_instance("jira", JIRA_SECRET, display_name="Jira 2")
        instance = store.create_instance("jira", JIRA_SECRET)
        assert instance.display_name == "Jira 3"

    def test_owner_scopes_are_independent(self, store):
        org_wide = store.create_instance("jira", JIRA_SECRET)
        owned = store.create_instance("jira", JIRA_SECRET, owner_user_id="user-1")
        assert org_wide.display_name == owned.display_name == "Jira"

    def test_duplicate_name_conflicts(self, store):
        store.create_instance("jira", JIRA_SECRET, display_name="Prod Jira")
        with pytest.raises(DuplicateDisplayNameError) as exc_info:
            store.create_instance("jira", JIRA_SECRET, display_name="  Prod Jira ")
        assert exc_info.value.status_code == 409

    def test_rename(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)
        store.create_instance("jira", JIRA_SECRET, display_name="Staging")

        assert store.rename_instance(instance.id, " Production ").display_name == "Production"
        with pytest.raises(DuplicateDisplayNameError):
            store.rename_instance(instance.id, "Staging")
        with pytest.raises(ValidationError):
            store.rename_instance(instance.id, "   ")


# =============================================================================
# VISIBILITY
# =============================================================================


class TestVisibility:

    @pytest.fixture
    def seeded(self, store, db_session, organisation_id, vault, small_registry):
        add_member(db_session, organisation_id, "user-1", "wf-1")
        add_member(db_session, organisation_id, "user-2", "wf-2")

        org_wide = store.create_instance("jira", JIRA_SECRET, display_name="Shared")
        mine = store.create_instance("jira", JIRA_SECRET, display_name="Mine", owner_user_id="user-1")
        theirs = store.create_instance("jira", JIRA_SECRET, display_name="Theirs", owner_user_id="user-2")

        other_org = CredentialStore(db_session, "org-other", vault=vault, registry=small_registry)
        foreign = other_org.create_instance("jira", JIRA_SECRET, display_name="Foreign")

        return {"org_wide": org_wide, "mine": mine, "theirs": theirs, "foreign": foreign}

    def test_without_workflow_user_lists_whole_organisation(self, store, seeded):
        ids = {instance.id for instance in store.list_instances()}
        assert ids == {seeded["org_wide"].id, seeded["mine"].id, seeded["theirs"].id}

    def test_workflow_user_sees_shared_and_own(self, store, seeded):
        ids = {instance.id for instance in store.list_instances("wf-1")}
        assert ids == {seeded["org_wide"].id, seeded["mine"].id}

    def test_unmapped_workflow_user_sees_shared_only(self, store, seeded):
        ids = {instance.id for instance in store.list_instances("wf-unknown")}
        assert ids == {seeded["org_wide"].id}

    def test_other_organisation_is_invisible(self, store, seeded):
        with pytest.raises(CredentialNotFoundError) as exc_info:
            store.get_instance(seeded["foreign"].id)
        assert exc_info.value.status_code == 404

        with pytest.raises(CredentialNotFoundError):
            store.get_secret_data(seeded["foreign"].id)

    def test_membership_in_other_organisation_does_not_leak(self, store, seeded, db_session):
        add_member(db_session, "org-other", "user-2", "wf-1")
        ids = {instance.id for instance in store.list_instances("wf-1")}
        assert seeded["theirs"].id not in ids


# =============================================================================
# UPDATES
# =============================================================================


class TestUpdates:

    def test_disabled_tools_stored_in_declaration_order(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        store.set_disabled_tools(instance.id, ["jira_delete_issue", "jira_search"])

        assert instance.disabled_tools == ["jira_search", "jira_delete_issue"]
        assert instance.is_tool_disabled("jira_search") is True
        assert instance.is_tool_disabled("jira_get_issue") is False

    def test_undeclared_disabled_tool_rejected(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        with pytest.raises(UnknownToolError) as exc_info:
            store.set_disabled_tools(instance.id, ["jira_search", "calendar_list_events"])

        assert exc_info.value.details["tool_names"] == ["calendar_list_events"]
        assert instance.disabled_tools == []

    def test_disconnect_truncates_reason(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        store.set_connection_state(instance.id, ConnectionState.DISCONNECTED, "x" * 600)

        assert instance.is_connected is False
        assert len(instance.last_disconnect_reason) == 500
        assert instance.last_disconnect_reason.endswith("...")
        assert instance.disconnected_at is not None
        assert instance.encrypted_secret

    def test_reconnect_clears_reason(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)
        store.set_connection_state(instance.id, ConnectionState.DISCONNECTED, "401")

        store.set_connection_state(instance.id, ConnectionState.CONNECTED)

        assert instance.is_connected is True
        assert instance.last_disconnect_reason is None
        assert instance.disconnected_at is None

    def test_update_secret_replaces_blob(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)
        before = instance.encrypted_secret

        store.update_secret(instance.id, {**JIRA_SECRET, "api_token": "ATATT-rotated"})

        assert instance.encrypted_secret != before
        assert store.get_secret_data(instance.id)["api_token"] == "ATATT-rotated"

    def test_set_active_and_touch(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        store.set_active(instance.id, False)
        store.touch(instance.id)

        assert instance.active is False
        assert instance.last_accessed_at is not None


class TestPersistSecret:

    def test_persist_replaces_secret_and_commits(self, store, vault):
        instance = store.create_instance("jira", JIRA_SECRET)
        opaque = vault.encrypt_json({**JIRA_SECRET, "api_token": "ATATT-persisted"})

        store.persist_secret(instance.id, opaque)

        assert store.get_secret_data(instance.id)["api_token"] == "ATATT-persisted"

    def test_persist_commits_the_session(self, store, vault, db_session):
        instance = store.create_instance("jira", JIRA_SECRET)
        pending = store.create_instance("jira", JIRA_SECRET, display_name="Pending")

        store.persist_secret(instance.id, vault.encrypt_json({**JIRA_SECRET, "api_token": "ATATT-persisted"}))
        db_session.rollback()

        assert store.get_secret_data(instance.id)["api_token"] == "ATATT-persisted"
        assert store.get_instance(pending.id).display_name == "Pending"

    def test_persist_unknown_instance(self, store, vault):
        with pytest.raises(CredentialNotFoundError):
            store.persist_secret("missing", vault.encrypt_json({}))


class TestTruncateDisconnectReason:

    def test_short_reason_unchanged(self):
        assert truncate_disconnect_reason("401 Unauthorized") == "401 Unauthorized"

    def test_exact_limit_unchanged(self):
        assert truncate_disconnect_reason("a" * 500) == "a" * 500

    def test_long_reason_truncated(self):
        reason = truncate_disconnect_reason("a" * 501)
        assert len(reason) == 500
        assert reason == "a" * 497 + "..."


class TestSafeRendering:

    def test_repr_and_safe_dict_hide_secret(self, store):
        instance = store.create_instance("jira", JIRA_SECRET)

        safe = instance.to_safe_dict()

        assert "encrypted_secret" not in safe
        assert safe["has_credentials"] is True
        assert safe["connection_state"] == "connected"
        assert instance.encrypted_secret not in repr(instance)
        assert instance.encrypted_secret not in str(safe)
