"""
Tests for the OAuth token lifecycle.

Uses an in-memory store and a fixed clock; the refresh function is a plain
callable so provider HTTP is out of the picture here.
"""

import gc
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from integration_hub.credentials.redaction import AUDIT_LOGGER_NAME
from integration_hub.credentials.refresh import (
    TOKEN_REFRESH_BUFFER_SECONDS,
    NetworkError,
    NoRefreshToken,
    NotRefreshableError,
    ProviderRejected,
    RefreshCancelled,
    RefreshedTokens,
    RefreshResultStatus,
    TokenLifecycleManager,
    TokenState,
    _InstanceLocks,
    refresh_error_from_httpx,
    token_state,
)
from integration_hub.credentials.secrets import TokenEnvelope


NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """Just enough of CredentialStore for the lifecycle manager."""

    organisation_id = "org-lifecycle"

    def __init__(self, vault):
        self.vault = vault
        self.blobs = {}
        self.persist_calls = 0
        self.locked_reads = []

    def put(self, instance_id, data):
        self.blobs[instance_id] = self.vault.encrypt_json(data)

    def get_secret_data(self, instance_id, for_update=False):
        self.locked_reads.append(for_update)
        return self.vault.decrypt_json(self.blobs[instance_id])

    def persist_secret(self, instance_id, opaque):
        self.persist_calls += 1
        self.blobs[instance_id] = opaque


def make_instance(instance_id, provider_type="hubspot", active=True):
    return SimpleNamespace(
        id=instance_id,
        provider_type=provider_type,
        display_name=provider_type.title(),
        active=active,
        has_credentials=True,
    )


def oauth_secret(expires_in_seconds, refresh_token="rt-1", **extra):
    data = {
        "access_token": "at-1",
        "expires_at": int((NOW + timedelta(seconds=expires_in_seconds)).timestamp()),
        **extra,
    }
    if refresh_token is not None:
        data["refresh_token"] = refresh_token
    return data


class CountingRefresh:
    """Refresh function that records calls."""

    def __init__(self, tokens=None, delay=0.0):
        self.tokens = tokens or RefreshedTokens(access_token="at-2", expires_in=3600)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, refresh_token):
        with self._lock:
            self.calls.append(refresh_token)
        if self.delay:
            time.sleep(self.delay)
        return self.tokens


@pytest.fixture
def store(vault) -> InMemoryStore:
    return InMemoryStore(vault)


@pytest.fixture
def manager(store) -> TokenLifecycleManager:
    return TokenLifecycleManager(store, clock=lambda: NOW)


class TestTokenState:

    def test_fresh_outside_buffer(self):
        envelope = TokenEnvelope(access_token="at", expires_at=NOW + timedelta(seconds=301))
        assert token_state(envelope, NOW) == TokenState.FRESH

    def test_expiring_at_buffer_boundary(self):
        envelope = TokenEnvelope(access_token="at", expires_at=NOW + timedelta(seconds=TOKEN_REFRESH_BUFFER_SECONDS))
        assert token_state(envelope, NOW) == TokenState.EXPIRING

    def test_missing_expiry_is_expiring(self):
        envelope = TokenEnvelope(access_token="at", expires_at=None)
        assert token_state(envelope, NOW) == TokenState.EXPIRING


class TestEnsureValid:

    def test_fresh_token_makes_no_call(self, store, manager):
        """301 seconds left: returned as stored, refresh never called."""
        store.put("i-1", oauth_secret(301))
        refresh = CountingRefresh()

        envelope = manager.ensure_valid(make_instance("i-1"), refresh)

        assert refresh.calls == []
        assert store.persist_calls == 0
        assert envelope.access_token == "at-1"
        assert envelope.expires_at == NOW + timedelta(seconds=301)

    def test_expiring_token_is_refreshed_once(self, store, manager):
        """100 seconds left: exactly one refresh and the new token is stored."""
        store.put("i-1", oauth_secret(100))
        refresh = CountingRefresh()

        envelope = manager.ensure_valid(make_instance("i-1"), refresh)

        assert refresh.calls == ["rt-1"]
        assert envelope.access_token == "at-2"
        assert envelope.expires_at == NOW + timedelta(seconds=3600)
        assert store.get_secret_data("i-1")["access_token"] == "at-2"

    def test_refresh_token_kept_when_not_rotated(self, store, manager):
        store.put("i-1", oauth_secret(0))

        envelope = manager.ensure_valid(make_instance("i-1"), CountingRefresh())

        assert envelope.refresh_token == "rt-1"
        assert store.get_secret_data("i-1")["refresh_token"] == "rt-1"

    def test_rotated_refresh_token_is_stored(self, store, manager):
        store.put("i-1", oauth_secret(0))
        refresh = CountingRefresh(RefreshedTokens(access_token="at-2", expires_in=1800, refresh_token="rt-2"))

        manager.ensure_valid(make_instance("i-1"), refresh)

        stored = store.get_secret_data("i-1")
        assert stored["refresh_token"] == "rt-2"
        assert stored["expires_at"] == int((NOW + timedelta(seconds=1800)).timestamp())

    def test_unrelated_secret_fields_survive(self, store, manager):
        store.put("i-1", oauth_secret(0, hub_id=4242))
        manager.ensure_valid(make_instance("i-1"), CountingRefresh())
        assert store.get_secret_data("i-1")["hub_id"] == 4242

    def test_no_refresh_token(self, store, manager):
        store.put("i-1", oauth_secret(-60, refresh_token=None))
        before = store.blobs["i-1"]
        refresh = CountingRefresh()

        with pytest.raises(NoRefreshToken, match="re-authorization"):
            manager.ensure_valid(make_instance("i-1"), refresh)

        assert refresh.calls == []
        assert store.blobs["i-1"] == before

    def test_provider_rejection_leaves_secret_untouched(self, store, manager):
        store.put("i-1", oauth_secret(10))
        before = store.blobs["i-1"]

        def rejecting(refresh_token):
            raise ProviderRejected("invalid_grant", http_status=400, body='{"error":"invalid_grant"}')

        with pytest.raises(ProviderRejected) as exc_info:
            manager.ensure_valid(make_instance("i-1"), rejecting)

        assert exc_info.value.instance_id == "i-1"
        assert store.blobs["i-1"] == before
        assert store.persist_calls == 0

    def test_httpx_transport_error_becomes_network_error(self, store, manager):
        store.put("i-1", oauth_secret(10))
        before = store.blobs["i-1"]

        def unreachable(refresh_token):
            raise httpx.ConnectError("connection refused", request=httpx.Request("POST", "https://auth.example"))

        with pytest.raises(NetworkError) as exc_info:
            manager.ensure_valid(make_instance("i-1"), unreachable)

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.http_status is None
        assert store.blobs["i-1"] == before

    def test_non_oauth_instance_is_not_refreshable(self, store, manager):
        store.put("g-1", {"gitlab_url": "https://gitlab.example.com", "api_token": "glpat-x"})
        with pytest.raises(NotRefreshableError):
            manager.ensure_valid(make_instance("g-1", provider_type="gitlab"), CountingRefresh())

    def test_refresh_emits_audit_event(self, store, manager, caplog):
        store.put("i-1", oauth_secret(0))

        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            manager.ensure_valid(make_instance("i-1"), CountingRefresh())

        events = [r.event_type for r in caplog.records if r.name == AUDIT_LOGGER_NAME]
        assert events == ["credential.refreshed"]
        assert "at-2" not in caplog.text


class TestCancellation:

    def test_cancelled_before_start(self, store, manager):
        store.put("i-1", oauth_secret(0))
        refresh = CountingRefresh()
        event = threading.Event()
        event.set()

        with pytest.raises(RefreshCancelled):
            manager.ensure_valid(make_instance("i-1"), refresh, cancel_event=event)

        assert refresh.calls == []

    def test_cancel_during_refresh_still_persists(self, store, manager):
        """The in-flight refresh completes and is stored before cancellation surfaces."""
        store.put("i-1", oauth_secret(0))
        event = threading.Event()

        def refresh_then_cancel(refresh_token):
            event.set()
            return RefreshedTokens(access_token="at-2", expires_in=3600)

        with pytest.raises(RefreshCancelled):
            manager.ensure_valid(make_instance("i-1"), refresh_then_cancel, cancel_event=event)

        assert store.persist_calls == 1
        assert store.get_secret_data("i-1")["access_token"] == "at-2"


class TestSingleFlight:

    def test_concurrent_callers_share_one_refresh(self, store):
        """Eight threads race on one expiring instance; the provider sees one call."""
        workers = 8
        store.put("i-race", oauth_secret(30))
        refresh = CountingRefresh(delay=0.05)
        barrier = threading.Barrier(workers)
        instance = make_instance("i-race")

        def call():
            # A manager per caller, as with per-request stores
            manager = TokenLifecycleManager(store, clock=lambda: NOW)
            barrier.wait()
            return manager.ensure_valid(instance, refresh)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(call) for _ in range(workers)]
            envelopes = [future.result(timeout=10) for future in futures]

        assert len(refresh.calls) == 1
        assert store.persist_calls == 1
        assert {envelope.access_token for envelope in envelopes} == {"at-2"}

    def test_reread_under_lock_requests_row_lock(self, store, manager):
        store.put("i-1", oauth_secret(60))

        manager.ensure_valid(make_instance("i-1"), CountingRefresh())

        assert store.locked_reads == [False, True]

    def test_fresh_token_takes_no_row_lock(self, store, manager):
        store.put("i-1", oauth_secret(3600))

        manager.ensure_valid(make_instance("i-1"), CountingRefresh())

        assert store.locked_reads == [False]


class TestInstanceLocks:

    def test_same_lock_while_held(self):
        locks = _InstanceLocks()
        lock = locks.lock_for("i-1")

        assert locks.lock_for("i-1") is lock
        assert locks.lock_for("i-2") is not lock
        assert len(locks) == 1

    def test_released_locks_are_dropped(self):
        locks = _InstanceLocks()
        lock = locks.lock_for("i-1")
        assert len(locks) == 1

        del lock
        gc.collect()

        assert len(locks) == 0

    def test_manager_leaves_no_lock_behind(self, store):
        locks = _InstanceLocks()
        manager = TokenLifecycleManager(store, clock=lambda: NOW, locks=locks)
        for instance_id in ("i-1", "i-2", "i-3"):
            store.put(instance_id, oauth_secret(60))
            manager.ensure_valid(make_instance(instance_id), CountingRefresh())

        gc.collect()

        assert len(locks) == 0




class TestRefreshExpiring:

    def test_batch_statuses(self, store, manager):
        store.put("fresh", oauth_secret(3600))
        store.put("expiring", oauth_secret(60))
        store.put("no-refresh", oauth_secret(60, refresh_token=None))
        store.put("rejected", oauth_secret(60))
        store.put("inactive", oauth_secret(60))
        store.put("gitlab", {"gitlab_url": "https://gitlab.example.com", "api_token": "glpat-x"})

        instances = [
            make_instance("fresh"),
            make_instance("expiring"),
            make_instance("no-refresh"),
            make_instance("rejected"),
            make_instance("inactive", active=False),
            make_instance("gitlab", provider_type="gitlab"),
        ]

        def rejecting(refresh_token):
            raise ProviderRejected("invalid_grant", http_status=400)

        def refresh_fn_for(instance):
            return rejecting if instance.id == "rejected" else CountingRefresh()

        results = manager.refresh_expiring(instances, refresh_fn_for)

        statuses = {result.instance_id: result.status for result in results}
        assert statuses == {
            "fresh": RefreshResultStatus.NOT_NEEDED,
            "expiring": RefreshResultStatus.SUCCESS,
            "no-refresh": RefreshResultStatus.NOT_POSSIBLE,
            "rejected": RefreshResultStatus.FAILED,
        }
        success = next(r for r in results if r.instance_id == "expiring")
        assert success.new_expires_at == NOW + timedelta(seconds=3600)
        assert store.get_secret_data("inactive")["access_token"] == "at-1"

    def test_undecryptable_secret_is_reported_as_failed(self, store, manager):
        store.blobs["broken"] = "AAAA"
        results = manager.refresh_expiring([make_instance("broken")], lambda instance: CountingRefresh())
        assert [r.status for r in results] == [RefreshResultStatus.FAILED]

    def test_unexpected_error_fails_only_that_instance(self, store, manager):
        store.put("broken-builder", oauth_secret(60))
        store.put("expiring", oauth_secret(60))

        def refresh_fn_for(instance):
            if instance.id == "broken-builder":
                raise RuntimeError("no OAuth client configured")
            return CountingRefresh()

        results = manager.refresh_expiring(
            [make_instance("broken-builder"), make_instance("expiring")], refresh_fn_for,
        )

        statuses = {result.instance_id: result.status for result in results}
        assert statuses == {
            "broken-builder": RefreshResultStatus.FAILED,
            "expiring": RefreshResultStatus.SUCCESS,
        }
        failed = next(r for r in results if r.instance_id == "broken-builder")
        assert failed.error_message == "no OAuth client configured"

    def test_vanished_instance_does_not_abort_batch(self, store, manager):
        store.put("expiring", oauth_secret(60))

        results = manager.refresh_expiring(
            [make_instance("deleted"), make_instance("expiring")], lambda instance: CountingRefresh(),
        )

        assert [(r.instance_id, r.status) for r in results] == [
            ("deleted", RefreshResultStatus.FAILED),
            ("expiring", RefreshResultStatus.SUCCESS),
        ]


class TestHttpxErrorMapping:

    def _status_error(self, status):
        request = httpx.Request("POST", "https://auth.example/token")
        response = httpx.Response(status, text='{"error":"x"}', request=request)
        return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)

    def test_5xx_is_network_error(self):
        error = refresh_error_from_httpx(self._status_error(503), instance_id="i-1")
        assert isinstance(error, NetworkError)
        assert error.http_status == 503
        assert error.instance_id == "i-1"

    def test_4xx_is_rejection(self):
        error = refresh_error_from_httpx(self._status_error(400))
        assert isinstance(error, ProviderRejected)
        assert error.body == '{"error":"x"}'

    def test_timeout_is_network_error(self):
        error = refresh_error_from_httpx(httpx.ReadTimeout("read timed out"))
        assert isinstance(error, NetworkError)
        assert "timeout" in str(error)
