"""
Token lifecycle for OAuth-backed credential instances.

One state machine for every provider: FRESH -> EXPIRING -> REFRESHING ->
FRESH | FAILED. Provider differences live entirely in the refresh function
passed to ensure_valid() (see oauth_providers.py).

Two entry points:
1. On-demand: ensure_valid() right before an instance is used
2. Scheduled: refresh_expiring() from a background job

SECURITY REQUIREMENTS:
- Tokens are re-encrypted before storage
- No plaintext tokens in logs or audit events
- The stored secret is never modified when a refresh fails

CONCURRENCY:
- Refreshes are serialised per instance id (single-flight); the secret is
  re-read after the lock is taken so a waiter reuses the winner's token
- Fresh reads take no lock

Usage:
    manager = TokenLifecycleManager(store)
    envelope = manager.ensure_valid(instance, build_refresh_function("hubspot", secret))
"""

import logging
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from integration_hub.credentials.encryption import EncryptionVault
from integration_hub.credentials.redaction import AuditEventType, CredentialAuditLogger
from integration_hub.credentials.secrets import TokenEnvelope, parse_secret

logger = logging.getLogger(__name__)

# Refresh this long before the provider's stated expiry
TOKEN_REFRESH_BUFFER_SECONDS = 300

MAX_ERROR_BODY_LENGTH = 1000
MAX_ERROR_MESSAGE_LENGTH = 500


class RefreshError(Exception):
    """Base exception for token refresh errors."""

    def __init__(self, message: str, instance_id: Optional[str] = None):
        super().__init__(message)
        self.instance_id = instance_id


class NoRefreshToken(RefreshError):
    """No refresh token stored; only a new interactive authorization helps."""
    pass


class ProviderRejected(RefreshError):
    """The provider refused the refresh (revoked or invalid grant, bad client)."""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        body: Optional[str] = None,
        instance_id: Optional[str] = None,
    ):
        super().__init__(message, instance_id)
        self.http_status = http_status
        self.body = body[:MAX_ERROR_BODY_LENGTH] if body else body


class NetworkError(RefreshError):
    """Transport failure, timeout or provider 5xx. Transient."""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        instance_id: Optional[str] = None,
    ):
        super().__init__(message, instance_id)
        self.http_status = http_status


class RefreshCancelled(RefreshError):
    """Caller cancelled; any in-flight refresh was completed and persisted first."""
    pass


class NotRefreshableError(RefreshError):
    """The instance's secret carries no OAuth token envelope."""
    pass


class TokenState(str, Enum):
    FRESH = "fresh"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    FAILED = "failed"


class RefreshResultStatus(str, Enum):
    """Result status for refresh operations."""
    SUCCESS = "success"
    NOT_NEEDED = "not_needed"
    NOT_POSSIBLE = "not_possible"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshedTokens:
    """What a provider token endpoint handed back."""
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    def __repr__(self) -> str:
        return f"RefreshedTokens(expires_in={self.expires_in}, rotated={self.refresh_token is not None})"


@dataclass
class RefreshResult:
    """
    Result of one refresh in a batch.

    SECURITY: Does NOT include token values.
    """
    status: RefreshResultStatus
    instance_id: str
    provider_type: str
    new_expires_at: Optional[datetime] = None
    error_message: Optional[str] = None


# Signature: (refresh_token) -> RefreshedTokens; raises ProviderRejected / NetworkError
RefreshFunction = Callable[[str], RefreshedTokens]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_state(
    envelope: TokenEnvelope,
    now: datetime,
    buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS,
) -> TokenState:
    """FRESH while now is before expires_at minus the buffer, else EXPIRING."""
    if now < envelope.expires_at - timedelta(seconds=buffer_seconds):
        return TokenState.FRESH
    return TokenState.EXPIRING


def refresh_error_from_httpx(
    exc: httpx.HTTPError,
    instance_id: Optional[str] = None,
) -> RefreshError:
    """
    Map an httpx failure to a refresh error kind.

    5xx and transport failures are transient; other HTTP errors are a
    rejection by the provider.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500:
            return NetworkError(
                f"Token endpoint unavailable (HTTP {status})",
                http_status=status,
                instance_id=instance_id,
            )
        return ProviderRejected(
            f"Token refresh rejected (HTTP {status}): {exc.response.text[:200]}",
            http_status=status,
            body=exc.response.text,
            instance_id=instance_id,
        )

    kind = "timeout" if isinstance(exc, httpx.TimeoutException) else "network error"
    return NetworkError(
        f"Token refresh {kind}: {type(exc).__name__}: {exc}",
        instance_id=instance_id,
    )


class _InstanceLocks:
    """
    Lazily created lock per instance id.

    Locks are held weakly; an entry disappears once no caller holds or
    waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, instance_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(instance_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[instance_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every manager in the process; managers are created per request.
_refresh_locks = _InstanceLocks()


class TokenLifecycleManager:
    """
    Keeps OAuth envelopes fresh for credential instances.

    The store must provide get_secret_data(instance_id, for_update=False) -> dict
    and persist_secret(instance_id, opaque); CredentialStore does. The re-read
    under the instance lock asks for a row lock, which also serialises workers
    in other processes and reads past a stale transaction snapshot.
    """

    def __init__(
        self,
        store: Any,
        vault: Optional[EncryptionVault] = None,
        clock: Optional[Callable[[], datetime]] = None,
        audit: Optional[CredentialAuditLogger] = None,
        locks: Optional[_InstanceLocks] = None,
    ):
        self.store = store
        self.vault = vault or store.vault
        self.clock = clock or utcnow
        self.audit = audit or CredentialAuditLogger(store.organisation_id)
        self._locks = locks if locks is not None else _refresh_locks

    def state_of(self, envelope: TokenEnvelope) -> TokenState:
        return token_state(envelope, self.clock())

    def ensure_valid(
        self,
        instance: Any,
        refresh_fn: RefreshFunction,
        cancel_event: Optional[threading.Event] = None,
    ) -> TokenEnvelope:
        """
        Return a fresh envelope for the instance, refreshing if needed.

        Args:
            instance: Credential instance (id, provider_type, display_name)
            refresh_fn: Provider refresh function
            cancel_event: Set by the caller to cancel; a refresh already in
                flight still completes and is persisted

        Raises:
            NoRefreshToken: Token is stale and cannot be refreshed
            ProviderRejected: Provider refused the refresh
            NetworkError: Transient failure talking to the provider
            RefreshCancelled: cancel_event was set
            NotRefreshableError: The instance does not use OAuth tokens
            DecryptionFailed: Stored secret cannot be decrypted
        """
        if cancel_event is not None and cancel_event.is_set():
            raise RefreshCancelled("Cancelled before token validation", instance_id=instance.id)

        _, envelope = self._load(instance)
        if self.state_of(envelope) == TokenState.FRESH:
            return envelope

        logger.info(
            "Access token expiring",
            extra={
                "instance_id": instance.id,
                "provider_type": instance.provider_type,
                "expires_at": envelope.expires_at.isoformat(),
                "state": TokenState.EXPIRING.value,
            }
        )

        with self._locks.lock_for(instance.id):
            secret_data, envelope = self._load(instance, for_update=True)
            if self.state_of(envelope) == TokenState.FRESH:
                logger.debug(
                    "Token already refreshed by a concurrent caller",
                    extra={"instance_id": instance.id},
                )
                return envelope

            return self._refresh(instance, secret_data, envelope, refresh_fn, cancel_event)

    def refresh_expiring(
        self,
        instances: Iterable[Any],
        refresh_fn_for: Callable[[Any], RefreshFunction],
    ) -> List[RefreshResult]:
        """
        Refresh every OAuth instance whose token is inside the buffer.

        SCHEDULED REFRESH: call from a background job. Instances that are
        inactive, have no secret or do not use OAuth are skipped; one
        failure never aborts the batch.

        Args:
            instances: Candidate instances, typically store.list_instances()
            refresh_fn_for: Builds the refresh function for an instance
        """
        results: List[RefreshResult] = []

        for instance in instances:
            try:
                result = self._refresh_one(instance, refresh_fn_for)
            except Exception as e:
                logger.error(
                    "Failed to refresh credential in batch",
                    extra={
                        "instance_id": instance.id,
                        "organisation_id": self.store.organisation_id,
                        "error_kind": type(e).__name__,
                        "error": str(e)[:MAX_ERROR_MESSAGE_LENGTH],
                    }
                )
                result = self._result(instance, RefreshResultStatus.FAILED, error=e)

            if result is not None:
                results.append(result)

        logger.info(
            "Completed scheduled token refresh",
            extra={
                "organisation_id": self.store.organisation_id,
                "total": len(results),
                "success": sum(1 for r in results if r.status == RefreshResultStatus.SUCCESS),
                "failed": sum(1 for r in results if r.status == RefreshResultStatus.FAILED),
            }
        )

        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refresh_one(
        self,
        instance: Any,
        refresh_fn_for: Callable[[Any], RefreshFunction],
    ) -> Optional[RefreshResult]:
        """One batch entry; None when the instance is skipped."""
        if not instance.active or not instance.has_credentials:
            return None

        try:
            _, envelope = self._load(instance)
        except NotRefreshableError:
            return None

        if self.state_of(envelope) == TokenState.FRESH:
            return self._result(instance, RefreshResultStatus.NOT_NEEDED)

        try:
            refreshed = self.ensure_valid(instance, refresh_fn_for(instance))
        except NoRefreshToken as e:
            return self._result(instance, RefreshResultStatus.NOT_POSSIBLE, error=e)

        return RefreshResult(
            status=RefreshResultStatus.SUCCESS,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            new_expires_at=refreshed.expires_at,
        )

    def _load(self, instance: Any, for_update: bool = False) -> Tuple[Dict[str, Any], TokenEnvelope]:
        secret_data = self.store.get_secret_data(instance.id, for_update=for_update)
        envelope = parse_secret(instance.provider_type, secret_data).token_envelope()
        if envelope is None:
            raise NotRefreshableError(
                f"{instance.provider_type} instance does not use OAuth tokens",
                instance_id=instance.id,
            )
        return secret_data, envelope

    def _refresh(
        self,
        instance: Any,
        secret_data: Dict[str, Any],
        envelope: TokenEnvelope,
        refresh_fn: RefreshFunction,
        cancel_event: Optional[threading.Event],
    ) -> TokenEnvelope:
        """
        Perform the refresh. Caller holds the instance lock.

        SECURITY:
        - Tokens are decrypted only in memory
        - New tokens are encrypted before storage
        - Audit event is logged
        """
        if not envelope.refresh_token:
            error = NoRefreshToken(
                f"{instance.provider_type} token expired and no refresh token is stored; "
                "re-authorization required",
                instance_id=instance.id,
            )
            self._record_failure(instance, error)
            raise error

        logger.info(
            "Refreshing access token",
            extra={
                "instance_id": instance.id,
                "provider_type": instance.provider_type,
                "state": TokenState.REFRESHING.value,
            }
        )

        try:
            tokens = refresh_fn(envelope.refresh_token)
        except RefreshError as e:
            if e.instance_id is None:
                e.instance_id = instance.id
            self._record_failure(instance, e)
            raise
        except httpx.HTTPError as e:
            error = refresh_error_from_httpx(e, instance_id=instance.id)
            self._record_failure(instance, error)
            raise error from e

        expires_at = (self.clock() + timedelta(seconds=tokens.expires_in)).replace(microsecond=0)
        refreshed = TokenEnvelope(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or envelope.refresh_token,
            expires_at=expires_at,
            scope=tokens.scope or envelope.scope,
        )

        merged = {**secret_data, **refreshed.to_secret_fields()}
        self.store.persist_secret(instance.id, self.vault.encrypt_json(merged))

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REFRESHED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=getattr(instance, "display_name", None),
            metadata={
                "new_expires_at": expires_at.isoformat(),
                "rotated": tokens.refresh_token is not None,
            },
        )

        logger.info(
            "Access token refreshed",
            extra={
                "instance_id": instance.id,
                "provider_type": instance.provider_type,
                "new_expires_at": expires_at.isoformat(),
                "state": TokenState.FRESH.value,
            }
        )

        if cancel_event is not None and cancel_event.is_set():
            raise RefreshCancelled(
                "Caller cancelled during refresh; the refreshed token was stored",
                instance_id=instance.id,
            )

        return refreshed

    def _record_failure(self, instance: Any, error: RefreshError) -> None:
        logger.warning(
            "Token refresh failed",
            extra={
                "instance_id": instance.id,
                "provider_type": instance.provider_type,
                "state": TokenState.FAILED.value,
                "error_kind": type(error).__name__,
                "http_status": getattr(error, "http_status", None),
                "error": str(error)[:MAX_ERROR_MESSAGE_LENGTH],
            }
        )
        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REFRESH_FAILED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=getattr(instance, "display_name", None),
            metadata={"error_kind": type(error).__name__},
        )

    def _result(
        self,
        instance: Any,
        status: RefreshResultStatus,
        error: Optional[Exception] = None,
    ) -> RefreshResult:
        return RefreshResult(
            status=status,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            error_message=str(error)[:MAX_ERROR_MESSAGE_LENGTH] if error else None,
        )
