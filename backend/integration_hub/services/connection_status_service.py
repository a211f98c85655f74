"""
Connection status service.

Owns the disconnect / reconnect side effects driven by failure
classification. Provider adapters hand their failures here; only a
credential verdict disconnects, transient failures never do.

Audit Events:
- integration.disconnected (with truncated reason)
- integration.reconnected

Usage:
    service = ConnectionStatusService(store)
    try:
        manager.ensure_valid(instance, refresh_fn)
    except RefreshError as e:
        service.handle_refresh_error(instance, e)
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from integration_hub.config.settings import Settings, get_settings
from integration_hub.credentials.classifier import FailureClassifier, ProviderFailure
from integration_hub.credentials.redaction import AuditEventType
from integration_hub.credentials.refresh import (
    NetworkError,
    NoRefreshToken,
    ProviderRejected,
    RefreshCancelled,
    RefreshError,
)
from integration_hub.credentials.store import CredentialStore, truncate_disconnect_reason
from integration_hub.models.integration_credential import ConnectionState, IntegrationCredential

logger = logging.getLogger(__name__)

# Signature: probe(timeout_seconds) -> anything; raises on failure
ConnectionProbe = Callable[[float], Any]


@dataclass
class ProbeResult:
    """Outcome of a connection probe."""
    success: bool
    instance_id: str
    disconnected: bool = False
    reconnected: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "instance_id": self.instance_id,
            "disconnected": self.disconnected,
            "reconnected": self.reconnected,
            "error_message": self.error_message,
        }


class ConnectionStatusService:
    """Disconnect and reconnect credential instances from provider signals."""

    def __init__(
        self,
        store: CredentialStore,
        classifier: Optional[FailureClassifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.classifier = classifier or FailureClassifier()
        self.settings = settings or get_settings()
        self.audit = store.audit

    def mark_disconnected(self, instance: IntegrationCredential, reason: str) -> IntegrationCredential:
        """Mark the instance DISCONNECTED; the secret is left in place."""
        reason = truncate_disconnect_reason(reason or "Credentials rejected by provider")
        updated = self.store.set_connection_state(instance.id, ConnectionState.DISCONNECTED, reason)

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_DISCONNECTED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=instance.display_name,
            metadata={"reason": reason},
        )

        logger.warning(
            "Integration disconnected",
            extra={
                "instance_id": instance.id,
                "organisation_id": self.store.organisation_id,
                "provider_type": instance.provider_type,
                "reason": reason,
            }
        )
        return updated

    def mark_reconnected(self, instance: IntegrationCredential) -> bool:
        """
        Mark a disconnected instance CONNECTED again.

        Returns:
            True if the state changed
        """
        if instance.is_connected:
            return False

        self.store.set_connection_state(instance.id, ConnectionState.CONNECTED)

        self.audit.log(
            event_type=AuditEventType.INTEGRATION_RECONNECTED,
            instance_id=instance.id,
            provider_type=instance.provider_type,
            display_name=instance.display_name,
        )

        logger.info(
            "Integration reconnected",
            extra={
                "instance_id": instance.id,
                "organisation_id": self.store.organisation_id,
                "provider_type": instance.provider_type,
            }
        )
        return True

    def handle_failure(self, instance: IntegrationCredential, failure: ProviderFailure) -> bool:
        """
        Disconnect the instance if the failure means dead credentials.

        Returns:
            True if the instance was disconnected
        """
        if not self.classifier.classify(instance.provider_type, failure):
            logger.info(
                "Provider failure not treated as credential failure",
                extra={
                    "instance_id": instance.id,
                    "provider_type": instance.provider_type,
                    "http_status": failure.http_status,
                    "is_transport_error": failure.is_transport_error,
                }
            )
            return False

        self.mark_disconnected(instance, failure.message)
        return True

    def handle_exception(self, instance: IntegrationCredential, exc: BaseException) -> bool:
        return self.handle_failure(instance, ProviderFailure.from_exception(exc))

    def handle_refresh_error(self, instance: IntegrationCredential, error: RefreshError) -> bool:
        """
        Apply the disconnect policy for a failed token refresh.

        NoRefreshToken always disconnects, ProviderRejected goes through the
        classifier, NetworkError and cancellation never disconnect.

        Returns:
            True if the instance was disconnected
        """
        if isinstance(error, NoRefreshToken):
            self.mark_disconnected(instance, str(error))
            return True
        if isinstance(error, (NetworkError, RefreshCancelled)):
            return False
        if isinstance(error, ProviderRejected):
            return self.handle_failure(instance, ProviderFailure.from_exception(error))

        logger.warning(
            "Refresh error left connection state unchanged",
            extra={"instance_id": instance.id, "error_kind": type(error).__name__},
        )
        return False

    def run_probe(self, instance: IntegrationCredential, probe: ConnectionProbe) -> ProbeResult:
        """
        Call a provider with the short probe timeout and apply the verdict.

        The probe receives the timeout in seconds. Success reconnects a
        disconnected instance; a failure is classified (timeouts are
        transient) and may disconnect it.
        """
        try:
            probe(self.settings.probe_timeout_seconds)
        except Exception as e:
            failure = ProviderFailure.from_exception(e)
            disconnected = self.handle_failure(instance, failure)
            return ProbeResult(
                success=False,
                instance_id=instance.id,
                disconnected=disconnected,
                error_message=failure.message[:500],
            )

        reconnected = self.mark_reconnected(instance)
        return ProbeResult(success=True, instance_id=instance.id, reconnected=reconnected)
