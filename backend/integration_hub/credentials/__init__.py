"""
Credentials module for integration credential instances.

This module provides:
- Envelope encryption of per-instance secrets (AES-256-GCM)
- Typed secret variants per provider type
- Token lifecycle management with single-flight refresh
- Failure classification (dead credentials vs transient)
- Audit logging with automatic redaction

SECURITY:
- Secrets are encrypted at rest using INTEGRATION_ENCRYPTION_KEY
- No plaintext secrets outside process memory
- Secrets NEVER appear in logs or API responses

Usage:
    from integration_hub.credentials import CredentialStore, TokenLifecycleManager

    store = CredentialStore(db_session, organisation_id)
    manager = TokenLifecycleManager(store)
    envelope = manager.ensure_valid(instance, refresh_fn)
"""

from integration_hub.credentials.encryption import (
    DecryptionFailed,
    EncryptionError,
    EncryptionVault,
    InvalidKeyError,
    get_vault,
)
from integration_hub.credentials.secrets import (
    ProviderSecret,
    SecretValidationError,
    TokenEnvelope,
    parse_secret,
)
from integration_hub.credentials.store import (
    CredentialNotFoundError,
    CredentialStore,
    CredentialStoreError,
)
from integration_hub.credentials.refresh import (
    NetworkError,
    NoRefreshToken,
    ProviderRejected,
    RefreshCancelled,
    RefreshError,
    RefreshResult,
    RefreshedTokens,
    TokenLifecycleManager,
    TokenState,
)
from integration_hub.credentials.classifier import FailureClassifier, ProviderFailure
from integration_hub.credentials.redaction import (
    AuditEventType,
    CredentialAuditLogger,
    redact_credential_data,
    setup_credential_logging,
)

__all__ = [
    # Encryption
    "DecryptionFailed",
    "EncryptionError",
    "EncryptionVault",
    "InvalidKeyError",
    "get_vault",
    # Secrets
    "ProviderSecret",
    "SecretValidationError",
    "TokenEnvelope",
    "parse_secret",
    # Store
    "CredentialNotFoundError",
    "CredentialStore",
    "CredentialStoreError",
    # Refresh
    "NetworkError",
    "NoRefreshToken",
    "ProviderRejected",
    "RefreshCancelled",
    "RefreshError",
    "RefreshResult",
    "RefreshedTokens",
    "TokenLifecycleManager",
    "TokenState",
    # Classification
    "FailureClassifier",
    "ProviderFailure",
    # Audit
    "AuditEventType",
    "CredentialAuditLogger",
    "redact_credential_data",
    "setup_credential_logging",
]
