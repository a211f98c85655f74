"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Secrets NEVER appear in logs (tokens, passwords, API keys, client secrets)
- ALLOWED in logs: instance id, provider type, display name
- Every lifecycle change of a credential instance emits an audit event

Audit Events:
- integration.created
- integration.updated
- integration.disconnected
- integration.reconnected
- credential.refreshed
- credential.refresh_failed

Usage:
    from integration_hub.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger(organisation_id)
    audit.log(
        event_type=AuditEventType.INTEGRATION_DISCONNECTED,
        instance_id=instance.id,
        provider_type="jira",
        display_name="Jira",
        metadata={"reason": "401 Unauthorized"},
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"

AUDIT_LOGGER_NAME = "integration_hub.audit"

_MAX_REDACTION_DEPTH = 10


class AuditEventType(str, Enum):
    """Credential audit event types."""
    INTEGRATION_CREATED = "integration.created"
    INTEGRATION_UPDATED = "integration.updated"
    INTEGRATION_DISCONNECTED = "integration.disconnected"
    INTEGRATION_RECONNECTED = "integration.reconnected"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_REFRESH_FAILED = "credential.refresh_failed"


# Key names that hold secrets in provider credential blobs
SECRET_KEY_PATTERNS = [
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"passwd", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"authorization", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"^encrypted_", re.IGNORECASE),
]

# Token shapes recognisable by value
SECRET_VALUE_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"ATATT[A-Za-z0-9_=-]{10,}"),  # Atlassian API tokens
    re.compile(r"glpat-[A-Za-z0-9_-]{10,}"),  # GitLab personal access tokens
    re.compile(r"pat-[a-z]{2}\d-[A-Za-z0-9-]{10,}"),  # HubSpot private app tokens
    re.compile(r"eyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]+"),  # JWTs
]

# Keys that look secret by name but carry safe metadata
_SAFE_KEYS = frozenset({
    "token_type",
    "has_refresh_token",
    "credential_id",
    "has_credentials",
})


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    if key in _SAFE_KEYS:
        return False
    return any(pattern.search(key) for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact token-shaped substrings from a value.

    Non-string values are returned unchanged.
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        if pattern.groups:
            result = pattern.sub(lambda m: m.group(1) + REDACTED_VALUE, result)
        else:
            result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from dicts, lists and strings.

    Args:
        data: Data to redact
        _depth: Internal recursion guard

    Returns:
        Redacted copy of the data
    """
    if _depth > _MAX_REDACTION_DEPTH:
        return REDACTED_VALUE

    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                redacted[key] = REDACTED_VALUE
            else:
                redacted[key] = redact_credential_data(value, _depth + 1)
        return redacted

    if isinstance(data, (list, tuple)):
        return type(data)(redact_credential_data(item, _depth + 1) for item in data)

    return redact_credential_value(data)


class CredentialAuditLogger:
    """
    Structured audit logger for credential instance lifecycle events.

    Records go to the integration_hub.audit logger; persistence of the audit
    trail is owned by whatever handler the host application attaches.
    """

    def __init__(self, organisation_id: str):
        self.organisation_id = organisation_id
        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)

    def log(
        self,
        event_type: AuditEventType,
        instance_id: str,
        provider_type: str,
        display_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        SECURITY:
        - metadata is automatically redacted
        - Secrets must NEVER be passed in metadata
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "organisation_id": self.organisation_id,
            "instance_id": instance_id,
            "provider_type": provider_type,
            "display_name": display_name,
            **safe_metadata,
        }

        self.logger.info(
            f"Integration audit: {event_type.value}",
            extra=audit_record,
        )


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        logger.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        for key in list(record.__dict__.keys()):
            if key in _LOG_RECORD_ATTRIBUTES:
                continue
            value = record.__dict__[key]
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(value, str):
                setattr(record, key, redact_credential_value(value))

        return True


# Built-in LogRecord attributes are never treated as extras
_LOG_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


# Logger-level filters only see records created on that logger, so every
# module logger is listed; propagation from children skips parent filters.
CREDENTIAL_LOGGERS = (
    "integration_hub",
    "integration_hub.config.settings",
    "integration_hub.credentials",
    "integration_hub.credentials.classifier",
    "integration_hub.credentials.encryption",
    "integration_hub.credentials.oauth_providers",
    "integration_hub.credentials.redaction",
    "integration_hub.credentials.refresh",
    "integration_hub.credentials.store",
    "integration_hub.integrations.registry",
    "integration_hub.services",
    "integration_hub.services.capability_composer",
    "integration_hub.services.connection_status_service",
    AUDIT_LOGGER_NAME,
)


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Call this during application startup to ensure all integration hub
    loggers have the redaction filter applied. Calling it again is a no-op
    for loggers that already carry the filter.
    """
    redaction_filter = CredentialLoggingFilter()

    for logger_name in CREDENTIAL_LOGGERS:
        log = logging.getLogger(logger_name)
        if not any(isinstance(f, CredentialLoggingFilter) for f in log.filters):
            log.addFilter(redaction_filter)

    logger.info("Credential logging configured with redaction filter")
