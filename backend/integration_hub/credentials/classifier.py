"""
Failure classification: dead credentials versus transient trouble.

Given a failed provider call, decide whether the instance's credentials are
no longer usable (disconnect) or the failure is transient (retry later).

Precedence, first match wins:
1. Transient pattern in the message -> False, whatever the status
2. Transport error (no HTTP response) -> False
3. HTTP 401 -> True
4. HTTP 403 -> provider rule on the response body (default False)
5. HTTP 5xx -> False; other 4xx continue to step 6
6. Credential pattern in the message -> True, else False

A bare 403 never disconnects on its own; only a provider rule that
recognises a credential problem in the body does.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

import httpx

from integration_hub.credentials.refresh import NetworkError, ProviderRejected, RefreshError

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_PATTERNS: Tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "timeout",
    "connection refused",
    "service unavailable",
    "internal server error",
    "bad gateway",
    "network error",
    "dns",
    "could not resolve",
    "connection reset",
    "ssl",
    "tls",
)

CREDENTIAL_ERROR_PATTERNS: Tuple[str, ...] = (
    "unauthorized",
    "invalid_grant",
    "invalid_client",
    "access_denied",
    "token expired",
    "token revoked",
    "aadsts",
    "consent_required",
    "api token",
    "authentication failed",
    "invalid credentials",
    "invalid api key",
    "invalid api token",
)

ForbiddenRule = Callable[[str], bool]


def body_contains(*needles: str) -> ForbiddenRule:
    """Rule matching when the lowercased body contains any needle."""
    lowered = tuple(needle.lower() for needle in needles)

    def rule(body: str) -> bool:
        text = body.lower()
        return any(needle in text for needle in lowered)

    return rule


def _never(body: str) -> bool:
    return False


# provider type -> does this 403 body mean the credentials are dead?
FORBIDDEN_RULES: Mapping[str, ForbiddenRule] = MappingProxyType({
    "sharepoint": body_contains("consent", "aadsts", "invalid_grant"),
    "jira": body_contains("api token", "permission denied for api"),
    "confluence": body_contains("api token", "permission denied for api"),
    "gitlab": body_contains("insufficient_scope", "forbidden"),
    "sap_c4c": body_contains("not authorized"),
})

DEFAULT_FORBIDDEN_RULE: ForbiddenRule = _never


@dataclass(frozen=True)
class ProviderFailure:
    """What a failed provider call exposes for classification."""
    message: str
    http_status: Optional[int] = None
    is_transport_error: bool = False
    body: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ProviderFailure":
        """Build a failure from an httpx error, a refresh error or anything else."""
        if isinstance(exc, httpx.HTTPStatusError):
            return cls(
                message=str(exc),
                http_status=exc.response.status_code,
                body=exc.response.text,
            )
        if isinstance(exc, httpx.TransportError):
            return cls(message=f"{type(exc).__name__}: {exc}", is_transport_error=True)
        if isinstance(exc, ProviderRejected):
            return cls(message=str(exc), http_status=exc.http_status, body=exc.body)
        if isinstance(exc, NetworkError):
            return cls(
                message=str(exc),
                http_status=exc.http_status,
                is_transport_error=exc.http_status is None,
            )
        if isinstance(exc, RefreshError):
            return cls(message=str(exc))
        return cls(message=str(exc) or type(exc).__name__)


def _contains_any(text: str, patterns: Tuple[str, ...]) -> Optional[str]:
    for pattern in patterns:
        if pattern in text:
            return pattern
    return None


class FailureClassifier:
    """Stateless classifier; safe to share across threads."""

    def __init__(self, forbidden_rules: Optional[Mapping[str, ForbiddenRule]] = None):
        self.forbidden_rules = forbidden_rules if forbidden_rules is not None else FORBIDDEN_RULES

    def is_credential_failure(
        self,
        provider_type: str,
        http_status: Optional[int],
        message: str,
        is_transport_error: bool,
        body: Optional[str] = None,
    ) -> bool:
        """
        True when the failure means the credentials are dead.

        Args:
            provider_type: Provider registry key
            http_status: Response status, None when no response was received
            message: Error message
            is_transport_error: Network-level failure without a response
            body: Response body, if any; 403 rules inspect it
        """
        text = (message or "").lower()

        transient = _contains_any(text, TRANSIENT_ERROR_PATTERNS)
        if transient:
            logger.debug(
                "Transient failure",
                extra={"provider_type": provider_type, "pattern": transient, "http_status": http_status},
            )
            return False

        if is_transport_error:
            return False

        if http_status == 401:
            logger.info(
                "Credential failure detected",
                extra={"provider_type": provider_type, "http_status": http_status},
            )
            return True

        if http_status == 403:
            rule = self.forbidden_rules.get(provider_type, DEFAULT_FORBIDDEN_RULE)
            verdict = rule(body if body is not None else message or "")
            if verdict:
                logger.info(
                    "Credential failure detected",
                    extra={"provider_type": provider_type, "http_status": http_status},
                )
            return verdict

        if http_status is not None and http_status >= 500:
            return False

        matched = _contains_any(text, CREDENTIAL_ERROR_PATTERNS)
        if matched:
            logger.info(
                "Credential failure detected",
                extra={"provider_type": provider_type, "pattern": matched, "http_status": http_status},
            )
            return True

        return False

    def classify(self, provider_type: str, failure: ProviderFailure) -> bool:
        return self.is_credential_failure(
            provider_type,
            failure.http_status,
            failure.message,
            failure.is_transport_error,
            body=failure.body,
        )
