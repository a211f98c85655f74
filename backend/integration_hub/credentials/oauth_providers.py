"""
Provider-specific OAuth refresh functions.

Each provider differs only in token URL, body encoding, default token
lifetime and where the client credentials come from. OAuthRefreshAdapter
captures that as data; build_refresh_function() picks the right one for a
credential instance.

SECURITY:
- Client secrets and tokens are sent only in request bodies, never in URLs
- Error bodies are kept for classification but tokens are never logged
"""

import logging
from typing import Any, Dict, Optional

import httpx

from integration_hub.config.settings import OAuthClientConfig, Settings, get_settings
from integration_hub.credentials.refresh import (
    NetworkError,
    ProviderRejected,
    RefreshError,
    RefreshedTokens,
    RefreshFunction,
    refresh_error_from_httpx,
)
from integration_hub.credentials.secrets import (
    AtlassianSecret,
    HubSpotSecret,
    ProviderSecret,
    SharePointSecret,
    WrikeSecret,
)

logger = logging.getLogger(__name__)

ATLASSIAN_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"
WRIKE_TOKEN_URL = "https://login.wrike.com/oauth2/token"
SHAREPOINT_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
SHAREPOINT_SCOPE = "https://graph.microsoft.com/.default offline_access"


class OAuthNotConfiguredError(RefreshError):
    """No OAuth client is configured for the provider."""
    pass


class OAuthRefreshAdapter:
    """
    Refresh function for a standard OAuth 2.0 refresh_token grant.

    Errors:
    - transport failure or timeout -> NetworkError
    - HTTP 5xx -> NetworkError
    - other HTTP 4xx -> ProviderRejected(http_status, body)
    - 2xx without access_token -> ProviderRejected
    """

    def __init__(
        self,
        provider_type: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        body_format: str = "form",
        default_expires_in: int = 3600,
        extra_params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        if body_format not in ("form", "json"):
            raise ValueError(f"body_format must be 'form' or 'json', got {body_format!r}")

        self.provider_type = provider_type
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.body_format = body_format
        self.default_expires_in = default_expires_in
        self.extra_params = dict(extra_params or {})
        self.timeout = timeout if timeout is not None else get_settings().refresh_timeout_seconds
        self._http_client = http_client

    def __repr__(self) -> str:
        return f"<OAuthRefreshAdapter(provider_type={self.provider_type}, token_url={self.token_url})>"

    def __call__(self, refresh_token: str) -> RefreshedTokens:
        payload = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
            **self.extra_params,
        }

        try:
            response = self._post(payload)
        except httpx.HTTPError as e:
            raise refresh_error_from_httpx(e) from e

        if response.status_code >= 500:
            raise NetworkError(
                f"{self.provider_type} token endpoint unavailable (HTTP {response.status_code})",
                http_status=response.status_code,
            )
        if response.status_code >= 400:
            logger.warning(
                "Provider rejected token refresh",
                extra={
                    "provider_type": self.provider_type,
                    "http_status": response.status_code,
                }
            )
            raise ProviderRejected(
                f"{self.provider_type} rejected token refresh "
                f"(HTTP {response.status_code}): {response.text[:200]}",
                http_status=response.status_code,
                body=response.text,
            )

        return self._parse_tokens(response)

    def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if self.body_format == "json":
            kwargs["json"] = payload
        else:
            kwargs["data"] = payload
        kwargs["headers"] = {"Accept": "application/json"}

        if self._http_client is not None:
            return self._http_client.post(self.token_url, **kwargs)

        with httpx.Client() as client:
            return client.post(self.token_url, **kwargs)

    def _parse_tokens(self, response: httpx.Response) -> RefreshedTokens:
        try:
            data = response.json()
        except ValueError:
            raise ProviderRejected(
                f"{self.provider_type} token endpoint returned a non-JSON body",
                http_status=response.status_code,
                body=response.text,
            ) from None

        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderRejected(
                f"{self.provider_type} token response has no access_token",
                http_status=response.status_code,
            )

        try:
            expires_in = int(data.get("expires_in") or self.default_expires_in)
        except (TypeError, ValueError):
            expires_in = self.default_expires_in

        return RefreshedTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=expires_in,
            scope=data.get("scope"),
        )


def _require_client(provider_type: str, client: Optional[OAuthClientConfig]) -> OAuthClientConfig:
    if client is None:
        raise OAuthNotConfiguredError(f"OAuth client for {provider_type} is not configured")
    return client


def build_refresh_function(
    provider_type: str,
    secret: ProviderSecret,
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.Client] = None,
) -> RefreshFunction:
    """
    Build the refresh function for an instance's provider.

    Raises:
        OAuthNotConfiguredError: Provider has no OAuth refresh, or its client
            credentials are not configured
    """
    settings = settings or get_settings()
    timeout = settings.refresh_timeout_seconds

    if isinstance(secret, AtlassianSecret) and secret.uses_oauth:
        client = _require_client(provider_type, settings.atlassian)
        return OAuthRefreshAdapter(
            provider_type,
            ATLASSIAN_TOKEN_URL,
            client.client_id,
            client.client_secret,
            body_format="json",
            default_expires_in=3600,
            timeout=timeout,
            http_client=http_client,
        )

    if isinstance(secret, HubSpotSecret):
        client = _require_client(provider_type, settings.hubspot)
        return OAuthRefreshAdapter(
            provider_type,
            HUBSPOT_TOKEN_URL,
            client.client_id,
            client.client_secret,
            default_expires_in=1800,
            timeout=timeout,
            http_client=http_client,
        )

    if isinstance(secret, WrikeSecret):
        client = _require_client(provider_type, settings.wrike)
        return OAuthRefreshAdapter(
            provider_type,
            WRIKE_TOKEN_URL,
            client.client_id,
            client.client_secret,
            default_expires_in=3600,
            timeout=timeout,
            http_client=http_client,
        )

    if isinstance(secret, SharePointSecret):
        # App registration is per customer tenant and lives in the secret.
        return OAuthRefreshAdapter(
            provider_type,
            SHAREPOINT_TOKEN_URL.format(tenant_id=secret.tenant_id),
            secret.client_id,
            secret.client_secret,
            default_expires_in=3600,
            extra_params={"scope": SHAREPOINT_SCOPE},
            timeout=timeout,
            http_client=http_client,
        )

    raise OAuthNotConfiguredError(f"{provider_type} credentials do not support token refresh")
