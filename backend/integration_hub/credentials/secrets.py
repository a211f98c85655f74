"""
Typed secret variants, one per provider type.

Each credential instance stores an encrypted JSON object whose shape depends
on the provider. The shapes are declared here as pydantic models and checked
when secrets enter or leave the CredentialStore, so call sites never poke at
untyped dicts.

SECURITY:
- Validation errors report field names and messages only, never values
- repr() of every variant hides secret fields

Usage:
    secret = parse_secret("gitlab", {"gitlab_url": "...", "api_token": "..."})
    secret.instance_hint()    # "https://gitlab.example.com"
    secret.token_envelope()   # None for non-OAuth variants
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Literal, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from integration_hub.platform.errors import ValidationError


class SecretValidationError(ValidationError):
    """Secret does not match the field set required by its provider type."""

    def __init__(self, provider_type: str, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            details={"provider_type": provider_type, "errors": errors or []},
        )
        self.provider_type = provider_type

    @classmethod
    def from_pydantic(cls, provider_type: str, exc: PydanticValidationError) -> "SecretValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"],
            }
            for err in exc.errors(include_input=False, include_url=False)
        ]
        fields = ", ".join(e["field"] for e in errors)
        return cls(provider_type, f"Invalid {provider_type} credentials: {fields}", errors)


def _normalise_base_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return value.rstrip("/")


# ============================================================================
# Token envelope
# ============================================================================

class TokenEnvelope(BaseModel):
    """
    Decrypted OAuth token set for one credential instance.

    expires_at is an aware UTC datetime. Stored secrets carry it as unix
    seconds; a missing value is read as the epoch, i.e. already expired.
    """
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: datetime
    scope: Optional[str] = None

    @field_validator("expires_at", mode="before")
    @classmethod
    def coerce_expires_at(cls, value: Any) -> Any:
        if value is None:
            return datetime.fromtimestamp(0, tz=timezone.utc)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def seconds_until_expiry(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    def to_secret_fields(self) -> Dict[str, Any]:
        """Render back to the stored secret shape."""
        fields: Dict[str, Any] = {
            "access_token": self.access_token,
            "expires_at": int(self.expires_at.timestamp()),
        }
        if self.refresh_token is not None:
            fields["refresh_token"] = self.refresh_token
        if self.scope is not None:
            fields["scope"] = self.scope
        return fields


# ============================================================================
# Provider variants
# ============================================================================

class ProviderSecret(BaseModel):
    """Base class for provider secret variants."""
    # Unknown keys survive a refresh round-trip.
    model_config = ConfigDict(extra="allow", hide_input_in_errors=True)

    provider_type: ClassVar[str] = ""

    def token_envelope(self) -> Optional[TokenEnvelope]:
        return None

    def instance_hint(self) -> Optional[str]:
        return None


class OAuthSecret(ProviderSecret):
    access_token: str = Field(min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[int] = None
    scope: Optional[str] = None

    def token_envelope(self) -> Optional[TokenEnvelope]:
        return TokenEnvelope(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
            scope=self.scope,
        )


class AtlassianSecret(ProviderSecret):
    """Jira / Confluence: API token (cloud or server) or Atlassian OAuth 2.0."""
    auth_mode: Literal["api_token", "oauth"] = "api_token"
    url: Optional[str] = None
    username: Optional[str] = None
    api_token: Optional[str] = Field(default=None, repr=False)
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[int] = None
    scope: Optional[str] = None
    cloud_id: Optional[str] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _normalise_base_url(value)

    @model_validator(mode="after")
    def check_auth_mode_fields(self):
        if self.auth_mode == "oauth":
            required = ("access_token", "cloud_id")
        else:
            required = ("url", "username", "api_token")
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"{self.auth_mode} mode requires: {', '.join(missing)}")
        return self

    @property
    def uses_oauth(self) -> bool:
        return self.auth_mode == "oauth"

    def token_envelope(self) -> Optional[TokenEnvelope]:
        if not self.uses_oauth:
            return None
        return TokenEnvelope(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
            scope=self.scope,
        )

    def instance_hint(self) -> Optional[str]:
        return self.url


class JiraSecret(AtlassianSecret):
    provider_type: ClassVar[str] = "jira"


class ConfluenceSecret(AtlassianSecret):
    provider_type: ClassVar[str] = "confluence"


class GitLabSecret(ProviderSecret):
    provider_type: ClassVar[str] = "gitlab"

    gitlab_url: str
    api_token: str = Field(min_length=1, repr=False)

    @field_validator("gitlab_url")
    @classmethod
    def check_url(cls, value: str) -> str:
        normalised = _normalise_base_url(value)
        if normalised is None:
            raise ValueError("must not be empty")
        return normalised

    def instance_hint(self) -> Optional[str]:
        return self.gitlab_url


class HubSpotSecret(OAuthSecret):
    provider_type: ClassVar[str] = "hubspot"


class WrikeSecret(OAuthSecret):
    provider_type: ClassVar[str] = "wrike"

    host: Optional[str] = None


class SharePointSecret(OAuthSecret):
    """Microsoft Graph delegated token plus the app registration used to refresh it."""
    provider_type: ClassVar[str] = "sharepoint"

    tenant_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)


class SapC4cSecret(ProviderSecret):
    provider_type: ClassVar[str] = "sap_c4c"

    base_url: str
    auth_mode: Literal["basic", "user_delegation"] = "basic"
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    c4c_oauth_client_id: Optional[str] = None
    c4c_oauth_client_secret: Optional[str] = Field(default=None, repr=False)

    @field_validator("base_url")
    @classmethod
    def check_url(cls, value: str) -> str:
        normalised = _normalise_base_url(value)
        if normalised is None:
            raise ValueError("must not be empty")
        return normalised

    @model_validator(mode="after")
    def check_auth_mode_fields(self):
        if self.auth_mode == "basic":
            required = ("username", "password")
        else:
            required = ("c4c_oauth_client_id", "c4c_oauth_client_secret")
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"{self.auth_mode} mode requires: {', '.join(missing)}")
        return self


class TrelloSecret(ProviderSecret):
    provider_type: ClassVar[str] = "trello"

    api_key: str = Field(min_length=1, repr=False)
    api_token: str = Field(min_length=1, repr=False)


SECRET_VARIANTS: Dict[str, Type[ProviderSecret]] = {
    variant.provider_type: variant
    for variant in (
        JiraSecret,
        ConfluenceSecret,
        GitLabSecret,
        HubSpotSecret,
        WrikeSecret,
        SharePointSecret,
        SapC4cSecret,
        TrelloSecret,
    )
}


def parse_secret(provider_type: str, data: Mapping[str, Any]) -> ProviderSecret:
    """
    Validate raw secret data against the variant for provider_type.

    Raises:
        SecretValidationError: If no variant exists or the data is invalid
    """
    variant = SECRET_VARIANTS.get(provider_type)
    if variant is None:
        raise SecretValidationError(
            provider_type,
            f"No credential schema for provider type '{provider_type}'",
        )
    if not isinstance(data, Mapping):
        raise SecretValidationError(provider_type, "Credentials must be an object")

    try:
        return variant.model_validate(dict(data))
    except PydanticValidationError as exc:
        # Chaining would carry the raw input along with the traceback.
        raise SecretValidationError.from_pydantic(provider_type, exc) from None
