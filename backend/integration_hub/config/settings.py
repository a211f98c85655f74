"""
Environment-backed settings for the integration hub.

Loaded once per process and immutable afterwards. The encryption key and
OAuth client credentials are read here and nowhere else.

SECURITY:
- Secret values are never logged; only their presence is
- repr() of Settings hides secret fields

Usage:
    from integration_hub.config.settings import get_settings

    settings = get_settings()
    settings.refresh_timeout_seconds  # 30.0
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "INTEGRATION_ENCRYPTION_KEY"

DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class OAuthClientConfig:
    """Client registration for one OAuth provider application."""
    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""
    encryption_key: Optional[str] = field(default=None, repr=False)
    refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    atlassian: Optional[OAuthClientConfig] = None
    hubspot: Optional[OAuthClientConfig] = None
    wrike: Optional[OAuthClientConfig] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable is malformed
        """
        env = os.environ if env is None else env

        def oauth_client(prefix: str) -> Optional[OAuthClientConfig]:
            client_id = env.get(f"{prefix}_CLIENT_ID")
            client_secret = env.get(f"{prefix}_CLIENT_SECRET")
            if not client_id or not client_secret:
                return None
            return OAuthClientConfig(client_id=client_id, client_secret=client_secret)

        return cls(
            encryption_key=env.get(ENCRYPTION_KEY_ENV) or None,
            refresh_timeout_seconds=_float_env(
                env, "TOKEN_REFRESH_TIMEOUT_SECONDS", DEFAULT_REFRESH_TIMEOUT_SECONDS
            ),
            probe_timeout_seconds=_float_env(
                env, "CONNECTION_PROBE_TIMEOUT_SECONDS", DEFAULT_PROBE_TIMEOUT_SECONDS
            ),
            atlassian=oauth_client("ATLASSIAN"),
            hubspot=oauth_client("HUBSPOT"),
            wrike=oauth_client("WRIKE"),
        )

    def configured_oauth_providers(self) -> Tuple[str, ...]:
        names = ("atlassian", "hubspot", "wrike")
        return tuple(name for name in names if getattr(self, name) is not None)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info(
            "Integration hub settings loaded",
            extra={
                "encryption_key_present": _settings.encryption_key is not None,
                "oauth_providers": list(_settings.configured_oauth_providers()),
                "refresh_timeout_seconds": _settings.refresh_timeout_seconds,
            },
        )
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests only)."""
    global _settings
    _settings = None
