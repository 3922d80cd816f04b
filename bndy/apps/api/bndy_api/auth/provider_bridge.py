"""Identity Provider Bridge (OAuth 2.0 authorization-code flow).

Exchanges a provider authorization code for verified identity claims.

SECURITY:
- Upstream access/refresh/id tokens are used once, inside this module, to
  fetch userinfo, and are never returned to callers or logged
- Upstream error bodies are never surfaced; callers see ProviderExchangeFailed
- Every HTTP call has a bounded timeout and no retries
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from bndy_api.auth.errors import ProviderExchangeFailed
from bndy_api.config import env

logger = logging.getLogger(__name__)

# Well-known endpoints; any provider can be configured fully through env
_BUILTIN_ENDPOINTS: dict[str, dict[str, str]] = {
    "google": {
        "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://openidconnect.googleapis.com/v1/userinfo",
    },
}

DEFAULT_SCOPES = ("openid", "email", "profile")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    redirect_uri: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES


@dataclass(frozen=True)
class ProviderClaims:
    """Identity claims extracted from the provider's userinfo response."""

    provider: str
    subject: str
    email: Optional[str] = None
    email_verified: bool = False
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None


def load_provider_config(name: str) -> ProviderConfig:
    """Load one provider from OAUTH_<NAME>_* environment variables.

    Required: OAUTH_<NAME>_CLIENT_ID, OAUTH_<NAME>_CLIENT_SECRET
    Optional (required for providers without built-in endpoints):
        OAUTH_<NAME>_AUTHORIZE_URL, OAUTH_<NAME>_TOKEN_URL, OAUTH_<NAME>_USERINFO_URL
    Optional: OAUTH_<NAME>_SCOPES (space or comma separated)

    Raises:
        ValueError: If required settings are missing
    """
    prefix = f"OAUTH_{name.upper()}_"
    builtin = _BUILTIN_ENDPOINTS.get(name, {})

    def setting(key: str, required: bool = True) -> str:
        value = os.getenv(prefix + key.upper()) or builtin.get(key.lower(), "")
        if required and not value:
            raise ValueError(
                f"{prefix}{key.upper()} is required for OAuth provider '{name}'."
            )
        return value

    raw_scopes = os.getenv(prefix + "SCOPES", "")
    scopes = tuple(s for s in raw_scopes.replace(",", " ").split() if s) or DEFAULT_SCOPES

    return ProviderConfig(
        name=name,
        client_id=setting("client_id"),
        client_secret=setting("client_secret"),
        authorize_url=setting("authorize_url"),
        token_url=setting("token_url"),
        userinfo_url=setting("userinfo_url"),
        redirect_uri=env.get_oauth_redirect_uri(),
        scopes=scopes,
    )


def _as_bool(value: Any) -> bool:
    # Some providers (Cognito) send "true"/"false" strings
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IdentityProviderBridge:
    """Authorization-code exchange against one provider."""

    def __init__(self, config: ProviderConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(timeout=env.get_provider_timeout_seconds())

    @property
    def name(self) -> str:
        return self.config.name

    def authorization_url(self, state: str) -> str:
        """Provider authorization endpoint URL carrying ``state``."""
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.config.client_id,
                "redirect_uri": self.config.redirect_uri,
                "scope": " ".join(self.config.scopes),
                "state": state,
            }
        )
        return f"{self.config.authorize_url}?{query}"

    def exchange(self, code: str) -> ProviderClaims:
        """Exchange an authorization code for identity claims.

        Raises:
            ProviderExchangeFailed: Transport error, timeout, non-2xx status,
                malformed body, or missing subject
        """
        if not code:
            raise ProviderExchangeFailed("Authorization code missing")

        try:
            token_response = self.client.post(
                self.config.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.config.redirect_uri,
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                headers={"Accept": "application/json"},
            )
            token_response.raise_for_status()
            token_payload = token_response.json()
            if not isinstance(token_payload, dict):
                raise ValueError("token response is not a JSON object")
            access_token = token_payload.get("access_token")
            if not access_token:
                raise ProviderExchangeFailed("Provider returned no access token")

            userinfo_response = self.client.get(
                self.config.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            userinfo_response.raise_for_status()
            userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Identity provider returned error status",
                extra={
                    "event": "provider.exchange.http_error",
                    "provider": self.name,
                    "status_code": e.response.status_code,
                    "url_path": e.request.url.path,
                },
            )
            raise ProviderExchangeFailed("Identity provider rejected the sign-in") from e
        except httpx.HTTPError as e:
            logger.warning(
                "Identity provider unreachable",
                extra={
                    "event": "provider.exchange.transport_error",
                    "provider": self.name,
                    "error_type": type(e).__name__,
                },
            )
            raise ProviderExchangeFailed("Identity provider unavailable") from e
        except ValueError as e:
            logger.warning(
                "Identity provider returned malformed JSON",
                extra={"event": "provider.exchange.bad_body", "provider": self.name},
            )
            raise ProviderExchangeFailed("Identity provider returned an invalid response") from e

        if not isinstance(userinfo, dict) or not userinfo.get("sub"):
            raise ProviderExchangeFailed("Identity provider returned no subject")

        claims = ProviderClaims(
            provider=self.name,
            subject=str(userinfo["sub"]),
            email=_optional_str(userinfo.get("email")),
            email_verified=_as_bool(userinfo.get("email_verified", False)),
            name=_optional_str(userinfo.get("name")),
            given_name=_optional_str(userinfo.get("given_name")),
            family_name=_optional_str(userinfo.get("family_name")),
            picture=_optional_str(userinfo.get("picture")),
        )

        logger.info(
            "Identity provider exchange succeeded",
            extra={
                "event": "provider.exchange.success",
                "provider": self.name,
                "email_verified": claims.email_verified,
            },
        )
        return claims


class ProviderRegistry:
    """Configured providers by name."""

    def __init__(self, bridges: Optional[dict[str, IdentityProviderBridge]] = None):
        self._bridges = dict(bridges or {})

    @classmethod
    def from_env(cls) -> "ProviderRegistry":
        return cls(
            {
                name: IdentityProviderBridge(load_provider_config(name))
                for name in env.get_enabled_providers()
            }
        )

    def get(self, name: str) -> Optional[IdentityProviderBridge]:
        return self._bridges.get((name or "").lower())

    def names(self) -> list[str]:
        return sorted(self._bridges)


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get provider registry singleton (built from OAUTH_PROVIDERS)."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry.from_env()
    return _registry
