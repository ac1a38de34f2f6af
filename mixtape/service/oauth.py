from __future__ import annotations

import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx

from mixtape.config import Settings
from mixtape.logging import get_logger
from mixtape.service.errors import (
    AuthenticationError,
    ProviderNotConfiguredError,
    ValidationError,
)
from mixtape.service.identity import FederatedProfile

OAUTH_PROVIDERS = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
}

STATE_TTL = timedelta(minutes=10)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthClient:
    """Authorization-code flow against the configured federated providers."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._clock = clock
        self._state_lock = threading.Lock()
        self._states: Dict[str, Tuple[str, datetime]] = {}
        self._code_registry: Dict[Tuple[str, str], dict] = {}

    def _provider_config(self, provider: str) -> dict:
        config = OAUTH_PROVIDERS.get(provider)
        if config is None:
            raise ValidationError(
                f"unsupported oauth provider: {provider}", detail={"provider": provider}
            )
        return config

    def ensure_configured(self, provider: str) -> None:
        """Raise ProviderNotConfiguredError unless client credentials are set."""
        self._provider_config(provider)
        self._credentials(provider)

    def _credentials(self, provider: str) -> Tuple[str, str]:
        if provider == "google" and self.settings.google_oauth_configured:
            return self.settings.google_client_id, self.settings.google_client_secret
        logger.warning("oauth_not_configured", provider=provider)
        raise ProviderNotConfiguredError(f"{provider.capitalize()} OAuth not configured")

    def cleanup_expired_states(self) -> int:
        now = self._clock()
        with self._state_lock:
            expired = [key for key, (_, exp) in self._states.items() if exp <= now]
            for key in expired:
                self._states.pop(key, None)
        return len(expired)

    def authorization_url(self, provider: str) -> str:
        config = self._provider_config(provider)
        client_id, _ = self._credentials(provider)
        self.cleanup_expired_states()

        state = secrets.token_urlsafe(24)
        with self._state_lock:
            self._states[state] = (provider, self._clock() + STATE_TTL)

        params = {
            "client_id": client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": config["scope"],
            "state": state,
        }
        return f"{config['auth_url']}?{urlencode(params)}"

    def _consume_state(self, provider: str, state: Optional[str]) -> bool:
        if not state:
            return False
        with self._state_lock:
            stored = self._states.pop(state, None)
        if not stored:
            return False
        stored_provider, expires_at = stored
        return stored_provider == provider and expires_at > self._clock()

    def register_code(self, provider: str, code: str, claims: dict) -> None:
        """Record the user-info claims a code resolves to, for offline flows."""

        self._code_registry[(provider, code)] = claims

    async def exchange_code(
        self, provider: str, code: str, state: Optional[str]
    ) -> FederatedProfile:
        config = self._provider_config(provider)
        client_id, client_secret = self._credentials(provider)
        if not self._consume_state(provider, state):
            logger.warning("oauth_state_invalid", provider=provider)
            raise AuthenticationError("invalid oauth state")

        claims = self._code_registry.pop((provider, code), None)
        if claims is None:
            claims = await self._fetch_claims(
                config, code, client_id=client_id, client_secret=client_secret
            )
        return FederatedProfile.from_claims(provider, claims)

    async def _fetch_claims(
        self, config: dict, code: str, *, client_id: str, client_secret: str
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=30.0, follow_redirects=False, transport=self._transport
            ) as client:
                token_response = await client.post(
                    config["token_url"],
                    data={
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "code": code,
                        "redirect_uri": self.settings.google_callback_url,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                token_result = token_response.json()
                access_token = (
                    token_result.get("access_token")
                    if isinstance(token_result, dict)
                    else None
                )
                if not access_token:
                    logger.error("oauth_no_access_token")
                    raise AuthenticationError("oauth exchange failed")

                userinfo_response = await client.get(
                    config["userinfo_url"],
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_exchange_http_error",
                status_code=exc.response.status_code,
                error=str(exc),
            )
            raise AuthenticationError("oauth exchange failed") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_exchange_error", error=str(exc))
            raise AuthenticationError("oauth exchange failed") from exc

        if not isinstance(userinfo, dict):
            logger.error("oauth_userinfo_invalid_format", type=str(type(userinfo)))
            raise AuthenticationError("oauth exchange failed")
        logger.info("oauth_exchange_success")
        return userinfo
