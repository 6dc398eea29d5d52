"""
BaseConnector — abstract interface for all calendar connectors.

Every provider (Google, Microsoft, Orange) subclasses this and implements
token refresh plus the three event mutations.  Provider settings arrive as
a ``ProviderConfig`` at construction time; nothing here reads global config.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from config.settings import ProviderConfig
from connectors.errors import (
    ConnectorError,
    EventNotFoundError,
    ProviderNotConfiguredError,
    ProviderRequestError,
    ProviderUnavailableError,
    TokenRejectedError,
)
from connectors.schemas import EventData, TokenBundle

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Abstract base for all calendar connectors."""

    def __init__(
        self,
        settings: ProviderConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'google', 'microsoft', 'orange'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def scopes(self) -> List[str]:
        return []

    @property
    def uses_oauth(self) -> bool:
        """False for providers connected with a username / password."""
        return True

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, state: str) -> str:
        """Build the provider's OAuth2 authorization URL."""
        raise NotImplementedError(f"{self.provider_name} has no OAuth flow")

    async def handle_callback(self, code: str) -> TokenBundle:
        """Exchange the authorization code for tokens."""
        raise NotImplementedError(f"{self.provider_name} has no OAuth flow")

    async def refresh_access_token(self, refresh_token: str) -> TokenBundle:
        """
        Exchange a refresh token for a new access token.

        Single form-encoded POST, no retry.

        Raises
        ------
        ProviderNotConfiguredError – client id / secret missing
        TokenRejectedError         – token endpoint answered non-2xx
        ProviderUnavailableError   – timeout / transport error
        """
        self._require_configured()
        data = await self._token_request(
            {
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        if not data.get("access_token"):
            raise ConnectorError(
                f"{self.display_name} refresh response carried no access_token",
                provider=self.provider_name,
            )
        return TokenBundle(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 3600)),
            scope=data.get("scope", ""),
        )

    # ── Calendar events ─────────────────────────────────────────────────

    @abstractmethod
    async def create_event(self, access_token: str, event: EventData) -> str:
        """Create the event and return the provider-issued event id."""
        ...

    @abstractmethod
    async def update_event(self, access_token: str, event_id: str, event: EventData) -> None:
        """Patch an existing event; raises EventNotFoundError on 404."""
        ...

    @abstractmethod
    async def delete_event(self, access_token: str, event_id: str) -> None:
        """Delete an event; an already-missing event is not an error."""
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if the OAuth client id and secret are set."""
        return bool(self.settings.client_id and self.settings.client_secret)

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfiguredError(
                f"{self.display_name} OAuth credentials are not configured",
                provider=self.provider_name,
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request; transport failures become ProviderUnavailableError."""
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"{self.display_name} unreachable: {exc!r}",
                provider=self.provider_name,
            ) from exc

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        resp = await self._request("POST", self.settings.token_endpoint, data=form)
        if not resp.is_success:
            raise TokenRejectedError(
                f"{self.display_name} token endpoint returned {resp.status_code}: {resp.text[:200]}",
                provider=self.provider_name,
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ConnectorError(
                f"{self.display_name} token endpoint returned a non-JSON body",
                provider=self.provider_name,
                status_code=resp.status_code,
            ) from exc

    @staticmethod
    def _bearer(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _api_error(self, resp: httpx.Response) -> ProviderRequestError:
        return ProviderRequestError(
            f"{self.display_name} API error: {resp.status_code} - {resp.text[:200]}",
            provider=self.provider_name,
            status_code=resp.status_code,
        )

    def _not_found(self, event_id: str) -> EventNotFoundError:
        return EventNotFoundError(
            f"{self.display_name} event {event_id} not found",
            provider=self.provider_name,
            status_code=404,
        )
