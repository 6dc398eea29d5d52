"""
MicrosoftCalendarConnector — Outlook / Microsoft 365 calendars via Graph.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from connectors.base import BaseConnector
from connectors.schemas import EventData, TokenBundle

logger = logging.getLogger(__name__)


class MicrosoftCalendarConnector(BaseConnector):
    """OAuth2 (v2.0 endpoint) connector for Microsoft Graph calendars."""

    @property
    def provider_name(self) -> str:
        return "microsoft"

    @property
    def display_name(self) -> str:
        return "Microsoft Outlook"

    @property
    def scopes(self) -> List[str]:
        return [
            "offline_access",       # gets refresh_token
            "User.Read",
            "Calendars.ReadWrite",
        ]

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.settings.auth_endpoint}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> TokenBundle:
        """Exchange auth code for tokens, then read ``/me`` for the account label."""
        self._require_configured()
        token_data = await self._token_request(
            {
                "code": code,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "redirect_uri": self.settings.redirect_uri,
                "scope": " ".join(self.scopes),
                "grant_type": "authorization_code",
            }
        )

        me_resp = await self._request(
            "GET",
            f"{self.settings.api_base_url}/me",
            headers=self._bearer(token_data["access_token"]),
        )
        me: Dict[str, Any] = me_resp.json() if me_resp.is_success else {}
        label = me.get("mail") or me.get("userPrincipalName") or ""

        return TokenBundle(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 3600)),
            scope=token_data.get("scope", ""),
            account_id=me.get("id", ""),
            account_label=label,
            provider_meta={
                "user_principal_name": me.get("userPrincipalName"),
                "display_name": me.get("displayName"),
                "mail": me.get("mail"),
            },
        )

    # ── Events ──────────────────────────────────────────────────────────

    def _events_url(self) -> str:
        return f"{self.settings.api_base_url}/me/events"

    def _event_body(self, event: EventData) -> Dict[str, Any]:
        tz = event.zone(self.settings.default_time_zone)
        return {
            "subject": event.title,
            "body": {"contentType": "text", "content": event.description},
            "location": {"displayName": event.location},
            "start": {"dateTime": event.start, "timeZone": tz},
            "end": {"dateTime": event.end, "timeZone": tz},
            "attendees": [
                {
                    "emailAddress": {"address": a.email, "name": a.display_name or a.email},
                    "type": "required",
                }
                for a in event.attendees
            ],
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 30,
        }

    async def create_event(self, access_token: str, event: EventData) -> str:
        resp = await self._request(
            "POST", self._events_url(), headers=self._bearer(access_token), json=self._event_body(event)
        )
        if not resp.is_success:
            raise self._api_error(resp)
        return resp.json()["id"]

    async def update_event(self, access_token: str, event_id: str, event: EventData) -> None:
        resp = await self._request(
            "PATCH",
            f"{self._events_url()}/{event_id}",
            headers=self._bearer(access_token),
            json=self._event_body(event),
        )
        if resp.status_code == 404:
            raise self._not_found(event_id)
        if not resp.is_success:
            raise self._api_error(resp)

    async def delete_event(self, access_token: str, event_id: str) -> None:
        resp = await self._request(
            "DELETE", f"{self._events_url()}/{event_id}", headers=self._bearer(access_token)
        )
        if resp.status_code == 404:
            logger.info("Microsoft event %s already gone", event_id)
            return
        if not resp.is_success:
            raise self._api_error(resp)
