"""
GoogleCalendarConnector — OAuth2 web flow and event sync for Google Calendar.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from connectors.base import BaseConnector
from connectors.schemas import EventData, TokenBundle

logger = logging.getLogger(__name__)

_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Reminder overrides applied to every booking event
_REMINDERS = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 24 * 60},
        {"method": "popup", "minutes": 30},
    ],
}


class GoogleCalendarConnector(BaseConnector):
    """OAuth2 connector for Google Calendar."""

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Calendar"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/calendar.events",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
        ]

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
            "state": state,
        }
        return f"{self.settings.auth_endpoint}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> TokenBundle:
        """Exchange auth code for tokens, then fetch the Google profile."""
        self._require_configured()
        token_data = await self._token_request(
            {
                "code": code,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "redirect_uri": self.settings.redirect_uri,
                "grant_type": "authorization_code",
            }
        )

        user_resp = await self._request(
            "GET", _GOOGLE_USERINFO_URL, headers=self._bearer(token_data["access_token"])
        )
        user_info: Dict[str, Any] = user_resp.json() if user_resp.is_success else {}

        return TokenBundle(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 3600)),
            scope=token_data.get("scope", ""),
            account_id=user_info.get("id", user_info.get("email", "")),
            account_label=user_info.get("email", ""),
            provider_meta={
                "email": user_info.get("email"),
                "name": user_info.get("name"),
                "given_name": user_info.get("given_name"),
                "family_name": user_info.get("family_name"),
                "picture": user_info.get("picture"),
                "verified_email": user_info.get("verified_email"),
            },
        )

    # ── Events ──────────────────────────────────────────────────────────

    def _events_url(self) -> str:
        return f"{self.settings.api_base_url}/calendars/primary/events"

    def _event_body(self, event: EventData) -> Dict[str, Any]:
        tz = event.zone(self.settings.default_time_zone)
        return {
            "summary": event.title,
            "description": event.description,
            "location": event.location,
            "start": {"dateTime": event.start, "timeZone": tz},
            "end": {"dateTime": event.end, "timeZone": tz},
            "attendees": [
                {"email": a.email, "displayName": a.display_name}
                for a in event.attendees
            ],
            "reminders": _REMINDERS,
        }

    async def create_event(self, access_token: str, event: EventData) -> str:
        resp = await self._request(
            "POST", self._events_url(), headers=self._bearer(access_token), json=self._event_body(event)
        )
        if not resp.is_success:
            raise self._api_error(resp)
        created = resp.json()
        logger.debug("Google event created: %s", created.get("htmlLink"))
        return created["id"]

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
            logger.info("Google event %s already gone", event_id)
            return
        if not resp.is_success:
            raise self._api_error(resp)
