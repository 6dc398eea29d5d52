"""
OrangeCalendarConnector — Orange webmail calendars over CalDAV.

Orange has no OAuth flow: the user hands over their mailbox username and
password once.  The stored "access token" is the HTTP Basic credential
(``base64(username:password)``) and never expires, so the token manager
always takes its fast path for Orange.
"""

from __future__ import annotations

import base64
import logging
import uuid
from datetime import datetime, timezone
from typing import List
from zoneinfo import ZoneInfo

from connectors.base import BaseConnector
from connectors.errors import ConnectorError, InvalidCredentialsError
from connectors.schemas import EventData, TokenBundle

logger = logging.getLogger(__name__)

_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:current-user-principal/></d:prop></d:propfind>'
)


def basic_credential(username: str, password: str) -> str:
    return base64.b64encode(f"{username}:{password}".encode()).decode()


def _username_from_credential(credential: str) -> str:
    return base64.b64decode(credential).decode().split(":", 1)[0]


def _escape(text: str) -> str:
    """RFC 5545 TEXT escaping."""
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\r", "\\n")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    """Fold content lines longer than 75 octets."""
    raw = line.encode()
    if len(raw) <= 75:
        return line
    parts: List[str] = []
    while raw:
        cut = min(75 if not parts else 74, len(raw))
        # never split a multi-byte character
        while cut < len(raw) and (raw[cut] & 0xC0) == 0x80:
            cut -= 1
        parts.append(raw[:cut].decode())
        raw = raw[cut:]
    return "\r\n ".join(parts)


_UTC_FORMAT = "%Y%m%dT%H%M%SZ"


def _utc(local: datetime, tz: str) -> str:
    """Local wall time in ``tz`` as an RFC 5545 UTC DATE-TIME."""
    return local.replace(tzinfo=ZoneInfo(tz)).astimezone(timezone.utc).strftime(_UTC_FORMAT)


def build_ics(uid: str, event: EventData, default_tz: str) -> str:
    tz = event.zone(default_tz)
    stamp = datetime.now(timezone.utc).strftime(_UTC_FORMAT)
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Vinobook//Booking Calendar//FR",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTAMP:{stamp}",
        f"DTSTART:{_utc(event.start_datetime, tz)}",
        f"DTEND:{_utc(event.end_datetime, tz)}",
        f"SUMMARY:{_escape(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{_escape(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{_escape(event.location)}")
    for a in event.attendees:
        cn = f";CN={_escape(a.display_name)}" if a.display_name else ""
        lines.append(f"ATTENDEE{cn};ROLE=REQ-PARTICIPANT:mailto:{a.email}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"


class OrangeCalendarConnector(BaseConnector):
    """CalDAV connector for Orange calendars (HTTP Basic auth)."""

    @property
    def provider_name(self) -> str:
        return "orange"

    @property
    def display_name(self) -> str:
        return "Orange"

    @property
    def uses_oauth(self) -> bool:
        return False

    def is_configured(self) -> bool:
        return bool(self.settings.api_base_url)

    async def refresh_access_token(self, refresh_token: str) -> TokenBundle:
        raise ConnectorError("Orange credentials cannot be refreshed", provider=self.provider_name)

    async def validate_credentials(self, username: str, password: str) -> TokenBundle:
        """
        Check the credentials with a ``PROPFIND`` on the CalDAV root.

        Raises InvalidCredentialsError on 401/403, ProviderUnavailableError
        when the server cannot be reached.
        """
        credential = basic_credential(username, password)
        resp = await self._request(
            "PROPFIND",
            f"{self.settings.api_base_url}/",
            headers={
                **self._auth(credential),
                "Depth": "0",
                "Content-Type": "application/xml; charset=utf-8",
            },
            content=_PROPFIND_BODY,
        )
        if resp.status_code in (401, 403):
            raise InvalidCredentialsError(
                "Invalid Orange email credentials",
                provider=self.provider_name,
                status_code=resp.status_code,
            )
        if not resp.is_success:
            raise self._api_error(resp)

        logger.info("Orange CalDAV credentials validated for %s", username)
        return TokenBundle(
            access_token=credential,
            token_type="Basic",
            account_id=username,
            account_label=username,
            provider_meta={"caldav_server": self.settings.api_base_url},
        )

    # ── Events ──────────────────────────────────────────────────────────

    @staticmethod
    def _auth(credential: str) -> dict:
        return {"Authorization": f"Basic {credential}"}

    def _event_url(self, credential: str, event_id: str) -> str:
        username = _username_from_credential(credential)
        return (
            f"{self.settings.api_base_url}/calendars/{username}/"
            f"{self.settings.calendar_name}/{event_id}.ics"
        )

    async def _put(self, credential: str, event_id: str, event: EventData, precondition: dict):
        return await self._request(
            "PUT",
            self._event_url(credential, event_id),
            headers={
                **self._auth(credential),
                **precondition,
                "Content-Type": "text/calendar; charset=utf-8",
            },
            content=build_ics(event_id, event, self.settings.default_time_zone),
        )

    async def create_event(self, access_token: str, event: EventData) -> str:
        event_id = uuid.uuid4().hex
        resp = await self._put(access_token, event_id, event, {"If-None-Match": "*"})
        if not resp.is_success:
            raise self._api_error(resp)
        return event_id

    async def update_event(self, access_token: str, event_id: str, event: EventData) -> None:
        resp = await self._put(access_token, event_id, event, {"If-Match": "*"})
        # 412: If-Match failed, the resource does not exist
        if resp.status_code in (404, 412):
            raise self._not_found(event_id)
        if not resp.is_success:
            raise self._api_error(resp)

    async def delete_event(self, access_token: str, event_id: str) -> None:
        resp = await self._request(
            "DELETE", self._event_url(access_token, event_id), headers=self._auth(access_token)
        )
        if resp.status_code == 404:
            logger.info("Orange event %s already gone", event_id)
            return
        if not resp.is_success:
            raise self._api_error(resp)
