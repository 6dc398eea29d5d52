"""
Pydantic schemas shared by the connector module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

_LOCAL_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


# ═══════════════════════════════════════════════════════════════════════════════
# Calendar events
# ═══════════════════════════════════════════════════════════════════════════════


class Attendee(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: Optional[str] = None


class EventData(BaseModel):
    """
    Provider-agnostic description of a calendar event.

    ``start`` / ``end`` are naive local times (``YYYY-MM-DDTHH:MM:SS``)
    interpreted in ``time_zone``.  ``time_zone=None`` means "use the
    provider's configured default".
    """

    title: str = Field(..., min_length=1, max_length=1024)
    description: str = ""
    location: str = ""
    start: str
    end: str
    time_zone: Optional[str] = None
    attendees: List[Attendee] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def _check_local_datetime(cls, value: str) -> str:
        datetime.strptime(value, _LOCAL_DATETIME_FORMAT)
        return value

    @field_validator("time_zone")
    @classmethod
    def _check_time_zone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "EventData":
        if self.end_datetime < self.start_datetime:
            raise ValueError("end must not be before start")
        return self

    @property
    def start_datetime(self) -> datetime:
        return datetime.strptime(self.start, _LOCAL_DATETIME_FORMAT)

    @property
    def end_datetime(self) -> datetime:
        return datetime.strptime(self.end, _LOCAL_DATETIME_FORMAT)

    def zone(self, default: str) -> str:
        return self.time_zone or default


# ═══════════════════════════════════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════════════════════════════════


class TokenBundle(BaseModel):
    """Result of a code exchange, a refresh, or a CalDAV credential check."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: str = ""
    account_id: str = ""
    account_label: str = ""
    provider_meta: Dict[str, Any] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# API request bodies
# ═══════════════════════════════════════════════════════════════════════════════


class OrangeConnectRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1, max_length=255)

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value
