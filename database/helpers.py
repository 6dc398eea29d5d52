"""
Database helper functions shared by the auth and connector modules.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional


def to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    """Coerce a user/connector id to ``uuid.UUID``; raises ValueError on garbage."""
    return uuid.UUID(value) if isinstance(value, str) else value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
