"""
Calendar sync entry points for the booking workflow.

Bookings call these after their own state change has been saved.  They
never raise: a failed sync is logged and reported as ``None`` / ``False``.
"""

from __future__ import annotations

import logging
from typing import Optional

from connectors.dependencies import get_calendar_gateway
from connectors.gateway import CalendarGateway, EventInput

logger = logging.getLogger(__name__)


async def add_booking_to_calendar(
    user_id: str,
    event_data: EventInput,
    *,
    gateway: Optional[CalendarGateway] = None,
) -> Optional[str]:
    """Create the booking's calendar event; returns the event id to store on the booking."""
    try:
        gw = gateway or get_calendar_gateway()
        return await gw.create_event(user_id, event_data)
    except Exception:
        logger.exception("Calendar sync (create) failed for user %s", user_id)
        return None


async def update_booking_in_calendar(
    user_id: str,
    event_id: str,
    event_data: EventInput,
    *,
    gateway: Optional[CalendarGateway] = None,
) -> bool:
    try:
        gw = gateway or get_calendar_gateway()
        return await gw.update_event(user_id, event_id, event_data)
    except Exception:
        logger.exception("Calendar sync (update) failed for event %s", event_id)
        return False


async def delete_booking_from_calendar(
    user_id: str,
    event_id: str,
    *,
    gateway: Optional[CalendarGateway] = None,
) -> bool:
    try:
        gw = gateway or get_calendar_gateway()
        return await gw.delete_event(user_id, event_id)
    except Exception:
        logger.exception("Calendar sync (delete) failed for event %s", event_id)
        return False
