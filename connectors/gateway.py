"""
CalendarGateway — provider-agnostic create / update / delete of calendar events.

Every provider or network failure is logged and reported as ``None`` /
``False``.  Only malformed event data raises (``pydantic.ValidationError``),
and it does so before any network call.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.base import BaseConnector
from connectors.errors import ConnectorError, EventNotFoundError
from connectors.registry import ConnectorRegistry
from connectors.schemas import EventData
from connectors.store import ConnectorStore
from connectors.token_manager import TokenManager

logger = logging.getLogger(__name__)

EventInput = Union[EventData, Mapping[str, Any]]


def _coerce_event(event_data: EventInput) -> EventData:
    if isinstance(event_data, EventData):
        return event_data
    return EventData.model_validate(event_data)


class CalendarGateway:
    def __init__(
        self,
        token_manager: TokenManager,
        registry: ConnectorRegistry,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._tokens = token_manager
        self._registry = registry
        self._session_factory = session_factory

    async def create_event(
        self,
        user_id: str,
        event_data: EventInput,
        provider: Optional[str] = None,
    ) -> Optional[str]:
        """Create the event; returns the provider event id or None."""
        event = _coerce_event(event_data)
        target = await self._resolve(user_id, provider)
        if target is None:
            return None
        connector, token = target
        try:
            event_id = await connector.create_event(token, event)
        except ConnectorError as exc:
            logger.error("Failed to create %s event for user %s: %s", connector.provider_name, user_id, exc)
            return None
        except Exception:
            logger.exception("Unexpected error during %s event create", connector.provider_name)
            return None
        logger.info("Created %s event %s for user %s", connector.provider_name, event_id, user_id)
        return event_id

    async def update_event(
        self,
        user_id: str,
        event_id: str,
        event_data: EventInput,
        provider: Optional[str] = None,
    ) -> bool:
        """Patch the event. A vanished remote event returns False; the connector is untouched."""
        event = _coerce_event(event_data)
        target = await self._resolve(user_id, provider)
        if target is None:
            return False
        connector, token = target
        try:
            await connector.update_event(token, event_id, event)
        except EventNotFoundError:
            logger.warning("%s event %s not found, it may have been deleted", connector.provider_name, event_id)
            return False
        except ConnectorError as exc:
            logger.error("Failed to update %s event %s: %s", connector.provider_name, event_id, exc)
            return False
        except Exception:
            logger.exception("Unexpected error during %s event update", connector.provider_name)
            return False
        logger.info("Updated %s event %s for user %s", connector.provider_name, event_id, user_id)
        return True

    async def delete_event(
        self,
        user_id: str,
        event_id: str,
        provider: Optional[str] = None,
    ) -> bool:
        """Delete the event; an event that is already gone counts as deleted."""
        target = await self._resolve(user_id, provider)
        if target is None:
            return False
        connector, token = target
        try:
            await connector.delete_event(token, event_id)
        except ConnectorError as exc:
            logger.error("Failed to delete %s event %s: %s", connector.provider_name, event_id, exc)
            return False
        except Exception:
            logger.exception("Unexpected error during %s event delete", connector.provider_name)
            return False
        logger.info("Deleted %s event %s for user %s", connector.provider_name, event_id, user_id)
        return True

    # ── Internals ───────────────────────────────────────────────────────

    async def _resolve(
        self,
        user_id: str,
        provider: Optional[str],
    ) -> Optional[tuple[BaseConnector, str]]:
        """Pick the provider (the user's connected one by default) and fetch a token."""
        try:
            if provider is None:
                async with self._session_factory() as session:
                    conn = await ConnectorStore(session).get_connected(user_id)
                if conn is None:
                    logger.debug("User %s has no connected calendar", user_id)
                    return None
                provider = conn.provider
        except Exception:
            logger.exception("Could not look up the connected calendar for user %s", user_id)
            return None

        connector = self._registry.get(provider)
        if connector is None:
            logger.error("No connector registered for provider %s", provider)
            return None

        token = await self._tokens.get_access_token(user_id, provider)
        if not token:
            logger.info("No usable %s token for user %s, skipping calendar sync", provider, user_id)
            return None
        return connector, token
