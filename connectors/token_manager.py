"""
Token manager — get / refresh / store per-user calendar credentials.

``TokenManager.get_access_token`` is the single interface the calendar
gateway uses to obtain a usable token for a user + provider combination.
It never raises: every failure resolves to ``None``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import decrypt_secret
from connectors.errors import (
    ConcurrentUpdateError,
    ConnectorError,
    ProviderNotConfiguredError,
    ProviderUnavailableError,
    TokenRejectedError,
)
from connectors.registry import ConnectorRegistry
from connectors.schemas import TokenBundle
from connectors.store import ConnectorStore
from database.helpers import as_utc
from database.models import CalendarConnector

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshOutcome(str, Enum):
    REFRESHED = "refreshed"
    NO_CONNECTOR = "no_connector"
    NO_REFRESH_TOKEN = "no_refresh_token"
    NOT_CONFIGURED = "not_configured"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class TokenManager:
    """
    Produces currently-usable access tokens, refreshing transparently.

    A token is served straight from the store while ``now`` is more than
    ``refresh_buffer_seconds`` before ``expires_at``; inside that window one
    refresh is attempted.  A refresh the provider rejects flips the
    connector to ``is_valid = False`` until the user reconnects.
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._buffer = timedelta(seconds=refresh_buffer_seconds)

    def needs_refresh(self, conn: CalendarConnector, now: Optional[datetime] = None) -> bool:
        expires_at = as_utc(conn.expires_at)
        if expires_at is None:
            return False
        return (now or _utcnow()) > expires_at - self._buffer

    # ── Public API ──────────────────────────────────────────────────────

    async def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        """
        Return a valid access token for the user + provider, or None.

        1. No connector / no stored token → None ("not connected").
        2. Connector invalid or inactive → None.
        3. Token outside the refresh buffer → stored token, no network call.
        4. Otherwise refresh once; on success re-read and return the new token.
        """
        try:
            async with self._session_factory() as session:
                conn = await ConnectorStore(session).get(user_id, provider)
                if conn is None or not conn.access_token:
                    logger.debug("No %s connector for user %s", provider, user_id)
                    return None
                if not conn.is_valid or not conn.is_active:
                    logger.debug(
                        "%s connector for user %s unusable (valid=%s, active=%s)",
                        provider, user_id, conn.is_valid, conn.is_active,
                    )
                    return None
                if not self.needs_refresh(conn):
                    return decrypt_secret(conn.access_token)

            logger.info("%s token for user %s expired or expiring, refreshing", provider, user_id)
            if await self.refresh(user_id, provider) is not RefreshOutcome.REFRESHED:
                return None

            async with self._session_factory() as session:
                refreshed = await ConnectorStore(session).get(user_id, provider)
                if refreshed is None or not refreshed.access_token:
                    return None
                return decrypt_secret(refreshed.access_token)

        except Exception:
            logger.exception("get_access_token failed for %s/%s", provider, user_id)
            return None

    async def refresh_token(self, user_id: str, provider: str) -> bool:
        """Refresh the stored token; True only when a new token was stored."""
        try:
            return await self.refresh(user_id, provider) is RefreshOutcome.REFRESHED
        except Exception:
            logger.exception("refresh_token failed for %s/%s", provider, user_id)
            return False

    async def refresh(self, user_id: str, provider: str) -> RefreshOutcome:
        """
        Run one refresh attempt and report how it ended.

        No session is open while the token endpoint is called; the result is
        written in a second session only if the row's ``version`` is still
        the one that was read.
        """
        async with self._session_factory() as session:
            conn = await ConnectorStore(session).get(user_id, provider)
            if conn is None:
                return RefreshOutcome.NO_CONNECTOR
            if not conn.refresh_token:
                logger.warning(
                    "Cannot refresh %s token for user %s: no refresh token stored",
                    provider, user_id,
                )
                return RefreshOutcome.NO_REFRESH_TOKEN
            refresh_token = decrypt_secret(conn.refresh_token)
            version = conn.version

        connector = self._registry.get(provider)
        if connector is None or not connector.is_configured():
            logger.error(
                "Cannot refresh %s tokens: OAuth client credentials are not configured",
                provider,
            )
            return RefreshOutcome.NOT_CONFIGURED

        try:
            bundle = await connector.refresh_access_token(refresh_token)
        except ProviderNotConfiguredError as exc:
            logger.error("Cannot refresh %s tokens: %s", provider, exc)
            return RefreshOutcome.NOT_CONFIGURED
        except TokenRejectedError as exc:
            logger.warning(
                "Token refresh rejected for %s/%s (HTTP %s), marking connector invalid",
                provider, user_id, exc.status_code,
            )
            return await self._mark_rejected(user_id, provider, version, exc)
        except ProviderUnavailableError as exc:
            logger.warning("Token refresh for %s/%s did not reach the provider: %s", provider, user_id, exc)
            return RefreshOutcome.UNAVAILABLE
        except ConnectorError as exc:
            logger.warning("Token refresh for %s/%s failed: %s", provider, user_id, exc)
            return RefreshOutcome.FAILED

        async with self._session_factory() as session:
            store = ConnectorStore(session)
            conn = await store.get(user_id, provider)
            if conn is None or conn.version != version:
                return await self._resolve_conflict(store, user_id, provider)

            store.apply_refresh(conn, bundle, _utcnow())
            try:
                await store.flush()
                await session.commit()
            except ConcurrentUpdateError:
                await session.rollback()
                return await self._resolve_conflict(store, user_id, provider)

        logger.info("Refreshed %s token for user %s", provider, user_id)
        return RefreshOutcome.REFRESHED

    # ── Internals ───────────────────────────────────────────────────────

    async def _mark_rejected(
        self,
        user_id: str,
        provider: str,
        version: int,
        exc: TokenRejectedError,
    ) -> RefreshOutcome:
        async with self._session_factory() as session:
            store = ConnectorStore(session)
            conn = await store.get(user_id, provider)
            if conn is None or conn.version != version:
                # a concurrent writer got there first; leave its state alone
                logger.info("%s connector for user %s changed during a rejected refresh", provider, user_id)
                return RefreshOutcome.REJECTED
            try:
                await store.mark_invalid(conn, f"Refresh rejected: {exc}")
                await session.commit()
            except ConcurrentUpdateError:
                await session.rollback()
                logger.info("%s connector for user %s changed while marking it invalid", provider, user_id)
        return RefreshOutcome.REJECTED

    async def _resolve_conflict(
        self,
        store: ConnectorStore,
        user_id: str,
        provider: str,
    ) -> RefreshOutcome:
        """Lost an optimistic-lock race: accept the other writer's token if it is usable."""
        current = await store.get(user_id, provider)
        if (
            current is not None
            and current.is_valid
            and current.access_token
            and not self.needs_refresh(current)
        ):
            logger.info("Concurrent refresh for %s/%s already stored a fresh token", provider, user_id)
            return RefreshOutcome.REFRESHED
        logger.warning("Concurrent update left %s/%s without a usable token", provider, user_id)
        return RefreshOutcome.FAILED


# ── Connection management ─────────────────────────────────────────────


async def store_connection(
    user_id: str,
    provider: str,
    bundle: TokenBundle,
    *,
    db_session: AsyncSession,
) -> Dict[str, Any]:
    """Store a new connection (or overwrite the existing one) and return its public view."""
    conn = await ConnectorStore(db_session).upsert(user_id, provider, bundle)
    return ConnectorStore.to_public(conn)


async def get_user_connections(
    user_id: str,
    *,
    db_session: AsyncSession,
) -> List[Dict[str, Any]]:
    """Return all connectors for a user (no secrets exposed)."""
    rows = await ConnectorStore(db_session).list_for_user(user_id)
    return [ConnectorStore.to_public(c) for c in rows]


async def get_connection(
    user_id: str,
    provider: str,
    *,
    db_session: AsyncSession,
) -> Optional[Dict[str, Any]]:
    conn = await ConnectorStore(db_session).get(user_id, provider)
    return ConnectorStore.to_public(conn) if conn else None


async def get_connected_provider(
    user_id: str | uuid.UUID,
    *,
    db_session: AsyncSession,
) -> Optional[str]:
    conn = await ConnectorStore(db_session).get_connected(user_id)
    return conn.provider if conn else None


async def disconnect(
    user_id: str,
    provider: str,
    *,
    db_session: AsyncSession,
) -> bool:
    """Mark the connector inactive. Returns False if there is none."""
    return await ConnectorStore(db_session).deactivate(user_id, provider)


async def reset_connector(
    user_id: str,
    provider: str,
    *,
    db_session: AsyncSession,
) -> bool:
    """Clear ``is_valid = False`` left by a rejected refresh."""
    reset = await ConnectorStore(db_session).reset_validity(user_id, provider)
    if reset:
        logger.info("Connector %s for user %s reset to valid", provider, user_id)
    return reset
