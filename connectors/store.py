"""
ConnectorStore — persistence for per-user calendar connector credentials.

Wraps one ``AsyncSession``; the caller owns the session and commits.
Secrets are encrypted on the way in and left encrypted on the row — use
``decrypt_secret`` when a plaintext value is needed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from connectors.encryption import encrypt_secret
from connectors.errors import ConcurrentUpdateError
from connectors.schemas import TokenBundle
from database.helpers import as_utc, to_uuid
from database.models import CalendarConnector

logger = logging.getLogger(__name__)


class ConnectorStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, user_id: str | uuid.UUID, provider: str) -> Optional[CalendarConnector]:
        result = await self._session.execute(
            select(CalendarConnector)
            .where(
                CalendarConnector.user_id == to_uuid(user_id),
                CalendarConnector.provider == provider,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str | uuid.UUID) -> List[CalendarConnector]:
        result = await self._session.execute(
            select(CalendarConnector)
            .where(CalendarConnector.user_id == to_uuid(user_id))
            .order_by(CalendarConnector.provider)
        )
        return list(result.scalars().all())

    async def get_connected(self, user_id: str | uuid.UUID) -> Optional[CalendarConnector]:
        """Most recently connected connector that is active, valid and holds a token."""
        result = await self._session.execute(
            select(CalendarConnector)
            .where(
                CalendarConnector.user_id == to_uuid(user_id),
                CalendarConnector.is_active.is_(True),
                CalendarConnector.is_valid.is_(True),
                CalendarConnector.access_token != "",
            )
            .order_by(CalendarConnector.connected_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ── Writes ──────────────────────────────────────────────────────────

    async def upsert(
        self,
        user_id: str | uuid.UUID,
        provider: str,
        bundle: TokenBundle,
    ) -> CalendarConnector:
        """
        Store a new connection or overwrite the existing one for
        (user, provider).  Reconnecting always re-enables the connector.
        """
        now = datetime.now(timezone.utc)
        conn = await self.get(user_id, provider)
        if conn is None:
            conn = CalendarConnector(
                connector_id=uuid.uuid4(),
                user_id=to_uuid(user_id),
                provider=provider,
            )
            self._session.add(conn)
            logger.info("Created %s connector for user %s", provider, user_id)
        else:
            logger.info("Updated %s connector for user %s", provider, user_id)

        conn.access_token = encrypt_secret(bundle.access_token)
        if bundle.refresh_token:
            conn.refresh_token = encrypt_secret(bundle.refresh_token)
        conn.token_type = bundle.token_type
        conn.scope = bundle.scope
        conn.expires_in = bundle.expires_in
        conn.expires_at = (
            now + timedelta(seconds=bundle.expires_in) if bundle.expires_in is not None else None
        )
        conn.account_id = bundle.account_id or conn.account_id
        conn.account_label = bundle.account_label or conn.account_label
        conn.provider_meta = bundle.provider_meta or conn.provider_meta or {}
        conn.is_valid = True
        conn.is_active = True
        conn.error_message = None
        conn.connected_at = now
        await self.flush()
        return conn

    def apply_refresh(self, conn: CalendarConnector, bundle: TokenBundle, now: datetime) -> None:
        """Overwrite token fields in place; keep the refresh token unless a new one came back."""
        expires_in = bundle.expires_in if bundle.expires_in is not None else 3600
        conn.access_token = encrypt_secret(bundle.access_token)
        conn.expires_in = expires_in
        conn.expires_at = now + timedelta(seconds=expires_in)
        if bundle.refresh_token:
            conn.refresh_token = encrypt_secret(bundle.refresh_token)
        if bundle.scope:
            conn.scope = bundle.scope
        conn.is_valid = True
        conn.error_message = None
        conn.last_refreshed = now

    async def mark_invalid(self, conn: CalendarConnector, reason: str) -> None:
        conn.is_valid = False
        conn.error_message = reason
        await self.flush()

    async def deactivate(self, user_id: str | uuid.UUID, provider: str) -> bool:
        """User-initiated disconnect: keep the row and its credentials, flip ``is_active``."""
        conn = await self.get(user_id, provider)
        if conn is None:
            return False
        conn.is_active = False
        await self.flush()
        logger.info("Disconnected %s for user %s", provider, user_id)
        return True

    async def reset_validity(self, user_id: str | uuid.UUID, provider: str) -> bool:
        conn = await self.get(user_id, provider)
        if conn is None:
            return False
        conn.is_valid = True
        conn.error_message = None
        await self.flush()
        return True

    async def flush(self) -> None:
        """Flush pending writes; a lost optimistic-lock race becomes ConcurrentUpdateError."""
        try:
            await self._session.flush()
        except (StaleDataError, IntegrityError) as exc:
            raise ConcurrentUpdateError(f"Connector row changed concurrently: {exc}") from exc

    # ── Presentation ────────────────────────────────────────────────────

    @staticmethod
    def to_public(conn: CalendarConnector) -> Dict[str, Any]:
        """Connector fields safe to return over the API (no secrets)."""
        expires_at = as_utc(conn.expires_at)
        connected_at = as_utc(conn.connected_at)
        return {
            "connector_id": str(conn.connector_id),
            "provider": conn.provider,
            "account_id": conn.account_id,
            "account_label": conn.account_label,
            "is_active": conn.is_active,
            "is_valid": conn.is_valid,
            "scope": conn.scope or "",
            "expires_at": expires_at.isoformat() if expires_at else None,
            "connected_at": connected_at.isoformat() if connected_at else None,
            "error_message": conn.error_message,
            "provider_meta": conn.provider_meta or {},
        }
