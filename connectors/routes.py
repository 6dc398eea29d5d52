"""
Connector API routes — OAuth connect/callback, Orange credentials, status,
disconnect, admin reset.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id, require_admin
from config.settings import config
from connectors.base import BaseConnector
from connectors.dependencies import get_registry
from connectors.errors import (
    ConcurrentUpdateError,
    ConnectorError,
    InvalidCredentialsError,
    ProviderUnavailableError,
)
from connectors.orange import OrangeCalendarConnector
from connectors.registry import ConnectorRegistry
from connectors.schemas import OrangeConnectRequest
from connectors.token_manager import (
    disconnect,
    get_connected_provider,
    get_connection,
    get_user_connections,
    reset_connector,
    store_connection,
)
from database.helpers import to_uuid
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])

# ── State token helpers (CSRF protection) ──────────────────────────────

_STATE_TTL = 600  # seconds


def _sign_state(raw: bytes) -> str:
    return hmac.new(config.oauth_state_secret.encode(), raw, hashlib.sha256).hexdigest()[:16]


def create_state(user_id: str, provider: str) -> str:
    """Create an opaque state string encoding user_id, provider and expiry."""
    payload = json.dumps(
        {"user_id": user_id, "provider": provider, "exp": int(time.time()) + _STATE_TTL}
    )
    raw = payload.encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign_state(raw)


def verify_state(state: str, provider: str) -> str:
    """Verify state token for ``provider`` and return the user_id; raises ValueError."""
    parts = state.split(".", 1)
    if len(parts) != 2:
        raise ValueError("bad format")
    raw = urlsafe_b64decode(parts[0])
    if not hmac.compare_digest(parts[1], _sign_state(raw)):
        raise ValueError("bad signature")
    payload = json.loads(raw)
    if payload.get("exp", 0) < time.time():
        raise ValueError("state expired")
    if payload.get("provider") != provider:
        raise ValueError("state issued for another provider")
    return payload["user_id"]


# ── Helpers ────────────────────────────────────────────────────────────


def _envelope(message: str, data: Any = None) -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def _connector_or_404(registry: ConnectorRegistry, provider: str) -> BaseConnector:
    connector = registry.get(provider)
    if connector is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider '{provider}' not found",
        )
    return connector


def _oauth_connector_or_404(registry: ConnectorRegistry, provider: str) -> BaseConnector:
    connector = _connector_or_404(registry, provider)
    if not connector.uses_oauth or not connector.is_configured():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider '{provider}' has no configured OAuth flow",
        )
    return connector


def _settings_redirect(provider: str, error: Optional[str] = None) -> RedirectResponse:
    base = f"{config.client_url}/dashboard/settings"
    if error:
        return RedirectResponse(f"{base}?{provider}_error={quote(error)}", status_code=302)
    return RedirectResponse(f"{base}?{provider}_connected=true", status_code=302)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """
    List all calendar providers and their configuration status.
    No auth required — used by frontend to show available connectors.
    """
    return _envelope("Available calendar providers", registry.list_providers())


@router.get("/connections")
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """List all calendar connectors for the authenticated user."""
    connections = await get_user_connections(user_id, db_session=session)
    return _envelope(f"{len(connections)} calendar connection(s)", connections)


@router.get("/connected-provider")
async def connected_provider(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    provider = await get_connected_provider(user_id, db_session=session) or "none"
    return _envelope(f"Currently connected provider: {provider}", {"provider": provider})


@router.post("/orange/connect", status_code=status.HTTP_201_CREATED)
async def connect_orange(
    req: OrangeConnectRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Validate Orange CalDAV credentials, then store them encrypted."""
    connector = _connector_or_404(registry, "orange")
    if not isinstance(connector, OrangeCalendarConnector):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Orange connector misconfigured")

    if await session.get(User, to_uuid(user_id)) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        bundle = await connector.validate_credentials(req.username, req.password)
    except InvalidCredentialsError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid Orange email credentials. Please check your username and password.",
        )
    except ProviderUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unable to connect to Orange CalDAV server. Please try again later.",
        )
    except ConnectorError as exc:
        logger.warning("Orange credential check failed for user %s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Failed to validate Orange calendar credentials. Please check your credentials and try again.",
        )

    try:
        data = await store_connection(user_id, "orange", bundle, db_session=session)
    except ConcurrentUpdateError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Connector already being updated for this user and provider",
        )
    return _envelope("Orange calendar connected successfully", data)


@router.get("/{provider}/status")
async def connector_status(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    connector = _connector_or_404(registry, provider)
    data = await get_connection(user_id, provider, db_session=session)
    message = (
        f"{connector.display_name} calendar connection found"
        if data
        else f"No {connector.display_name} calendar connection found"
    )
    return _envelope(message, data)


@router.get("/{provider}/auth-url")
async def get_auth_url(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """
    Get the OAuth authorization URL for a provider.

    Frontend should redirect the user (or open a popup) to this URL.
    """
    connector = _oauth_connector_or_404(registry, provider)
    state = create_state(user_id, provider)
    return _envelope(
        f"{connector.display_name} OAuth URL generated successfully",
        {"auth_url": connector.get_auth_url(state), "state": state},
    )


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> RedirectResponse:
    """
    OAuth callback — the provider redirects here after consent.

    Exchanges the code for tokens, stores them, and redirects to the
    frontend settings page with a success or error flag.
    """
    connector = _oauth_connector_or_404(registry, provider)

    if error:
        logger.warning("%s OAuth error: %s %s", provider, error, error_description)
        return _settings_redirect(provider, error_description or error)
    if not code or not state:
        return _settings_redirect(provider, "No authorization code received")

    try:
        user_id = verify_state(state, provider)
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("Rejected %s OAuth state: %s", provider, exc)
        return _settings_redirect(provider, "Invalid or expired OAuth state")

    error_message = await _exchange_and_store(connector, user_id, code, session)
    if error_message:
        return _settings_redirect(provider, error_message)

    logger.info("OAuth connected: user=%s provider=%s", user_id, provider)
    return _settings_redirect(provider)


async def _exchange_and_store(
    connector: BaseConnector,
    user_id: str,
    code: str,
    session: AsyncSession,
) -> Optional[str]:
    provider = connector.provider_name
    try:
        bundle = await connector.handle_callback(code)
    except (ConnectorError, KeyError) as exc:
        logger.error("OAuth code exchange failed for %s: %s", provider, exc)
        return f"Failed to connect {connector.display_name}"
    try:
        await store_connection(user_id, provider, bundle, db_session=session)
        await session.commit()
    except ConcurrentUpdateError:
        await session.rollback()
        return "Connection is being updated, please retry"
    return None


@router.delete("/{provider}/disconnect")
async def disconnect_provider(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Disable the connector; stored credentials are kept."""
    connector = _connector_or_404(registry, provider)
    if not await disconnect(user_id, provider, db_session=session):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{connector.display_name} connector not found for this user",
        )
    return _envelope(f"{connector.display_name} calendar disconnected successfully")


@router.post("/admin/{user_id}/{provider}/reset")
async def admin_reset_connector(
    user_id: str,
    provider: str,
    _admin_id: str = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Re-enable a connector that a rejected refresh marked invalid."""
    _connector_or_404(registry, provider)
    try:
        to_uuid(user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user id")
    if not await reset_connector(user_id, provider, db_session=session):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connector not found")
    return _envelope("Connector marked valid")
