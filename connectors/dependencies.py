"""
Wiring for the connector module: registry, token manager and gateway built
from application settings.  Usable directly or as FastAPI dependencies.
"""

from __future__ import annotations

from typing import Optional

from config.settings import config
from connectors.gateway import CalendarGateway
from connectors.registry import ConnectorRegistry
from connectors.token_manager import TokenManager
from database.session import async_session_factory

_token_manager: Optional[TokenManager] = None
_calendar_gateway: Optional[CalendarGateway] = None


def get_registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.discover(config)
    return registry


def get_token_manager() -> TokenManager:
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager(
            get_registry(),
            async_session_factory,
            refresh_buffer_seconds=config.token_refresh_buffer_seconds,
        )
    return _token_manager


def get_calendar_gateway() -> CalendarGateway:
    global _calendar_gateway
    if _calendar_gateway is None:
        _calendar_gateway = CalendarGateway(get_token_manager(), get_registry(), async_session_factory)
    return _calendar_gateway
