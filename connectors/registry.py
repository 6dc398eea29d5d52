"""
ConnectorRegistry — builds and provides access to all calendar connectors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.google import GoogleCalendarConnector
from connectors.microsoft import MicrosoftCalendarConnector
from connectors.orange import OrangeCalendarConnector

logger = logging.getLogger(__name__)

# ── All known connectors, add new ones here ──────────────────────────────

_CONNECTOR_CLASSES: Dict[str, Type[BaseConnector]] = {
    "google": GoogleCalendarConnector,
    "microsoft": MicrosoftCalendarConnector,
    "orange": OrangeCalendarConnector,
}


class ConnectorRegistry:
    """Singleton registry for all calendar connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            cls._instance._discovered = False
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None

    def discover(self, settings: Settings) -> None:
        """Instantiate every known connector with its ProviderConfig."""
        if self._discovered:
            return
        for name, connector_cls in _CONNECTOR_CLASSES.items():
            conn = connector_cls(settings.provider_config(name))
            self.register(conn)
            if conn.is_configured():
                logger.info("Connector registered: %s (%s)", conn.display_name, name)
            else:
                logger.warning(
                    "Connector %s registered but not configured (missing client_id/secret)",
                    name,
                )
        self._discovered = True

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.provider_name] = connector

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all registered connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "auth": "oauth" if c.uses_oauth else "credentials",
                "configured": c.is_configured(),
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        return [name for name, c in self._connectors.items() if c.is_configured()]
