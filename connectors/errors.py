"""
Exception types raised by calendar connectors.

Providers raise these; ``TokenManager`` and ``CalendarGateway`` catch them
and turn them into ``None`` / ``False`` for their callers.
"""

from __future__ import annotations

from typing import Optional


class ConnectorError(Exception):
    """Base class for every connector failure."""

    def __init__(self, message: str, *, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderNotConfiguredError(ConnectorError):
    """OAuth client id / secret missing from configuration."""


class TokenRejectedError(ConnectorError):
    """The token endpoint answered with a non-success status."""


class ProviderUnavailableError(ConnectorError):
    """Timeout or transport failure; no HTTP response was received."""


class ProviderRequestError(ConnectorError):
    """A calendar API call returned a non-success status."""


class EventNotFoundError(ProviderRequestError):
    """The remote event no longer exists (HTTP 404)."""


class InvalidCredentialsError(ConnectorError):
    """Username / password rejected while connecting a CalDAV account."""


class ConcurrentUpdateError(ConnectorError):
    """Another writer updated the connector row first."""
