"""
connectors — calendar integration module for external providers.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation and callback handling (code → token exchange)
  • CalDAV credential validation for providers without OAuth
  • Per-user credential storage & transparent token refresh
  • Fernet encryption of secrets at rest
  • Provider-agnostic create / update / delete of calendar events

Each provider (Google, Microsoft, Orange) is a subclass of BaseConnector.
"""
