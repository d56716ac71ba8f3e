"""
connectors — OAuth integration with Linear.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation
  • Callback handling (code → token exchange)
  • Workspace token storage & auto-refresh
  • Fernet encryption of tokens at rest
  • Revocation / disconnect

Each provider is a subclass of BaseConnector.
"""
