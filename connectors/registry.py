"""
ConnectorRegistry — provides access to the configured OAuth connectors.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from connectors.base import BaseConnector
from connectors.linear import LinearConnector

logger = logging.getLogger(__name__)


def _default_connectors() -> List[BaseConnector]:
    return [LinearConnector()]


class ConnectorRegistry:
    """Singleton registry for OAuth connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            cls._instance._discovered = False
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def discover(self, connectors: Optional[Iterable[BaseConnector]] = None) -> None:
        """Register every configured connector (defaults to the built-in set)."""
        if self._discovered and connectors is None:
            return
        for conn in connectors if connectors is not None else _default_connectors():
            if connectors is None and conn.provider_name in self._connectors:
                continue
            if conn.is_configured():
                self._connectors[conn.provider_name] = conn
                logger.info("Connector registered: %s (%s)", conn.display_name, conn.provider_name)
            else:
                logger.warning(
                    "Connector %s skipped — not configured (missing client_id/secret)",
                    conn.provider_name,
                )
        self._discovered = True

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.provider_name] = connector

    def get(self, provider: str) -> Optional[BaseConnector]:
        if not self._discovered:
            self.discover()
        return self._connectors.get(provider)

    def list_configured(self) -> List[str]:
        return list(self._connectors.keys())

    def describe(self) -> List[Dict[str, str]]:
        return [
            {"provider": c.provider_name, "display_name": c.display_name}
            for c in self._connectors.values()
        ]
