"""Gateway access, visual tools and turn orchestration."""

from .client import AIStreamEvent, ClientSettings, GatewayClient

__all__ = ["AIStreamEvent", "ClientSettings", "GatewayClient"]
