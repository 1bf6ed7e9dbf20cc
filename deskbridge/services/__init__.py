"""Services"""

from deskbridge.services.bridge import BridgeRuntime, BridgeService, build_runtime
from deskbridge.services.clickup_client import ClickUpClient
from deskbridge.services.zendesk_client import ZendeskClient

__all__ = ["BridgeRuntime", "BridgeService", "build_runtime", "ClickUpClient", "ZendeskClient"]
