"""
Client session used for every tool-server connection.

Extends the base MCP client session with request/notification logging
tagged by server name.
"""

from typing import Optional

from mcp import ClientSession

from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class OpeneraClientSession(ClientSession):
    """
    MCP client session that logs its traffic under the owning server's name.
    """

    def __init__(self, *args, server_name: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.server_name = server_name or "mcp"

    async def send_request(self, request, result_type, *args, **kwargs):
        logger.debug(f"{self.server_name}: send_request:", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
        except Exception as e:
            logger.error(f"{self.server_name}: send_request failed: {e}")
            raise
        logger.debug(f"{self.server_name}: response:", data=result.model_dump())
        return result

    async def send_notification(self, notification, *args, **kwargs):
        logger.debug(
            f"{self.server_name}: send_notification:", data=notification.model_dump()
        )
        try:
            return await super().send_notification(notification, *args, **kwargs)
        except Exception as e:
            logger.error(f"{self.server_name}: send_notification failed: {e}")
            raise

    async def _received_notification(self, notification) -> None:
        logger.debug(
            f"{self.server_name}: received notification:",
            data=notification.model_dump(),
        )
        return await super()._received_notification(notification)
