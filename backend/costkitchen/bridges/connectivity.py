"""
CostKitchen - Connectivity Probe

Short-timeout GET against a health URL. Advisory only: the services still
handle remote failures when the probe says online.
"""

import logging
from typing import Optional

import httpx

from costkitchen.bridges.base import ConnectivityProbe
from costkitchen.core.config import settings

logger = logging.getLogger(__name__)


class HttpConnectivityProbe(ConnectivityProbe):

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.CONNECTIVITY_URL
        self.timeout = timeout or settings.CONNECTIVITY_TIMEOUT_SECONDS
        self._transport = transport

    async def is_online(self) -> bool:
        # No health URL configured: assume online
        if not self.url:
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            logger.info(f"[NET] Offline: {e}")
            return False
        return response.status_code < 500
