"""
Public IP address detection.

Used when a Hostname leaves ``address`` empty. The detector queries an
ipify-compatible endpoint, which answers either ``{"ip": "..."}`` or the bare
address as plain text.
"""

import asyncio
import ipaddress
import json
import logging
from typing import Optional

import aiohttp

from config import ProviderConfig
from errors import AddressResolutionError

logger = logging.getLogger(__name__)


class PublicIPDetector:
    """Detects the public IP address of the host running the operator."""

    def __init__(self, url: str, timeout: int = 10, user_agent: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "PublicIPDetector":
        return cls(
            url=config.public_ip_url,
            timeout=config.public_ip_timeout,
            user_agent=config.user_agent,
        )

    async def detect(self) -> str:
        """
        Return the public IP address as a normalized literal.

        Raises:
            AddressResolutionError: If the endpoint cannot be reached or does
                not return a valid IP address
        """
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url, headers=headers) as response:
                    if response.status != 200:
                        raise AddressResolutionError(
                            f"Public IP lookup failed: HTTP {response.status}"
                        )
                    body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AddressResolutionError(f"Public IP lookup failed: {e}") from e

        address = self._extract_address(body)
        logger.debug(f"Detected public IP address {address}")
        return address

    @staticmethod
    def _extract_address(body: str) -> str:
        text = body.strip()
        try:
            data = json.loads(text)
        except ValueError:
            data = text

        if isinstance(data, dict):
            data = data.get("ip", "")

        try:
            return str(ipaddress.ip_address(str(data).strip()))
        except ValueError:
            raise AddressResolutionError(
                f"Public IP lookup returned an invalid address: {text[:64]!r}"
            )
