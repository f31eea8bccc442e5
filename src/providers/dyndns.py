"""
dyndns2 protocol providers.

Dyn, No-IP and self-hosted DDNS servers all speak the dyndns2 update
protocol: an authenticated GET on ``/nic/update`` answered by a plain text
return code. Whether an update is needed is decided by resolving the FQDN.
"""

import asyncio
import ipaddress
import logging
from typing import Optional, Set

import aiohttp
import dns.asyncresolver
import dns.exception
import dns.resolver

from errors import ProviderError
from providers.base import DNSProvider, ProviderKind

logger = logging.getLogger(__name__)

# Return codes that mean the record now holds the requested address
SUCCESS_CODES = ("good", "nochg")

RETURN_CODE_MESSAGES = {
    "badauth": "authentication failed",
    "badagent": "user agent blocked",
    "notfqdn": "hostname is not a fully qualified domain name",
    "nohost": "hostname does not exist in this account",
    "numhost": "too many hosts in update",
    "abuse": "hostname blocked for update abuse",
    "dnserr": "provider DNS error",
    "911": "provider is unavailable",
}


class DynProvider(DNSProvider):
    """
    Dyn provider, also the default strategy for custom endpoints.

    Credentials format: ``authToken: "<username>:<password or updater key>"``
    """

    kind = ProviderKind.DYN

    def __init__(self, config=None):
        super().__init__(config)
        self._auth: Optional[aiohttp.BasicAuth] = None

    def default_api_url(self) -> str:
        return self.config.dyn_api_url

    async def initialize(self, auth_token: str) -> None:
        username, sep, password = (auth_token or "").strip().partition(":")
        if not sep or not username or not password:
            raise ProviderError(
                f"{self.name} auth token must have the form 'username:password'"
            )
        self._auth = aiohttp.BasicAuth(username, password)

    async def is_up_to_date(self, fqdn: str, address: str) -> bool:
        try:
            wanted = ipaddress.ip_address(address)
        except ValueError:
            raise ProviderError(f"Invalid IP address: {address!r}")

        current = await self._resolve(fqdn, "AAAA" if wanted.version == 6 else "A")
        logger.debug(f"{fqdn} currently resolves to {sorted(current) or 'nothing'}")
        return str(wanted) in current

    async def update(self, fqdn: str, address: str) -> None:
        if self._auth is None:
            raise ProviderError(f"{self.name} provider used before initialize()")

        params = {"hostname": fqdn, "myip": address}
        headers = {"User-Agent": self.config.user_agent}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    self.api_url, params=params, headers=headers, auth=self._auth
                ) as response:
                    body = await response.text()
                    status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{self.name} update request failed: {e}") from e

        if status == 401:
            raise ProviderError(f"{self.name} update rejected: authentication failed")
        if status >= 400:
            raise ProviderError(f"{self.name} update failed: HTTP {status}")

        code = body.strip().split(" ", 1)[0] if body.strip() else ""
        if code not in SUCCESS_CODES:
            reason = RETURN_CODE_MESSAGES.get(code, f"unexpected response {body!r}")
            raise ProviderError(f"{self.name} update of {fqdn} failed: {reason}")

        logger.info(f"{self.name} updated {fqdn} -> {address} ({code})")

    async def _resolve(self, fqdn: str, rdtype: str) -> Set[str]:
        """Resolve fqdn and return the normalized addresses."""
        resolver = dns.asyncresolver.Resolver()
        try:
            answer = await resolver.resolve(fqdn, rdtype, lifetime=self.timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return set()
        except dns.exception.DNSException as e:
            raise ProviderError(f"Failed to resolve {fqdn}: {e}") from e

        return {str(ipaddress.ip_address(rdata.address)) for rdata in answer}


class NoIPProvider(DynProvider):
    """No-IP provider."""

    kind = ProviderKind.NOIP

    def default_api_url(self) -> str:
        return self.config.noip_api_url


class DDNSProvider(DynProvider):
    """Self-hosted dyndns2 compatible server."""

    kind = ProviderKind.DDNS

    def default_api_url(self) -> str:
        return self.config.ddns_api_url
