"""
Cloudflare provider - Updates records through the Cloudflare v4 API.

The auth token is a Cloudflare API token with DNS edit permission on the zone
that holds the hostname.
"""

import asyncio
import ipaddress
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from errors import ProviderError
from providers.base import DNSProvider, ProviderKind

logger = logging.getLogger(__name__)


def zone_candidates(fqdn: str) -> List[str]:
    """
    Candidate zone names for an FQDN, most specific first.

    "a.b.example.com" yields ["a.b.example.com", "b.example.com", "example.com"].
    """
    labels = fqdn.rstrip(".").split(".")
    return [".".join(labels[i:]) for i in range(len(labels) - 1)]


class CloudflareProvider(DNSProvider):
    """Provider backed by the Cloudflare DNS records API."""

    kind = ProviderKind.CLOUDFLARE

    def __init__(self, config=None):
        super().__init__(config)
        self._token: Optional[str] = None
        # Looked up by is_up_to_date() and reused by update()
        self._zone_id: Optional[str] = None
        self._record: Optional[Dict[str, Any]] = None

    def default_api_url(self) -> str:
        return self.config.cloudflare_api_url

    async def initialize(self, auth_token: str) -> None:
        token = (auth_token or "").strip()
        if not token:
            raise ProviderError("Cloudflare API token is empty")
        self._token = token

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Call the API and return the ``result`` member of the envelope."""
        if self._token is None:
            raise ProviderError("Cloudflare provider used before initialize()")

        url = f"{self.api_url.rstrip('/')}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self._get_headers(),
                ) as response:
                    status = response.status
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Cloudflare request {method} {path} failed: {e}") from e

        if not isinstance(body, dict):
            raise ProviderError(
                f"Cloudflare request {method} {path} returned HTTP {status} "
                "with an unreadable body"
            )

        if status >= 400 or not body.get("success", False):
            errors = body.get("errors") or []
            detail = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e)
                for e in errors
            )
            raise ProviderError(
                f"Cloudflare request {method} {path} failed: HTTP {status}"
                + (f" - {detail}" if detail else "")
            )

        return body.get("result")

    async def _find_zone_id(self, fqdn: str) -> str:
        for candidate in zone_candidates(fqdn):
            zones = await self._request("GET", "/zones", params={"name": candidate})
            if zones:
                zone_id = zones[0]["id"]
                logger.debug(f"Found Cloudflare zone {candidate} ({zone_id}) for {fqdn}")
                return zone_id

        raise ProviderError(f"No Cloudflare zone found for {fqdn}")

    @staticmethod
    def _record_type(address: str) -> str:
        try:
            parsed = ipaddress.ip_address(address)
        except ValueError:
            raise ProviderError(f"Invalid IP address: {address!r}")
        return "AAAA" if parsed.version == 6 else "A"

    async def _lookup(self, fqdn: str, record_type: str) -> None:
        if self._zone_id is None:
            self._zone_id = await self._find_zone_id(fqdn)

        records = await self._request(
            "GET",
            f"/zones/{self._zone_id}/dns_records",
            params={"type": record_type, "name": fqdn},
        )
        self._record = records[0] if records else None

    async def is_up_to_date(self, fqdn: str, address: str) -> bool:
        record_type = self._record_type(address)
        await self._lookup(fqdn, record_type)

        if self._record is None:
            logger.debug(f"No {record_type} record for {fqdn} in Cloudflare")
            return False

        current = self._record.get("content", "")
        logger.debug(f"{fqdn} {record_type} record currently holds {current}")
        try:
            published = ipaddress.ip_address(current)
        except ValueError:
            raise ProviderError(
                f"Cloudflare {record_type} record for {fqdn} holds {current!r}"
            )
        return published == ipaddress.ip_address(address)

    async def update(self, fqdn: str, address: str) -> None:
        record_type = self._record_type(address)
        if self._zone_id is None or (
            self._record is not None and self._record.get("type") != record_type
        ):
            await self._lookup(fqdn, record_type)

        payload = {
            "type": record_type,
            "name": fqdn,
            "content": address,
            "ttl": 1,
            "proxied": False,
        }

        if self._record is not None:
            self._record = await self._request(
                "PATCH",
                f"/zones/{self._zone_id}/dns_records/{self._record['id']}",
                payload=payload,
            )
            logger.info(f"Cloudflare updated {record_type} {fqdn} -> {address}")
        else:
            self._record = await self._request(
                "POST", f"/zones/{self._zone_id}/dns_records", payload=payload
            )
            logger.info(f"Cloudflare created {record_type} {fqdn} -> {address}")
