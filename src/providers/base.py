"""
DNS Provider Base - Abstract interface for dynamic DNS update strategies.

Every provider drives the same three-call protocol: initialize with the auth
token, check whether the FQDN already resolves to the address, and update it
when it does not.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from config import ProviderConfig
from errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderKind(Enum):
    """Well-known DDNS provider identifiers, plus custom endpoints."""

    CLOUDFLARE = "Cloudflare"
    DYN = "Dyn"
    NOIP = "NoIP"
    DDNS = "DDNS"
    CUSTOM = "Custom"


@dataclass(frozen=True)
class ProviderEndpoint:
    """A parsed ddnsService.endpoint value."""

    kind: ProviderKind
    url: Optional[str] = None

    @classmethod
    def parse(cls, identifier: str) -> "ProviderEndpoint":
        """
        Parse an endpoint identifier.

        Known provider names select their built-in strategy. Any other
        non-empty string is a literal API endpoint served by the default
        strategy.

        Raises:
            ProviderError: If the identifier is empty
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise ProviderError("DDNS service endpoint is empty")

        for kind in ProviderKind:
            if kind is not ProviderKind.CUSTOM and kind.value == identifier:
                return cls(kind=kind)

        return cls(kind=ProviderKind.CUSTOM, url=identifier)


def validate_api_url(url: str) -> str:
    """Check that url is an absolute http(s) URL and return it."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ProviderError(f"Invalid DDNS API endpoint: {url!r}")
    return url


class DNSProvider(ABC):
    """
    Abstract base class for DNS providers.

    Implementations raise ProviderError for every failure so the caller can
    tell provider outages apart from its own errors.
    """

    kind: ProviderKind

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()
        self.timeout: int = self.config.http_timeout
        self.api_url: str = self.default_api_url()

    @property
    def name(self) -> str:
        """Provider name for logging."""
        return self.kind.value

    @abstractmethod
    def default_api_url(self) -> str:
        """API endpoint used unless overridden."""
        pass

    def set_api_endpoint(self, url: str) -> None:
        """Override the API endpoint of this provider."""
        self.api_url = validate_api_url(url)
        logger.debug(f"{self.name} provider endpoint set to {self.api_url}")

    @abstractmethod
    async def initialize(self, auth_token: str) -> None:
        """
        Prepare the provider for use with the given credentials.

        Args:
            auth_token: The authToken value read from the auth secret
        """
        pass

    @abstractmethod
    async def is_up_to_date(self, fqdn: str, address: str) -> bool:
        """
        Check whether fqdn already points at address.

        Args:
            fqdn: Fully qualified domain name
            address: IPv4 or IPv6 literal

        Returns:
            True if no update is needed.
        """
        pass

    @abstractmethod
    async def update(self, fqdn: str, address: str) -> None:
        """Point fqdn at address."""
        pass
