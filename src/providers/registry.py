"""
Provider Registry - Maps provider kinds to their strategy classes.
"""

import logging
from typing import Dict, List, Optional, Type

from errors import ProviderError
from providers.base import DNSProvider, ProviderKind

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Central registry for DNS provider strategies.

    Custom endpoints are served by the strategy registered as the default,
    which is Dyn unless configured otherwise.
    """

    def __init__(self):
        self._providers: Dict[ProviderKind, Type[DNSProvider]] = {}
        self._default_kind: ProviderKind = ProviderKind.DYN

    def register_provider(
        self, provider_class: Type[DNSProvider], default: bool = False
    ) -> None:
        """
        Register a provider class under its kind.

        Args:
            provider_class: The DNSProvider subclass to register
            default: Also use this class for custom endpoints
        """
        kind = provider_class.kind
        if kind is ProviderKind.CUSTOM:
            raise ValueError("Custom is not a registrable provider kind")

        if kind in self._providers:
            logger.warning(f"Overwriting existing provider: {kind.value}")

        self._providers[kind] = provider_class
        if default:
            self._default_kind = kind
        logger.info(f"Registered DNS provider: {kind.value}")

    def get_provider_class(self, kind: ProviderKind) -> Type[DNSProvider]:
        """
        Get the strategy class for a provider kind.

        Raises:
            ProviderError: If nothing is registered for the kind
        """
        lookup = self._default_kind if kind is ProviderKind.CUSTOM else kind
        provider_class = self._providers.get(lookup)
        if provider_class is None:
            available = ", ".join(self.list_providers()) or "none"
            raise ProviderError(
                f"No DNS provider registered for {lookup.value}. "
                f"Available providers: {available}"
            )
        return provider_class

    def has_provider(self, kind: ProviderKind) -> bool:
        return kind in self._providers

    def list_providers(self) -> List[str]:
        """List registered provider identifiers."""
        return [kind.value for kind in self._providers]

    @property
    def default_kind(self) -> ProviderKind:
        return self._default_kind


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry singleton."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers(registry: Optional[ProviderRegistry] = None) -> None:
    """Register the providers that ship with the operator."""
    from providers.cloudflare import CloudflareProvider
    from providers.dyndns import DDNSProvider, DynProvider, NoIPProvider

    registry = registry or get_registry()
    registry.register_provider(CloudflareProvider)
    registry.register_provider(DynProvider, default=True)
    registry.register_provider(NoIPProvider)
    registry.register_provider(DDNSProvider)
