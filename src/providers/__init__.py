"""
DNS provider strategies for the DDNS operator.

This package maps ddnsService.endpoint values to the strategy that keeps a
hostname's record up to date at that provider.
"""

from providers.base import DNSProvider, ProviderEndpoint, ProviderKind
from providers.registry import (
    ProviderRegistry,
    get_registry,
    register_builtin_providers,
    reset_registry,
)
from providers.selector import select_provider, sync_fqdn

__all__ = [
    "DNSProvider",
    "ProviderEndpoint",
    "ProviderKind",
    "ProviderRegistry",
    "get_registry",
    "register_builtin_providers",
    "reset_registry",
    "select_provider",
    "sync_fqdn",
]
