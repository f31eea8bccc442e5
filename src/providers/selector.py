"""
Provider selection and the update protocol.

select_provider() turns a ddnsService.endpoint value into a ready-to-use
strategy; sync_fqdn() drives it through initialize, check and update.
"""

import logging
from typing import Optional

from config import ProviderConfig
from errors import ProviderError
from providers.base import DNSProvider, ProviderEndpoint, ProviderKind
from providers.registry import ProviderRegistry, get_registry

logger = logging.getLogger(__name__)


def select_provider(
    identifier: str,
    config: Optional[ProviderConfig] = None,
    registry: Optional[ProviderRegistry] = None,
) -> DNSProvider:
    """
    Build the provider strategy for an endpoint identifier.

    Well-known identifiers select their strategy. Anything else is treated as
    the API URL of a server speaking the default protocol.

    Args:
        identifier: The ddnsService.endpoint value
        config: Provider configuration
        registry: Registry to look strategies up in

    Returns:
        A constructed, not yet initialized, DNSProvider

    Raises:
        ProviderError: If the identifier is empty, the strategy cannot be
            constructed, or the custom endpoint is not a valid URL
    """
    endpoint = ProviderEndpoint.parse(identifier)
    registry = registry or get_registry()
    provider_class = registry.get_provider_class(endpoint.kind)

    try:
        provider = provider_class(config)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(
            f"Failed to construct {endpoint.kind.value} provider: {e}"
        ) from e

    # Only a successfully constructed provider gets the override
    if endpoint.kind is ProviderKind.CUSTOM:
        provider.set_api_endpoint(endpoint.url)

    return provider


async def sync_fqdn(
    identifier: str,
    auth_token: str,
    fqdn: str,
    address: str,
    config: Optional[ProviderConfig] = None,
    registry: Optional[ProviderRegistry] = None,
) -> bool:
    """
    Make fqdn resolve to address at the provider named by identifier.

    Returns:
        True if an update was sent, False if the record was already current.

    Raises:
        ProviderError: On any provider failure
    """
    provider = select_provider(identifier, config=config, registry=registry)

    await provider.initialize(auth_token)

    if await provider.is_up_to_date(fqdn, address):
        logger.info(f"{fqdn} already points at {address} ({provider.name})")
        return False

    logger.info(f"Updating {fqdn} -> {address} via {provider.name}")
    await provider.update(fqdn, address)
    return True
