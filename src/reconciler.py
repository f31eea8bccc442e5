"""
Hostname Reconciler - One reconciliation pass for one Hostname.

A pass loads the desired state, resolves the auth token and target address,
records what it is about to attempt, converges the record at the DNS
provider, persists the status as a merge patch and tells the controller when
to run again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from config import ProviderConfig
from db import DatabaseManager
from errors import (
    AddressResolutionError,
    CredentialResolutionError,
    StatusPersistenceError,
)
from models import AUTH_TOKEN_KEY, Hostname
from providers import ProviderRegistry, get_registry, sync_fqdn
from publicip import PublicIPDetector

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileResult:
    """Outcome of a pass that did not raise."""

    requeue_after: Optional[int] = None  # seconds; None means do not reschedule
    generation: Optional[int] = None  # generation of the spec the pass read
    message: str = ""


def requeue_after_seconds(check_interval_minutes: Optional[int]) -> Optional[int]:
    """Convert checkIntervalMinutes into a requeue delay."""
    if not check_interval_minutes or check_interval_minutes <= 0:
        return None
    return check_interval_minutes * 60


class HostnameReconciler:
    """
    Reconciles Hostname resources against their DNS provider.

    Credential, address and persistence failures are raised to the caller.
    Provider failures are recorded as ``lastUpdate.failed`` and the pass
    completes normally.
    """

    def __init__(
        self,
        db: DatabaseManager,
        provider_config: Optional[ProviderConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        ip_detector: Optional[PublicIPDetector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.provider_config = provider_config or ProviderConfig()
        self.registry = registry or get_registry()
        self.ip_detector = ip_detector or PublicIPDetector.from_config(
            self.provider_config
        )
        self.clock = clock or _utcnow

    async def reconcile(self, hostname_id: int) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            hostname_id: ID of the Hostname to reconcile

        Returns:
            ReconcileResult with the requeue directive

        Raises:
            CredentialResolutionError: If the auth token cannot be read
            AddressResolutionError: If the public IP cannot be detected
            StatusPersistenceError: If the status patch cannot be written
        """
        row = await self.db.get_hostname(hostname_id)
        if row is None:
            logger.info(f"Hostname {hostname_id} not found, nothing to do")
            return ReconcileResult(message="Hostname not found")

        hostname = Hostname.from_row(row)
        snapshot = hostname.status.to_dict()
        spec = hostname.spec

        auth_token = await self._resolve_auth_token(hostname)
        address = await self._resolve_address(hostname)

        last_update = hostname.status.ensure_last_update()
        last_update.scheduled_at = self.clock()
        last_update.address = address
        last_update.hostname = spec.hostname

        try:
            changed = await sync_fqdn(
                spec.ddns_service.endpoint,
                auth_token,
                spec.hostname,
                address,
                config=self.provider_config,
                registry=self.registry,
            )
            last_update.failed = False
            message = (
                f"Updated {spec.hostname} to {address}"
                if changed
                else f"{spec.hostname} already up to date"
            )
        except Exception as e:
            logger.error(
                f"Failed to update {spec.hostname} for {hostname.key}: {e}",
                exc_info=True,
            )
            last_update.failed = True
            message = f"Provider update failed: {e}"

        await self._persist_status(hostname, snapshot)

        requeue_after = requeue_after_seconds(spec.check_interval_minutes)
        logger.info(
            f"Reconciled {hostname.key}: {message}"
            + (f", next check in {requeue_after}s" if requeue_after else "")
        )
        return ReconcileResult(
            requeue_after=requeue_after,
            generation=hostname.generation,
            message=message,
        )

    async def _resolve_auth_token(self, hostname: Hostname) -> str:
        ref = hostname.spec.ddns_service.auth_secret_ref
        namespace = ref.namespace or hostname.namespace

        try:
            data = await self.db.get_secret(ref.name, namespace)
        except Exception as e:
            raise CredentialResolutionError(
                f"Failed to read secret {namespace}/{ref.name}: {e}"
            ) from e

        if data is None:
            raise CredentialResolutionError(
                f"Secret {namespace}/{ref.name} not found"
            )
        if AUTH_TOKEN_KEY not in data:
            raise CredentialResolutionError(
                f"Secret {namespace}/{ref.name} has no {AUTH_TOKEN_KEY} key"
            )

        token = data[AUTH_TOKEN_KEY]
        if isinstance(token, bytes):
            try:
                token = token.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CredentialResolutionError(
                    f"Secret {namespace}/{ref.name} {AUTH_TOKEN_KEY} is not UTF-8"
                ) from e
        return token.strip()

    async def _resolve_address(self, hostname: Hostname) -> str:
        if hostname.spec.address:
            return hostname.spec.address

        try:
            return await self.ip_detector.detect()
        except AddressResolutionError:
            raise
        except Exception as e:
            raise AddressResolutionError(f"Public IP detection failed: {e}") from e

    async def _persist_status(self, hostname: Hostname, snapshot: dict) -> None:
        try:
            patched = await self.db.patch_hostname_status(
                hostname.id, snapshot, hostname.status.to_dict()
            )
        except Exception as e:
            raise StatusPersistenceError(
                f"Failed to patch status of {hostname.key}: {e}"
            ) from e

        if not patched:
            raise StatusPersistenceError(
                f"Hostname {hostname.key} disappeared before its status was saved"
            )
