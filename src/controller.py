"""
Operator Controller - Main reconciliation loop.

Polls the database for Hostnames that are due, runs one reconciliation pass
per Hostname and arms the next pass from the result. A Hostname is never
reconciled by two passes at once.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from config import ControllerConfig
from db import DatabaseManager
from reconciler import HostnameReconciler, ReconcileResult

logger = logging.getLogger(__name__)


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Successful passes are rescheduled by their requeue directive. Passes that
    raise or time out are retried with exponential backoff.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        reconciler: HostnameReconciler,
        config: Optional[ControllerConfig] = None,
    ):
        self.db = db_manager
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.poll_interval = self.config.poll_interval
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self.running = False

        # Hostname ID -> task of the pass currently running for it
        self._in_flight: Dict[int, asyncio.Task] = {}

    @property
    def in_flight(self) -> Dict[int, asyncio.Task]:
        return dict(self._in_flight)

    async def start(self):
        """Start the controller reconciliation loop."""
        logger.info("Starting DDNS Operator Controller")
        self.running = True

        try:
            await self._reconciliation_loop()
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def stop(self):
        """Stop the loop and cancel passes that are still running."""
        logger.info("Stopping DDNS Operator Controller")
        self.running = False

        tasks = list(self._in_flight.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight reconciliation(s)")

    async def _reconciliation_loop(self):
        """Main reconciliation loop - watches for hostnames that are due."""
        while self.running:
            try:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
                await asyncio.sleep(10)  # Brief pause on error

    async def poll_once(self) -> int:
        """
        Start passes for due hostnames that are not already running.

        Returns:
            Number of passes started
        """
        hostnames = await self.db.get_hostnames_needing_reconciliation(
            limit=self.max_concurrent_reconciles * 2,
            exclude_ids=list(self._in_flight),
        )

        started = 0
        for hostname in hostnames:
            hostname_id = hostname["id"]
            if hostname_id in self._in_flight:
                continue

            task = asyncio.create_task(self._reconcile_hostname(hostname))
            self._in_flight[hostname_id] = task
            task.add_done_callback(
                lambda _t, hid=hostname_id: self._in_flight.pop(hid, None)
            )
            started += 1

        if started:
            logger.info(f"Started reconciliation of {started} hostname(s)")
        return started

    def _determine_trigger_reason(self, hostname: Dict[str, Any]) -> str:
        """Determine why this reconciliation was triggered."""
        if hostname.get("last_reconcile_time") is None:
            return "initial"
        elif hostname.get("generation", 0) > hostname.get("observed_generation", 0):
            return "spec_change"
        elif hostname.get("retry_count", 0) > 0:
            return "retry"
        else:
            return "scheduled"

    async def _reconcile_hostname(self, hostname: Dict[str, Any]) -> None:
        """Run one pass for a hostname and record its outcome."""
        async with self.semaphore:
            hostname_id = hostname["id"]
            key = f"{hostname.get('namespace', 'default')}/{hostname['name']}"
            generation = hostname.get("generation", 1)
            polled_at = hostname.get("next_reconcile_time")
            trigger_reason = self._determine_trigger_reason(hostname)
            start_time = time.monotonic()

            logger.debug(f"Reconciling {key} ({trigger_reason})")

            try:
                result = await asyncio.wait_for(
                    self.reconciler.reconcile(hostname_id),
                    timeout=self.config.reconcile_timeout,
                )
            except asyncio.CancelledError:
                logger.info(f"Reconciliation of {key} cancelled")
                raise
            except asyncio.TimeoutError:
                await self._handle_failure(
                    hostname_id,
                    key,
                    generation,
                    polled_at,
                    trigger_reason,
                    f"Reconciliation timed out after {self.config.reconcile_timeout}s",
                    time.monotonic() - start_time,
                )
                return
            except Exception as e:
                logger.error(f"Error reconciling {key}: {e}", exc_info=True)
                await self._handle_failure(
                    hostname_id,
                    key,
                    generation,
                    polled_at,
                    trigger_reason,
                    f"Reconciliation error: {e}",
                    time.monotonic() - start_time,
                )
                return

            await self._handle_success(
                hostname_id,
                key,
                polled_at,
                trigger_reason,
                result,
                time.monotonic() - start_time,
            )

    async def _handle_success(
        self,
        hostname_id: int,
        key: str,
        polled_at: Optional[datetime],
        trigger_reason: str,
        result: ReconcileResult,
        duration_seconds: float,
    ) -> None:
        if result.generation is None:
            # Deleted while queued; nothing left to schedule
            logger.info(f"Hostname {key} no longer exists")
            return

        try:
            await self.db.schedule_hostname(
                hostname_id, result.requeue_after, result.generation, polled_at
            )
            await self.db.record_reconciliation(
                hostname_id=hostname_id,
                success=True,
                generation=result.generation,
                trigger_reason=trigger_reason,
                message=result.message,
                duration_seconds=duration_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to record reconciliation of {key}: {e}", exc_info=True)

    async def _handle_failure(
        self,
        hostname_id: int,
        key: str,
        generation: int,
        polled_at: Optional[datetime],
        trigger_reason: str,
        error_message: str,
        duration_seconds: float,
    ) -> None:
        logger.warning(f"Reconciliation of {key} failed, will retry: {error_message}")

        try:
            await self.db.schedule_retry(
                hostname_id,
                generation,
                polled_at,
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay,
                jitter_factor=self.config.backoff_jitter_factor,
            )
            await self.db.record_reconciliation(
                hostname_id=hostname_id,
                success=False,
                generation=generation,
                trigger_reason=trigger_reason,
                error_message=error_message,
                duration_seconds=duration_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to schedule retry of {key}: {e}", exc_info=True)

    async def trigger_reconciliation(self, hostname_id: int) -> bool:
        """Manually trigger reconciliation for a specific hostname."""
        logger.info(f"Manually triggering reconciliation for hostname {hostname_id}")
        return await self.db.mark_hostname_for_reconciliation(hostname_id)
