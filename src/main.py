"""
Main entry point for the DDNS Operator.

Wires the database, the provider registry, the reconciler, the controller
loop and the REST API together and runs them until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
from typing import Optional

from api import APIServer
from config import get_config
from controller import Controller
from db import DatabaseManager
from providers import get_registry, register_builtin_providers
from publicip import PublicIPDetector
from reconciler import HostnameReconciler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the controller and the API."""

    def __init__(self):
        self.config = get_config()
        self.db: Optional[DatabaseManager] = None
        self.controller: Optional[Controller] = None
        self.api: Optional[APIServer] = None
        self.running = False
        self._stopped = False

    async def initialize(self):
        """Initialize all components."""
        logging.getLogger().setLevel(self.config.api.log_level.upper())
        logger.info("Initializing DDNS Operator")

        register_builtin_providers()
        registry = get_registry()

        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        provider_config = self.config.providers
        reconciler = HostnameReconciler(
            db=self.db,
            provider_config=provider_config,
            registry=registry,
            ip_detector=PublicIPDetector.from_config(provider_config),
        )

        self.controller = Controller(
            db_manager=self.db,
            reconciler=reconciler,
            config=self.config.controller,
        )

        api_config = self.config.api
        self.api = APIServer(
            db_manager=self.db,
            host=api_config.host,
            port=api_config.port,
            log_level=api_config.log_level,
            registry=registry,
        )

        logger.info(
            f"All components initialized (providers: "
            f"{', '.join(registry.list_providers())})"
        )

    async def start(self):
        """Start the application."""
        if not self.controller or not self.api:
            await self.initialize()

        self.running = True
        logger.info("Starting DDNS Operator")

        tasks = [
            asyncio.create_task(self.controller.start()),
            asyncio.create_task(self.api.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping DDNS Operator")
        self.running = False

        if self.api:
            await self.api.stop()

        if self.controller:
            await self.controller.stop()

        if self.db:
            await self.db.close()

        logger.info("DDNS Operator stopped")


async def main():
    """Main entry point."""
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def signal_handler():
        logger.info("Received shutdown signal")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except asyncio.CancelledError:
        logger.info("Shutting down")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
