"""Entry point for the single-process marketplace.

Usage::

    MARKETPLACE_CONFIG_PATH=config.yaml python -m local_network
"""

from __future__ import annotations

import asyncio
import signal

from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger, setup_logging

from local_network.config import get_settings
from local_network.network import LocalNetwork


async def _main() -> None:
    settings = get_settings()
    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger("local_network")
    logger.info("Starting marketplace", extra={"version": settings.service.version})

    network = LocalNetwork(settings)
    network.start()

    stop = asyncio.Event()

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        asyncio.get_running_loop().add_signal_handler(sig, _handle_signal)

    try:
        for demo in settings.demo_jobs:
            try:
                await network.registry.manager.post_job(
                    title=demo.title,
                    description=demo.description,
                    budget=demo.budget,
                    required_skills=demo.required_skills,
                )
            except ServiceError as exc:
                logger.warning("Demo job rejected", extra={"error": exc.error})
        await stop.wait()
    finally:
        await network.close()
        logger.info("Marketplace shut down cleanly")


def main() -> None:
    """Sync entry point."""
    asyncio.run(_main())


if __name__ == "__main__":
    main()
