"""Run the archival worker until SIGINT/SIGTERM: ``python -m webvault.worker``."""
from __future__ import annotations

import asyncio
import logging
import signal

from webvault.config import settings
from webvault.services.worker import build_worker

logger = logging.getLogger(__name__)


async def _serve() -> None:
    worker = build_worker(settings)
    loop = asyncio.get_running_loop()

    def _shutdown() -> None:
        logger.info("Received shutdown signal, draining worker")
        worker.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown)

    await worker.run_forever()
    logger.info("Worker stopped")


def main() -> None:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
