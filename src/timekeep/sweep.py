"""Scheduled maintenance sweep: deletes expired, inactive and orphaned sessions."""

import asyncio

import structlog

from timekeep.app import App
from timekeep.config import Config
from timekeep.core.modules.session.models import CleanupResult
from timekeep.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_sweep(app: App) -> CleanupResult:
    async with app.lifespan():
        return await app.run_session_cleanup()


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    result = asyncio.run(run_sweep(App(config)))
    # Partial success still exits 0; failures are in the counters
    logger.info("sweep_finished", **result.model_dump())


if __name__ == "__main__":
    main()
