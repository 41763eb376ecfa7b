import asyncio
import sys
import logging

from issue_arena.application.arena_service import ArenaService
from issue_arena.config import load_settings
from issue_arena.infrastructure.database import SqlStateStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


async def main():
    # Settings come from the environment, with a .env file loaded first
    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Initialize the state store and the service on top of it
    store = SqlStateStore(db_url=settings.database_url)
    service = ArenaService(store=store, settings=settings)

    try:
        await store.create_schema()
        await service.start(run_sweeper=True)
        logger.info(f"Sweeping for expired issues every {settings.sweep_interval}s. Press Ctrl+C to stop.")
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Shutting down.")
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        sys.exit(1)
    finally:
        await service.close()
        await store.dispose()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully.")


if __name__ == "__main__":
    run()
