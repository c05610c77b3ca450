import asyncio
import signal

from .config import settings
from .logger import logger, setup_file_logging
from .players import PresenceSystemManager


async def main() -> None:
    setup_file_logging(settings.logs_dir)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    manager = PresenceSystemManager(settings)
    await manager.start()
    try:
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await manager.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
