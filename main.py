# main.py
import asyncio
import logging
import signal
from gamemarket.app import MarketplaceApp
from gamemarket.config import Config, setup_logging

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)
    Config.validate()

    market = MarketplaceApp()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        logger.info("Starting marketplace...")
        await market.start()
        await stop_event.wait()
    except Exception as e:
        logger.error(f"Error starting marketplace: {e}", exc_info=True)
        raise
    finally:
        await market.stop()

if __name__ == "__main__":
    asyncio.run(main())
