"""
Main application loop for the follow-up CRM.

Orchestrates the follow-up service:
1. Connect to Redis and load client records once
2. Load the notified set so restarts never re-send notifications
3. Run the follow-up sweep (warm-up after 3 seconds, then every 60 seconds)

Uses asyncio with graceful shutdown on SIGINT/SIGTERM.
"""

import asyncio
import signal

from crm.config import settings
from crm.core.followups import FollowUpService
from crm.core.scheduler import FollowUpScheduler, NotifiedSet
from crm.db.client_store import ClientStore
from crm.smtp.notifier import build_notifier
from crm.utils.logger import get_logger


logger = get_logger(__name__)


class Application:
    """
    Main application orchestrator.

    Owns the client store, the follow-up action service and the scheduler,
    and manages their lifecycle:
    - Redis connection and one-time client load
    - Periodic follow-up sweep
    - Graceful shutdown on signals
    """

    def __init__(self, redis_client=None):
        self.store = ClientStore(redis_client=redis_client)
        self.followups: FollowUpService = None
        self.scheduler: FollowUpScheduler = None
        self._stop_event = asyncio.Event()

    async def initialize(self):
        """
        Initialize all system components.

        Connects to Redis, loads clients and the notified set, and prepares
        the scheduler.
        """
        logger.info("Initializing application...")

        await self.store.connect()
        count = await self.store.load()
        logger.info(f"Client store ready ({count} clients)")

        notified = NotifiedSet(self.store.redis_client)
        await notified.load()

        self.followups = FollowUpService(self.store)
        self.scheduler = FollowUpScheduler(
            store=self.store,
            notifier=build_notifier(),
            notified=notified
        )

        logger.info("Application initialized successfully")

    async def shutdown(self):
        """
        Gracefully shutdown all system components.

        Stops the scheduler timers, then closes the Redis connection.
        """
        logger.info("Shutting down application...")

        self._stop_event.set()

        if self.scheduler:
            await self.scheduler.stop()

        await self.store.close()

        logger.info("Application shutdown complete")

    def request_stop(self):
        self._stop_event.set()

    async def run(self):
        """
        Run the main application.

        Starts the scheduler and runs until a shutdown signal is received.
        """
        logger.info("Starting follow-up CRM service")
        logger.info(f"Sweep interval: {settings.sweep_interval_seconds}s")
        logger.info(f"Suspension grace window: {settings.suspension_grace_hours}h")
        logger.info(
            f"Default follow-up offset: "
            f"{settings.default_followup_business_days} business days"
        )

        self.scheduler.start()
        await self._stop_event.wait()


async def main():
    """
    Main entry point for the application.

    Initializes the application, sets up signal handlers for graceful shutdown,
    and runs the main loop.
    """
    app = Application()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.request_stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.run()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)

    finally:
        await app.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
