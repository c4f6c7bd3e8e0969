import asyncio
import logging

logger = logging.getLogger("automation_engine")


class SchedulerLoop:
    def __init__(self, engine, interval_seconds: int = 60):
        self.engine = engine
        self.interval = interval_seconds
        self.running = False

    async def start(self):
        """Starts the sweep polling loop."""
        if self.running:
            return

        self.running = True
        logger.info("Scheduler started.")

        while self.running:
            try:
                await self._tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")

            await asyncio.sleep(self.interval)

    def stop(self):
        self.running = False
        logger.info("Scheduler stopped.")

    async def _tick(self):
        """Process one tick of the scheduler."""
        result = await self.engine.process_pending_enrollments()
        if result.get("error"):
            logger.error(f"Sweep reported an error: {result['error']}")
        elif result.get("processed"):
            logger.info(f"Sweep processed {result['processed']} enrollment(s).")
