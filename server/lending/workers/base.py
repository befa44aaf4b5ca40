"""Base worker class for background tasks."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Abstract base class for background workers.

    Provides common functionality for running periodic background tasks.
    Subclasses that run on a calendar rather than a fixed interval override
    ``seconds_until_next_run``.
    """

    def __init__(self, name: str, interval_seconds: float = 60, run_immediately: bool = True):
        """
        Initialize the worker.

        Args:
            name: Worker name for logging
            interval_seconds: How often to run the task
            run_immediately: Run one iteration as soon as the worker starts
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def process(self) -> Any:
        """Process one iteration of the background task."""
        pass

    def seconds_until_next_run(self, elapsed: float = 0.0) -> float:
        """Delay before the next iteration, given how long the last one took."""
        return max(0.0, self.interval_seconds - elapsed)

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> Any:
        """Run a single iteration outside the loop (tests, manual triggers)."""
        return await self.process()

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            logger.warning(f"{self.name} worker is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker-{self.name}")
        logger.info(f"{self.name} worker started with {self.interval_seconds}s interval")

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        if not self._running:
            logger.warning(f"{self.name} worker is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info(f"{self.name} worker stopped")

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info(f"{self.name} worker loop started")

        if not self.run_immediately:
            await asyncio.sleep(self.seconds_until_next_run())

        while self._running:
            try:
                started = time.monotonic()
                await self.process()

                duration = time.monotonic() - started
                logger.info(
                    f"{self.name} worker iteration completed",
                    extra={
                        "duration_seconds": duration,
                        "worker": self.name,
                    }
                )

                sleep_time = self.seconds_until_next_run(duration)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)

            except asyncio.CancelledError:
                logger.info(f"{self.name} worker loop cancelled")
                break
            except Exception as e:
                logger.error(
                    f"{self.name} worker error: {str(e)}",
                    exc_info=True,
                    extra={"worker": self.name}
                )
                # Wait before retrying on error
                await asyncio.sleep(self.seconds_until_next_run())
