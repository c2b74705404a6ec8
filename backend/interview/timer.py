"""
One-second countdown timer for the active question.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from interview.events import EventKind, EventSink, SessionEvent

logger = logging.getLogger(__name__)


class CountdownTimer:
    """
    Descending counter that posts a tick every `interval` seconds and a single
    expiry event when it reaches zero.

    Only one countdown runs at a time: arming again stops the previous one.
    Each arm gets a new generation number that is stamped on its events.
    """

    def __init__(
        self,
        interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval = interval
        self._sleep = sleep
        self._sink: Optional[EventSink] = None
        self._task: Optional[asyncio.Task] = None
        self.generation = 0
        self.seconds_left = 0

    def init(self, sink: EventSink):
        self._sink = sink

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, duration_seconds: int) -> int:
        """Start counting down from `duration_seconds`. Returns the generation."""
        if self._sink is None:
            raise RuntimeError("CountdownTimer.init() must be called before arm()")
        if duration_seconds < 0:
            raise ValueError("duration must be non-negative")

        self.stop()
        self.generation += 1
        self.seconds_left = duration_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._run(self.generation, duration_seconds)
        )
        logger.debug(f"Timer armed for {duration_seconds}s (generation {self.generation})")
        return self.generation

    async def _run(self, generation: int, duration_seconds: int):
        remaining = duration_seconds
        while remaining > 0:
            await self._sleep(self.interval)
            remaining -= 1
            self.seconds_left = remaining
            self._sink(SessionEvent(
                EventKind.TIMER_TICK,
                payload={"seconds_left": remaining},
                generation=generation,
            ))
        self._sink(SessionEvent(EventKind.TIMER_EXPIRED, generation=generation))

    def stop(self):
        """Cancel pending ticks. No-op when idle or already expired."""
        if self.armed:
            self._task.cancel()
            logger.debug(f"Timer stopped (generation {self.generation})")
        self._task = None

    def teardown(self):
        self.stop()
        self._sink = None
