import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Timer:
    """
    Per-question countdown.

    ``tick()`` is the only thing that moves time; ``start()`` just schedules
    it every ``period`` seconds on the running loop. Expiry fires once per
    countdown and re-arms on ``reset()``.
    """

    def __init__(
        self,
        budget: int,
        period: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ):
        if budget < 0:
            raise ValueError("budget must not be negative")
        self.budget = budget
        self.period = period
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.remaining = budget
        self._expired = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def tick(self) -> int:
        if self._expired:
            return self.remaining
        if self.remaining > 0:
            self.remaining -= 1
        if self.on_tick is not None:
            self.on_tick(self.remaining)
        if self.remaining == 0:
            self._expired = True
            if self.on_expire is not None:
                self.on_expire()
        return self.remaining

    def reset(self) -> None:
        self.remaining = self.budget
        self._expired = False

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            self.tick()
