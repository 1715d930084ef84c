import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Cancellable callback that runs every `interval` seconds on the event loop.

    Parameters
    ----------
    interval : float
        Delay in seconds between two runs.
    callback : Callable[[], Any]
        Synchronous function invoked on each tick.
    name : str
        Label used for the asyncio task and in log messages.

    Notes
    -----
    - `start()` needs a running event loop. Without one it returns `False` and
      the task stays idle until `start()` is called again from async code.
    - `run_once()` invokes the callback immediately, which lets tests drive
      the task without waiting on the clock.
    - Failures in the callback are logged and do not stop the loop.
    """

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "repeating-task"):
        self.interval = interval
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, %s not scheduled", self.name)
            return False
        self._task = loop.create_task(self._run(), name=self.name)
        logger.debug("Scheduled %s every %ss", self.name, self.interval)
        return True

    def run_once(self) -> Any:
        try:
            return self._callback()
        except Exception:
            logger.exception("%s failed", self.name)
            return None

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Cancelled %s", self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.run_once()
