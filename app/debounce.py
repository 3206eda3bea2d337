import asyncio
from typing import Any, Awaitable, Callable, Optional


class Debouncer:
    """Run only the last call made within ``delay`` seconds of quiet.

    Sits in front of a query (search boxes, filters) so a burst of inputs
    turns into one fetch instead of one per keystroke.
    """

    def __init__(self, delay: float = 0.5):
        self.delay = delay
        self._pending: Optional[asyncio.Task] = None

    def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> asyncio.Task:
        self.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._later(fn, *args, **kwargs))
        return self._pending

    async def _later(self, fn, *args, **kwargs):
        await asyncio.sleep(self.delay)
        return await fn(*args, **kwargs)

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
