import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class AsyncOnce(Generic[T]):
    """
    Lazily run an async factory exactly once and share its result.

    The first caller of `get` starts the factory; every caller, the first
    included, awaits the same task. A factory that raises or is cancelled is not
    cached, so the next caller retries it.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]]):
        self._factory = factory
        self._task: Optional[asyncio.Future] = None

    async def get(self) -> T:
        if self._task is None:
            self._task = asyncio.ensure_future(self._factory())
        task = self._task
        try:
            # shield: a cancelled caller must not cancel the shared build
            return await asyncio.shield(task)
        except (Exception, asyncio.CancelledError):
            # reset only when the shared build itself failed or was cancelled
            if self._task is task and task.done():
                self._task = None
            raise

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done() and not self._task.cancelled() \
            and self._task.exception() is None
