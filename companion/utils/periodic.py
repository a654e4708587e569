"""Cancellable background loops owned by the application lifespan."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable, Optional, Union

from companion.utils.logger import get_logger


logger = get_logger(__name__)

DelaySource = Union[float, Callable[[], float]]


class PeriodicTask:
    """Runs a blocking action in a worker thread every `delay` seconds.

    Cancellation is only observed while sleeping or awaiting the worker, so an
    action that already started always runs to completion.
    """

    def __init__(
        self,
        name: str,
        action: Callable[[], Any],
        delay: DelaySource,
        run_immediately: bool = False,
    ) -> None:
        self._name = name
        self._action = action
        self._delay = delay
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task[None]] = None
        self.runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_delay(self) -> float:
        if callable(self._delay):
            return max(0.0, float(self._delay()))
        return max(0.0, float(self._delay))

    async def _run(self) -> None:
        if self._run_immediately:
            await self._tick()
        while True:
            await asyncio.sleep(self._next_delay())
            await self._tick()

    async def _tick(self) -> None:
        try:
            await asyncio.to_thread(self._action)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic task %s failed; retrying next cycle", self._name)
        finally:
            self.runs += 1

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        logger.info("Started periodic task %s", self._name)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped periodic task %s", self._name)
