"""Periodic connectivity polling."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable

from .network import ConnectivityProbe, ConnectivityStatus

StatusCallback = Callable[[ConnectivityStatus], Awaitable[None] | None]
SleepFunc = Callable[[float], Awaitable[Any]]


class PollingLoop:
    """Run :meth:`_tick` every ``interval`` seconds on the running event loop.

    Each :meth:`start`-style call begins a new generation. :meth:`stop` retires
    the current generation: a sleeping loop is cancelled, while a tick that is
    already awaiting I/O is left to finish and its result is discarded.
    """

    def __init__(
        self,
        *,
        interval: float,
        sleep: SleepFunc = asyncio.sleep,
        name: str = "polling-loop",
        logger: logging.Logger | None = None,
    ) -> None:
        self._interval = self._validate_interval(interval)
        self._sleep = sleep
        self._name = name
        self._logger = logger or logging.getLogger(__name__)
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._active = False
        self._sleeping_generation: int | None = None

    @staticmethod
    def _validate_interval(interval: float) -> float:
        try:
            value = float(interval)
        except (TypeError, ValueError) as exc:
            raise ValueError("Polling interval must be numeric") from exc
        if value <= 0:
            raise ValueError("Polling interval must be positive")
        return value

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._active

    def _begin(self) -> int:
        self.stop()
        self._generation += 1
        self._active = True
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation

    def _spawn(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(generation), name=self._name)

    def stop(self) -> None:
        """Prevent any further ticks from the current generation."""

        if not self._active and self._task is None:
            return
        retired = self._generation
        self._active = False
        self._generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done() and self._sleeping_generation == retired:
            task.cancel()

    async def aclose(self) -> None:
        """Stop polling and wait for the worker task to exit."""

        task = self._task
        self.stop()
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self, generation: int) -> None:
        while self._is_current(generation):
            self._sleeping_generation = generation
            try:
                await self._sleep(self._interval)
            finally:
                if self._sleeping_generation == generation:
                    self._sleeping_generation = None
            if not self._is_current(generation):
                break
            try:
                await self._tick(generation)
            except Exception:
                self._logger.exception("%s tick failed", self._name)

    async def _tick(self, generation: int) -> None:  # pragma: no cover - abstract hook
        raise NotImplementedError


class ConnectivityMonitor(PollingLoop):
    """Deliver a fresh :class:`ConnectivityStatus` to a callback on a timer."""

    def __init__(
        self,
        probe: ConnectivityProbe,
        *,
        interval: float = 30.0,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            interval=interval,
            sleep=sleep,
            name="connectivity-monitor",
            logger=logger or logging.getLogger(__name__),
        )
        self._probe = probe
        self._callback: StatusCallback | None = None
        self._last_status: ConnectivityStatus | None = None

    @property
    def last_status(self) -> ConnectivityStatus | None:
        return self._last_status

    async def start(
        self,
        callback: StatusCallback,
        *,
        interval: float | None = None,
        immediate: bool = True,
    ) -> None:
        """Begin polling; a second call replaces the running loop."""

        generation = self._begin()
        if interval is not None:
            self._interval = self._validate_interval(interval)
        self._callback = callback
        self._logger.info("Connectivity polling every %.1fs", self._interval)
        if immediate is not False:
            status = await self.check_once()
            if self._is_current(generation):
                await self._deliver(status)
        self._spawn(generation)

    async def check_once(self) -> ConnectivityStatus:
        """Probe once, substituting an offline status when the probe fails."""

        try:
            status = await self._probe.get_status()
        except Exception as exc:
            self._logger.warning("Connectivity probe failed: %s", exc)
            status = ConnectivityStatus.offline()
        self._last_status = status
        return status

    async def _tick(self, generation: int) -> None:
        status = await self.check_once()
        if not self._is_current(generation):
            self._logger.debug(
                "Discarding connectivity result after stop (connected=%s)", status.connected
            )
            return
        await self._deliver(status)

    async def _deliver(self, status: ConnectivityStatus) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            result = callback(status)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            self._logger.exception("Connectivity status callback failed")


__all__ = ["ConnectivityMonitor", "PollingLoop", "StatusCallback"]
