"""Recover the Wi-Fi link by rejoining or switching networks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from .activity_log import ActivityLog
from .catalog import NetworkCatalog, WifiProfile
from .events import ALL_RECONNECTS_FAILED, RECONNECT_PROGRESS, STATUS_CHANGED, EventBus
from .monitor import PollingLoop
from .network import ConnectivityStatus
from .reconnect import AutoReconnectService
from .retry import BACKOFF_FIXED, RetryExhausted, RetryOptions, RetryPolicy
from .wifi import WifiAdapter

StatusRefresher = Callable[[], Awaitable[ConnectivityStatus]]
SsidCallback = Callable[[str | None], Awaitable[None] | None]
SleepFunc = Callable[[float], Awaitable[Any]]


class FailoverAttemptError(RuntimeError):
    """A single attempt to join a Wi-Fi network failed."""


@dataclass(frozen=True, slots=True)
class FailureRecord:
    ssid: str
    priority: int
    reason: str

    def to_dict(self) -> dict[str, object]:
        return {"ssid": self.ssid, "priority": self.priority, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class JoinProgress:
    """Progress of one attempt to join a Wi-Fi network."""

    ssid: str
    attempt: int
    max_attempts: int
    status: str

    def to_dict(self) -> dict[str, object]:
        return {
            "ssid": self.ssid,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "status": self.status,
        }


@dataclass(slots=True)
class FailoverResult:
    """Outcome of one failover flow."""

    recovered: bool
    ssid: str | None = None
    failures: list[FailureRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, object | None]:
        return {
            "recovered": self.recovered,
            "ssid": self.ssid,
            "failures": [record.to_dict() for record in self.failures],
        }


@dataclass(frozen=True, slots=True)
class FailoverOptions:
    """Timing of the failover flow, in seconds."""

    max_attempts: int = 3
    retry_delay: float = 2.0
    switch_delay: float = 1.0
    settle_delay: float = 3.0

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        for name in ("retry_delay", "switch_delay", "settle_delay"):
            value = float(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} must not be negative")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "max_attempts", int(self.max_attempts))


class WifiFailoverController:
    """Bring the Wi-Fi link back after the current network drops.

    The dropped network is retried first. When that fails every other
    auto-connect profile is tried in ascending priority order. If nothing can
    be joined a single ``all_reconnects_failed`` event lists each failure.
    """

    def __init__(
        self,
        adapter: WifiAdapter,
        catalog: NetworkCatalog,
        *,
        events: EventBus | None = None,
        status_refresher: StatusRefresher | None = None,
        reconnect_service: AutoReconnectService | None = None,
        options: FailoverOptions | None = None,
        sleep: SleepFunc = asyncio.sleep,
        activity_log: ActivityLog | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._adapter = adapter
        self._catalog = catalog
        self._events = events or EventBus()
        self._status_refresher = status_refresher
        self._reconnect_service = reconnect_service
        self._options = options or FailoverOptions()
        self._sleep = sleep
        self._activity_log = activity_log
        self._logger = logger or logging.getLogger(__name__)
        self._running = False
        self._last_result: FailoverResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def catalog(self) -> NetworkCatalog:
        return self._catalog

    @property
    def options(self) -> FailoverOptions:
        return self._options

    @property
    def last_result(self) -> FailoverResult | None:
        return self._last_result

    def set_options(self, **changes: Any) -> FailoverOptions:
        self._options = replace(self._options, **changes)
        return self._options

    def set_catalog(self, catalog: NetworkCatalog) -> None:
        """Use ``catalog`` for the next flow; a running flow keeps its snapshot."""

        self._catalog = catalog

    async def handle_disconnect(self, ssid: str) -> FailoverResult | None:
        if self._running:
            self._logger.info("Failover already running; ignoring drop of %s", ssid)
            return None
        catalog = self._catalog
        profile = catalog.get(ssid)
        if profile is None or not profile.auto_connect:
            self._logger.debug("Wi-Fi %s is not configured for automatic reconnect", ssid)
            return None

        self._running = True
        try:
            self._record_log(
                "failover_start",
                f"Wi-Fi network {profile.ssid} dropped; attempting to reconnect.",
                level="warning",
                metadata={"ssid": profile.ssid, "requires_auth": profile.requires_auth},
            )
            failures: list[FailureRecord] = []
            reason = await self._join(profile)
            if reason is None:
                return await self._finish(profile, failures)
            failures.append(FailureRecord(profile.ssid, profile.priority, reason))

            for candidate in catalog.failover_candidates(exclude=profile.ssid):
                await self._sleep(self._options.switch_delay)
                self._record_log(
                    "failover_switch",
                    f"Trying alternate Wi-Fi network {candidate.ssid} "
                    f"(priority {candidate.priority}).",
                )
                reason = await self._join(candidate)
                if reason is None:
                    return await self._finish(candidate, failures)
                failures.append(FailureRecord(candidate.ssid, candidate.priority, reason))

            self._record_log(
                "failover_exhausted",
                f"Unable to join any configured Wi-Fi network ({len(failures)} tried).",
                level="error",
                metadata={"failed": [record.ssid for record in failures]},
            )
            await self._events.publish(
                ALL_RECONNECTS_FAILED,
                {"failed_list": [record.to_dict() for record in failures]},
            )
            result = FailoverResult(False, None, failures)
            self._last_result = result
            return result
        finally:
            self._running = False

    async def _join(self, profile: WifiProfile) -> str | None:
        """Join ``profile`` with bounded retries; return the failure reason."""

        max_attempts = self._options.max_attempts
        attempt = 0

        async def _attempt() -> None:
            nonlocal attempt
            attempt += 1
            await self._publish_progress(profile.ssid, attempt, max_attempts, "connecting")
            try:
                joined = await self._adapter.connect(profile.ssid, profile.password or None)
            except Exception as exc:
                raise FailoverAttemptError(str(exc) or exc.__class__.__name__) from exc
            if not joined:
                raise FailoverAttemptError(f"Adapter could not join {profile.ssid}")

        def _on_retry(number: int, error: BaseException) -> None:
            self._logger.info(
                "Joining %s failed (attempt %d/%d): %s", profile.ssid, number, max_attempts, error
            )

        policy = RetryPolicy(
            RetryOptions(
                max_retries=max_attempts - 1,
                initial_delay=self._options.retry_delay,
                backoff=BACKOFF_FIXED,
                max_delay=self._options.retry_delay,
                on_retry=_on_retry,
            ),
            sleep=self._sleep,
        )
        try:
            await policy.execute(_attempt)
        except RetryExhausted as exc:
            reason = str(exc.last_error).strip() or "Connection failed"
            await self._publish_progress(profile.ssid, attempt, max_attempts, "failed")
            self._record_log(
                "failover_network_failed",
                f"Unable to join {profile.ssid}: {reason}.",
                level="warning",
                metadata={"ssid": profile.ssid, "attempts": attempt},
            )
            return reason
        await self._publish_progress(profile.ssid, attempt, max_attempts, "success")
        return None

    async def _finish(self, profile: WifiProfile, failures: list[FailureRecord]) -> FailoverResult:
        self._record_log(
            "failover_success",
            f"Joined Wi-Fi network {profile.ssid}.",
            level="success",
            metadata={"ssid": profile.ssid},
        )
        await self._sleep(self._options.settle_delay)
        if self._status_refresher is not None:
            try:
                status = await self._status_refresher()
            except Exception as exc:
                self._logger.warning("Unable to refresh status after failover: %s", exc)
            else:
                await self._events.publish(STATUS_CHANGED, status)
        if profile.requires_auth and self._reconnect_service is not None:
            started = await self._reconnect_service.trigger_reconnect()
            if not started:
                self._logger.info("Portal login already in progress after joining %s", profile.ssid)
        result = FailoverResult(True, profile.ssid, failures)
        self._last_result = result
        return result

    async def _publish_progress(
        self, ssid: str, attempt: int, max_attempts: int, status: str
    ) -> None:
        await self._events.publish(
            RECONNECT_PROGRESS, JoinProgress(ssid, attempt, max_attempts, status)
        )

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        level: str = "info",
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        if self._activity_log is not None:
            self._activity_log.record("wifi", event, message, level=level, metadata=metadata)
        else:
            self._logger.info("%s: %s", event, message)


class SsidWatcher(PollingLoop):
    """Poll the current SSID and start a failover when it disappears."""

    def __init__(
        self,
        adapter: WifiAdapter,
        controller: WifiFailoverController,
        *,
        interval: float = 3.0,
        on_change: SsidCallback | None = None,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            interval=interval,
            sleep=sleep,
            name="ssid-watcher",
            logger=logger or logging.getLogger(__name__),
        )
        self._adapter = adapter
        self._controller = controller
        self._on_change = on_change
        self._last_ssid: str | None = None
        self._failover_task: asyncio.Task[FailoverResult | None] | None = None

    @property
    def last_ssid(self) -> str | None:
        return self._last_ssid

    @property
    def failover_task(self) -> asyncio.Task[FailoverResult | None] | None:
        return self._failover_task

    async def start(self, *, interval: float | None = None, immediate: bool = True) -> None:
        """Begin watching; a second call replaces the running loop.

        The last seen SSID survives a restart, so a drop that happens while
        the interval changes is still noticed.
        """

        previous = self._last_ssid
        generation = self._begin()
        if interval is not None:
            self._interval = self._validate_interval(interval)
        self._last_ssid = previous
        self._logger.info("Watching Wi-Fi SSID every %.1fs", self.interval)
        if immediate:
            await self._tick(generation)
        self._spawn(generation)

    def stop(self) -> None:
        super().stop()
        self._last_ssid = None

    async def aclose(self) -> None:
        await super().aclose()
        task = self._failover_task
        self._failover_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _read_ssid(self) -> str | None:
        try:
            wifi = await self._adapter.get_current_wifi()
        except Exception as exc:
            self._logger.debug("Unable to read current SSID: %s", exc)
            return None
        if wifi is None or not wifi.ssid:
            return None
        return wifi.ssid

    async def _tick(self, generation: int) -> None:
        ssid = await self._read_ssid()
        if not self._is_current(generation):
            return
        previous = self._last_ssid
        if ssid == previous:
            return
        self._last_ssid = ssid
        if previous is None:
            self._logger.info("Wi-Fi connected: %s", ssid)
        elif ssid is None:
            self._logger.info("Wi-Fi disconnected: %s", previous)
            self._start_failover(previous)
        else:
            self._logger.info("Wi-Fi switched: %s -> %s", previous, ssid)
        if self._on_change is not None:
            try:
                result = self._on_change(ssid)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._logger.exception("SSID change callback failed")

    def _start_failover(self, ssid: str) -> None:
        task = self._failover_task
        if task is not None and not task.done():
            self._logger.debug("Failover task still active; not starting another")
            return
        loop = asyncio.get_running_loop()
        self._failover_task = loop.create_task(
            self._controller.handle_disconnect(ssid), name="wifi-failover"
        )
        self._failover_task.add_done_callback(self._on_failover_done)

    def _on_failover_done(self, task: asyncio.Task[FailoverResult | None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Wi-Fi failover crashed: %s", exc, exc_info=exc)


__all__ = [
    "FailoverAttemptError",
    "FailoverOptions",
    "FailoverResult",
    "FailureRecord",
    "JoinProgress",
    "SsidWatcher",
    "WifiFailoverController",
]
