"""Wire the connection services together from configuration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable

from .activity_log import ActivityLog
from .auth import AuthService, LoginConfig, LoginResult, LogoutResult
from .config import Account, AppSettings, ConfigManager
from .events import STATUS_CHANGED, EventBus
from .failover import FailoverOptions, SsidWatcher, WifiFailoverController
from .monitor import ConnectivityMonitor
from .network import ConnectivityProbe, ConnectivityStatus
from .reconnect import AutoReconnectService, ReconnectOptions
from .wifi import WifiAdapter, WifiError

SleepFunc = Callable[[float], Awaitable[Any]]


def _join_attempts(settings: AppSettings) -> int:
    return max(1, settings.max_retries)


class ConnectionSupervisor:
    """Own the monitor, reconnect service and failover watcher.

    Without a Wi-Fi adapter the failover controller and SSID watcher are not
    created and link-level recovery is skipped entirely.
    """

    def __init__(
        self,
        config: ConfigManager,
        *,
        adapter: WifiAdapter | None = None,
        auth_service: AuthService | None = None,
        probe: ConnectivityProbe | None = None,
        events: EventBus | None = None,
        activity_log: ActivityLog | None = None,
        failover_options: FailoverOptions | None = None,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._adapter = adapter
        self._logger = logger or logging.getLogger(__name__)
        self._events = events or EventBus()
        self._activity_log = activity_log or ActivityLog()
        self._auth = auth_service or AuthService()
        self._probe = probe or ConnectivityProbe(adapter)
        settings = config.get_settings()
        self._monitor = ConnectivityMonitor(
            self._probe, interval=settings.polling_interval, sleep=sleep
        )
        self._reconnect = AutoReconnectService(
            self._auth,
            adapter,
            config.get_current_account,
            options=ReconnectOptions(
                enabled=settings.auto_reconnect, max_retries=settings.max_retries
            ),
            events=self._events,
            activity_log=self._activity_log,
            sleep=sleep,
        )
        self._failover: WifiFailoverController | None = None
        self._watcher: SsidWatcher | None = None
        if adapter is not None:
            self._failover = WifiFailoverController(
                adapter,
                config.get_catalog(),
                events=self._events,
                status_refresher=self.refresh_status,
                reconnect_service=self._reconnect,
                options=replace(
                    failover_options or FailoverOptions(),
                    max_attempts=_join_attempts(settings),
                ),
                sleep=sleep,
                activity_log=self._activity_log,
            )
            self._watcher = SsidWatcher(
                adapter,
                self._failover,
                interval=settings.ssid_check_interval,
                on_change=self._on_ssid_change,
                sleep=sleep,
            )
        self._started = False

    # ------------------------------------------------------------------
    @property
    def config(self) -> ConfigManager:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def activity_log(self) -> ActivityLog:
        return self._activity_log

    @property
    def adapter(self) -> WifiAdapter | None:
        return self._adapter

    @property
    def auth(self) -> AuthService:
        return self._auth

    @property
    def monitor(self) -> ConnectivityMonitor:
        return self._monitor

    @property
    def reconnect(self) -> AutoReconnectService:
        return self._reconnect

    @property
    def failover(self) -> WifiFailoverController | None:
        return self._failover

    @property
    def watcher(self) -> SsidWatcher | None:
        return self._watcher

    @property
    def last_status(self) -> ConnectivityStatus | None:
        return self._monitor.last_status

    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        settings = self._config.get_settings()
        self._activity_log.record(
            "system",
            "startup",
            "Connection services starting.",
            metadata={
                "heartbeat": settings.enable_heartbeat,
                "failover": self._failover is not None,
            },
        )
        if settings.enable_heartbeat:
            await self._monitor.start(self._on_status, interval=settings.polling_interval)
        else:
            await self._on_status(await self._monitor.check_once())
        if self._watcher is not None:
            await self._watcher.start(interval=settings.ssid_check_interval)

    async def aclose(self) -> None:
        if not self._started:
            return
        self._started = False
        if self._watcher is not None:
            await self._watcher.aclose()
        await self._monitor.aclose()
        self._activity_log.record("system", "shutdown", "Connection services stopped.")

    async def refresh_status(self) -> ConnectivityStatus:
        return await self._monitor.check_once()

    def refresh_catalog(self) -> None:
        """Point the failover controller at the current Wi-Fi profiles."""

        if self._failover is not None:
            self._failover.set_catalog(self._config.get_catalog())

    async def apply_settings(self, settings: AppSettings) -> None:
        self._reconnect.set_options(
            enabled=settings.auto_reconnect, max_retries=settings.max_retries
        )
        if self._failover is not None:
            self._failover.set_options(max_attempts=_join_attempts(settings))
        if not self._started:
            return
        if settings.enable_heartbeat:
            await self._monitor.start(
                self._on_status, interval=settings.polling_interval, immediate=False
            )
        else:
            self._monitor.stop()
        watcher = self._watcher
        if watcher is not None and watcher.interval != settings.ssid_check_interval:
            await watcher.start(interval=settings.ssid_check_interval, immediate=False)

    # ------------------------------------------------------------------
    async def _on_status(self, status: ConnectivityStatus) -> None:
        await self._events.publish(STATUS_CHANGED, status)
        await self._reconnect.handle_status_change(status)

    async def _on_ssid_change(self, ssid: str | None) -> None:
        status = await self.refresh_status()
        await self._events.publish(STATUS_CHANGED, status)

    # ------------------------------------------------------------------
    def _resolve_account(self, account_id: str | None) -> Account:
        if account_id:
            account = self._config.get_account(account_id)
            if account is None:
                raise KeyError(account_id)
            return account
        account = self._config.get_current_account()
        if account is None:
            raise ValueError("No account configured")
        return account

    async def _local_ipv4(self) -> tuple[str, str | None, str | None]:
        if self._adapter is None:
            raise WifiError("No Wi-Fi adapter available")
        info = await self._adapter.get_network_info()
        if not info.ipv4:
            raise WifiError("Unable to determine the local IPv4 address")
        mac = (info.mac or "").replace(":", "") or None
        return info.ipv4, info.ipv6, mac

    async def login(self, account_id: str | None = None) -> LoginResult:
        """Log in once with ``account_id`` or the current account."""

        account = self._resolve_account(account_id)
        ipv4, ipv6, mac = await self._local_ipv4()
        self._auth.set_server_url(account.server_url)
        result = await self._auth.login(
            LoginConfig(
                server_url=account.server_url,
                user_account=account.username,
                user_password=account.password,
                wlan_user_ip=ipv4,
                isp=account.isp,
                wlan_user_ipv6=ipv6,
                wlan_user_mac=mac,
            )
        )
        self._activity_log.record(
            "auth",
            "login_success" if result.success else "login_failed",
            result.message,
            level="success" if result.success else "warning",
            metadata={"account": account.username, "ip": ipv4},
        )
        return result

    async def logout(self) -> LogoutResult:
        ipv4, _, _ = await self._local_ipv4()
        result = await self._auth.logout(ipv4)
        self._activity_log.record(
            "auth",
            "logout_success" if result.success else "logout_failed",
            result.message,
            level="success" if result.success else "warning",
            metadata={"ip": ipv4},
        )
        return result


__all__ = ["ConnectionSupervisor"]
