"""Re-authenticate against the portal when connectivity drops."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .activity_log import ActivityLog
from .auth import AuthService, LoginConfig, LoginResult
from .events import (
    EventBus,
    RECONNECT_ATTEMPT,
    RECONNECT_FAILED,
    RECONNECT_STARTED,
    RECONNECT_SUCCEEDED,
)
from .network import ConnectivityStatus
from .retry import BACKOFF_EXPONENTIAL, RetryExhausted, RetryOptions, RetryPolicy
from .wifi import WifiAdapter

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import Account

AccountProvider = Callable[[], "Account | None"]
SleepFunc = Callable[[float], Awaitable[Any]]

_LOG_LEVELS = {"warning": logging.WARNING, "error": logging.ERROR}


class ReconnectError(RuntimeError):
    """Raised inside a reconnect attempt; reported through events only."""


class ReconnectState(str, enum.Enum):
    IDLE = "idle"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class ReconnectOptions:
    enabled: bool = True
    max_retries: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if not isinstance(self.enabled, bool):
            raise ValueError("enabled must be a boolean")
        if isinstance(self.max_retries, bool) or int(self.max_retries) < 0:
            raise ValueError("max_retries must be a non-negative integer")
        if float(self.initial_delay) < 0 or float(self.max_delay) < 0:
            raise ValueError("Reconnect delays must not be negative")
        object.__setattr__(self, "max_retries", int(self.max_retries))
        object.__setattr__(self, "initial_delay", float(self.initial_delay))
        object.__setattr__(self, "max_delay", float(self.max_delay))

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
        }


@dataclass(frozen=True, slots=True)
class ReconnectAttempt:
    """Progress of one portal login attempt."""

    target: str
    attempt: int
    max_attempts: int
    status: str

    def to_dict(self) -> dict[str, object]:
        return {
            "target": self.target,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "status": self.status,
        }


class AutoReconnectService:
    """Log back in through :class:`AuthService` after connectivity is lost.

    Only one reconnect flow runs at a time. The flag guarding it is set before
    the flow first suspends, so two calls issued back to back on the event
    loop can never both start a flow.
    """

    def __init__(
        self,
        auth_service: AuthService,
        adapter: WifiAdapter | None,
        account_provider: AccountProvider,
        *,
        options: ReconnectOptions | None = None,
        events: EventBus | None = None,
        activity_log: ActivityLog | None = None,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._auth = auth_service
        self._adapter = adapter
        self._account_provider = account_provider
        self._options = options or ReconnectOptions()
        self._events = events or EventBus()
        self._activity_log = activity_log
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self._state = ReconnectState.IDLE
        self._last_status: ConnectivityStatus | None = None
        self._last_result: LoginResult | None = None

    # ------------------------------------------------------------------
    @property
    def options(self) -> ReconnectOptions:
        return self._options

    def set_options(self, **changes: Any) -> ReconnectOptions:
        self._options = replace(self._options, **changes)
        return self._options

    @property
    def state(self) -> ReconnectState:
        return self._state

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ReconnectState.RECONNECTING

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def last_result(self) -> LoginResult | None:
        return self._last_result

    # ------------------------------------------------------------------
    async def handle_status_change(self, status: ConnectivityStatus) -> bool:
        """Start a reconnect flow on a connected to disconnected transition.

        Returns ``True`` when a flow was run for this status.
        """

        was_connected = bool(self._last_status and self._last_status.connected)
        self._last_status = status
        if not self._options.enabled or self.is_reconnecting:
            return False
        if was_connected and not status.connected:
            self._record_log(
                "reconnect_trigger",
                "Connectivity lost; starting automatic re-authentication.",
                level="warning",
            )
            await self._run_flow()
            return True
        return False

    async def trigger_reconnect(self) -> bool:
        """Run a reconnect flow now unless one is already in progress."""

        if self.is_reconnecting:
            self._logger.warning("Reconnect already in progress")
            return False
        await self._run_flow()
        return True

    # ------------------------------------------------------------------
    async def _run_flow(self) -> None:
        self._state = ReconnectState.RECONNECTING
        try:
            account = self._account_provider()
            if account is None:
                error = ReconnectError("No account configured for automatic login")
                self._record_log("reconnect_no_account", str(error), level="warning")
                await self._events.publish(RECONNECT_FAILED, error)
                return
            await self._events.publish(RECONNECT_STARTED, None)
            options = self._options
            max_attempts = options.max_retries + 1
            target = account.username
            attempt = 0

            async def _attempt() -> LoginResult:
                nonlocal attempt
                attempt += 1
                await self._events.publish(
                    RECONNECT_ATTEMPT,
                    ReconnectAttempt(target, attempt, max_attempts, "connecting"),
                )
                return await self._login_once(account)

            def _on_retry(number: int, error: BaseException) -> None:
                self._record_log(
                    "reconnect_retry",
                    f"Reconnect attempt {number} failed: {error}.",
                    level="warning",
                    metadata={"attempt": number, "max_attempts": max_attempts},
                )

            policy = RetryPolicy(
                RetryOptions(
                    max_retries=options.max_retries,
                    initial_delay=options.initial_delay,
                    backoff=BACKOFF_EXPONENTIAL,
                    max_delay=options.max_delay,
                    on_retry=_on_retry,
                ),
                sleep=self._sleep,
            )
            try:
                result = await policy.execute(_attempt)
            except RetryExhausted as exc:
                self._record_log(
                    "reconnect_failed",
                    f"Automatic re-authentication failed after {exc.attempts} attempt(s): "
                    f"{exc.last_error}.",
                    level="error",
                )
                await self._events.publish(RECONNECT_FAILED, exc.last_error)
                return
            self._last_result = result
            self._record_log(
                "reconnect_success",
                f"Re-authenticated as {target}.",
                level="success",
            )
            await self._events.publish(RECONNECT_SUCCEEDED, result)
        finally:
            self._state = ReconnectState.IDLE

    async def _login_once(self, account: "Account") -> LoginResult:
        if self._adapter is None:
            raise ReconnectError("No Wi-Fi adapter available to read the local address")
        info = await self._adapter.get_network_info()
        if not info.ipv4:
            raise ReconnectError("Unable to determine the local IPv4 address")
        config = LoginConfig(
            server_url=account.server_url,
            user_account=account.username,
            user_password=account.password,
            wlan_user_ip=info.ipv4,
            isp=account.isp,
            wlan_user_ipv6=info.ipv6 or None,
            wlan_user_mac=(info.mac or "").replace(":", "") or None,
        )
        self._auth.set_server_url(account.server_url)
        result = await self._auth.login(config)
        if not result.success:
            raise ReconnectError(result.message)
        return result

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        level: str = "info",
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        if self._activity_log is not None:
            self._activity_log.record("auth", event, message, level=level, metadata=metadata)
        else:
            self._logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s: %s", event, message)


__all__ = [
    "AutoReconnectService",
    "ReconnectAttempt",
    "ReconnectError",
    "ReconnectOptions",
    "ReconnectState",
]
