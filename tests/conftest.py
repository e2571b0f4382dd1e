from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

import pytest

from campus_link.auth import LoginConfig, LoginResult, LogoutResult
from campus_link.config import Account
from campus_link.network import ConnectivityStatus
from campus_link.wifi import NetworkInfo, WifiAdapter, WifiInfo


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Sleep replacement whose timers only fire when :meth:`advance` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    async def sleep(self, delay: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + delay, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        await settle()
        self.now += seconds
        for deadline, future in list(self._sleepers):
            if deadline <= self.now and not future.done():
                future.set_result(None)
        self._sleepers = [item for item in self._sleepers if not item[1].done()]
        await settle()


class RecordingSleep:
    """Sleep replacement that returns immediately and remembers each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeProbe:
    def __init__(self, statuses: Iterable[ConnectivityStatus | Exception] = ()) -> None:
        self._statuses = list(statuses)
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def get_status(self) -> ConnectivityStatus:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self._statuses:
            item = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        else:
            item = ConnectivityStatus(connected=True, authenticated=True)
        if isinstance(item, Exception):
            raise item
        return item


class FakeAuthService:
    def __init__(self, results: list[LoginResult] | None = None) -> None:
        self.results = list(results or [LoginResult(True, "ok", code=1)])
        self.configs: list[LoginConfig] = []
        self.server_urls: list[str] = []
        self.logouts: list[str] = []
        self.gate: asyncio.Event | None = None

    def set_server_url(self, url: str) -> None:
        self.server_urls.append(url)

    async def login(self, config: LoginConfig) -> LoginResult:
        self.configs.append(config)
        if self.gate is not None:
            await self.gate.wait()
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def logout(self, ip: str) -> LogoutResult:
        self.logouts.append(ip)
        return LogoutResult(True, "Logged out")


class FakeAdapter(WifiAdapter):
    def __init__(
        self,
        *,
        current: Sequence[WifiInfo | None | Exception] = (),
        info: NetworkInfo | None = None,
        connect_results: dict[str, Sequence[bool | Exception]] | None = None,
    ) -> None:
        self._current = list(current)
        self.info = info or NetworkInfo(
            ipv4="10.20.30.40",
            ipv6="2001:da8::5",
            mac="aa:bb:cc:dd:ee:ff",
            gateway="10.20.28.1",
            dns=["10.10.0.21"],
        )
        self._connect_results = {key: list(value) for key, value in (connect_results or {}).items()}
        self.connect_calls: list[tuple[str, str | None]] = []
        self.connect_gate: asyncio.Event | None = None

    async def get_current_wifi(self) -> WifiInfo | None:
        if not self._current:
            return WifiInfo(ssid="Campus", signal_strength=70, connected=True)
        item = self._current.pop(0) if len(self._current) > 1 else self._current[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_network_info(self) -> NetworkInfo:
        return self.info

    async def connect(self, ssid: str, password: str | None) -> bool:
        self.connect_calls.append((ssid, password))
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        results = self._connect_results.get(ssid)
        if not results:
            return False
        item = results.pop(0) if len(results) > 1 else results[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def scan(self) -> Sequence[WifiInfo]:
        return []

    async def disconnect(self) -> None:
        return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def account() -> Account:
    return Account(
        id="acct-1",
        name="Dorm",
        username="2021001",
        password="secret",
        server_url="http://portal.test:801",
        isp="cmcc",
    )
