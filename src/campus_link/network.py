"""Connectivity probing and the status model shared by the monitors."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

import httpx

from .wifi import WifiAdapter

CONNECTIVITY_CHECK_URLS: tuple[str, ...] = (
    "http://www.gstatic.com/generate_204",
    "http://connectivitycheck.platform.hicloud.com/generate_204",
    "http://connect.rom.miui.com/generate_204",
)
PORTAL_STATUS_URL = "http://10.10.102.50:801/eportal/portal/page/checkstatus"
LATENCY_TIMEOUT_MS = 9999


def rate_latency(value_ms: float) -> str:
    if value_ms < 50:
        return "excellent"
    if value_ms < 100:
        return "good"
    if value_ms < 200:
        return "fair"
    if value_ms < 500:
        return "poor"
    return "very-poor"


@dataclass(slots=True)
class LatencyResult:
    """Round-trip time of a single HTTP request."""

    value: float
    rating: str
    source: str
    timestamp: float = field(default_factory=time.time)

    @property
    def timed_out(self) -> bool:
        return self.rating == "timeout"

    def to_dict(self) -> dict[str, object]:
        return {
            "value": self.value,
            "rating": self.rating,
            "source": self.source,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class ConnectivityStatus:
    """Connectivity and authentication state observed by one probe."""

    connected: bool
    authenticated: bool
    wifi_connected: bool = False
    ssid: str | None = None
    signal_strength: int | None = None
    ipv4: str | None = None
    ipv6: str | None = None
    mac: str | None = None
    gateway: str | None = None
    dns: str | None = None
    latency: LatencyResult | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def offline(cls) -> "ConnectivityStatus":
        return cls(connected=False, authenticated=False, wifi_connected=False)

    def to_dict(self) -> dict[str, object | None]:
        return {
            "connected": self.connected,
            "authenticated": self.authenticated,
            "wifi_connected": self.wifi_connected,
            "ssid": self.ssid,
            "signal_strength": self.signal_strength,
            "ipv4": self.ipv4,
            "ipv6": self.ipv6,
            "mac": self.mac,
            "gateway": self.gateway,
            "dns": self.dns,
            "latency": self.latency.to_dict() if self.latency else None,
            "timestamp": self.timestamp,
        }


class ConnectivityProbe:
    """Decide whether the device can reach the internet.

    Reachability of any well-known ``generate_204`` endpoint counts as both
    connected and authenticated. A captive portal that answers those URLs
    with its own page yields a non-2xx status (usually a redirect), which is
    treated as unreachable.
    """

    def __init__(
        self,
        adapter: WifiAdapter | None = None,
        *,
        check_urls: Sequence[str] = CONNECTIVITY_CHECK_URLS,
        portal_status_url: str = PORTAL_STATUS_URL,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        measure_latency: bool = True,
    ) -> None:
        if not check_urls:
            raise ValueError("At least one connectivity check URL is required")
        self._adapter = adapter
        self._check_urls = tuple(check_urls)
        self._portal_status_url = portal_status_url
        self._timeout = timeout
        self._transport = transport
        self._measure_latency = measure_latency
        self._logger = logging.getLogger(__name__)

    @property
    def adapter(self) -> WifiAdapter | None:
        return self._adapter

    def set_adapter(self, adapter: WifiAdapter | None) -> None:
        self._adapter = adapter

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=False,
            transport=self._transport,
        )

    async def check_connectivity(self) -> bool:
        async with self._client() as client:
            for url in self._check_urls:
                try:
                    response = await client.get(url)
                except httpx.HTTPError as exc:
                    self._logger.debug("Connectivity check %s failed: %s", url, exc)
                    continue
                if response.status_code == 204 or response.is_success:
                    return True
                self._logger.debug(
                    "Connectivity check %s returned HTTP %s", url, response.status_code
                )
        return False

    async def is_authenticated(self) -> bool:
        return await self.check_connectivity()

    async def measure_latency(self, target: str | None = None) -> LatencyResult:
        """Time a HEAD request, falling back to a public endpoint."""

        targets = [target or self._portal_status_url]
        if target is None and self._check_urls[0] not in targets:
            targets.append(self._check_urls[0])
        async with self._client() as client:
            for url in targets:
                started = time.perf_counter()
                try:
                    await client.head(url)
                except httpx.HTTPError as exc:
                    self._logger.debug("Latency test against %s failed: %s", url, exc)
                    continue
                elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)
                return LatencyResult(elapsed_ms, rate_latency(elapsed_ms), url)
        return LatencyResult(float(LATENCY_TIMEOUT_MS), "timeout", targets[-1])

    async def get_status(self) -> ConnectivityStatus:
        connected = await self.check_connectivity()
        status = ConnectivityStatus(connected=connected, authenticated=connected)
        adapter = self._adapter
        if adapter is None:
            return status
        try:
            wifi = await adapter.get_current_wifi()
            info = await adapter.get_network_info() if wifi is not None else None
        except Exception as exc:
            self._logger.warning("Unable to read Wi-Fi details: %s", exc)
            return status
        if wifi is None:
            return status
        status.wifi_connected = True
        status.ssid = wifi.ssid
        status.signal_strength = wifi.signal_strength
        if info is not None:
            status.ipv4 = info.ipv4
            status.ipv6 = info.ipv6
            status.mac = info.mac
            status.gateway = info.gateway
            status.dns = info.dns[0] if info.dns else None
        if self._measure_latency:
            status.latency = await self.measure_latency()
        return status


__all__ = [
    "CONNECTIVITY_CHECK_URLS",
    "ConnectivityProbe",
    "ConnectivityStatus",
    "LatencyResult",
    "PORTAL_STATUS_URL",
    "rate_latency",
]
