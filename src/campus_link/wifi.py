"""Wi-Fi adapter interface and the NetworkManager implementation."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Sequence


class WifiError(RuntimeError):
    """Raised when a Wi-Fi adapter operation fails."""


def _channel_from_frequency(freq_mhz: float | None) -> int | None:
    """Best-effort conversion from MHz to Wi-Fi channel numbers."""

    if freq_mhz is None or freq_mhz <= 0:
        return None
    # 2.4 GHz channels use 5 MHz spacing starting at 2412 MHz.
    if 2400 <= freq_mhz <= 2500:
        channel = int(round((freq_mhz - 2407) / 5))
        if 1 <= channel <= 14:
            return channel
        return None
    if 4900 <= freq_mhz <= 5900:
        channel = int(round((freq_mhz - 5000) / 5))
        if channel > 0:
            return channel
        return None
    return None


@dataclass(slots=True)
class WifiInfo:
    """A Wi-Fi network as reported by the adapter."""

    ssid: str
    signal_strength: int | None = None
    bssid: str | None = None
    frequency: float | None = None
    channel: int | None = None
    security: str | None = None
    connected: bool = False

    def to_dict(self) -> dict[str, object | None]:
        return {
            "ssid": self.ssid,
            "signal_strength": self.signal_strength,
            "bssid": self.bssid,
            "frequency": self.frequency,
            "channel": self.channel,
            "security": self.security,
            "connected": self.connected,
        }


@dataclass(slots=True)
class NetworkInfo:
    """Addressing details of the active network interface."""

    ipv4: str | None = None
    ipv6: str | None = None
    mac: str | None = None
    gateway: str | None = None
    dns: list[str] = field(default_factory=list)
    subnet_mask: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "ipv4": self.ipv4,
            "ipv6": self.ipv6,
            "mac": self.mac,
            "gateway": self.gateway,
            "dns": list(self.dns),
            "subnet_mask": self.subnet_mask,
        }


class WifiAdapter:
    """Platform capability used by the connection services.

    Implementations may block on OS commands; every method is awaited so the
    event loop stays responsive.
    """

    async def get_current_wifi(self) -> WifiInfo | None:  # pragma: no cover - interface only
        raise NotImplementedError

    async def get_network_info(self) -> NetworkInfo:  # pragma: no cover - interface only
        raise NotImplementedError

    async def connect(self, ssid: str, password: str | None) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    async def scan(self) -> Sequence[WifiInfo]:  # pragma: no cover - interface only
        raise NotImplementedError

    async def disconnect(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


def _split_nmcli_fields(line: str, maxsplit: int = -1) -> list[str]:
    """Split terse nmcli output on unescaped colons."""

    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == ":" and (maxsplit < 0 or len(fields) < maxsplit):
            fields.append("".join(current))
            current = []
            continue
        current.append(char)
    fields.append("".join(current))
    return fields


class NMCLIAdapter(WifiAdapter):
    """Interact with NetworkManager through ``nmcli``."""

    def __init__(
        self,
        interface: str | None = None,
        *,
        timeout: float = 10.0,
        status_timeout: float = 2.0,
        connect_timeout: float = 30.0,
    ) -> None:
        self._preferred_interface = interface
        self._timeout = timeout
        self._status_timeout = status_timeout
        self._connect_timeout = connect_timeout
        self._detected_interface: str | None = None

    # ------------------------------- helpers -------------------------------
    def _run(self, args: Sequence[str], *, timeout: float | None = None) -> str:
        try:
            completed = subprocess.run(
                list(args),
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout or self._timeout,
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment specific
            raise WifiError("nmcli command unavailable") from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - environment specific
            raise WifiError("nmcli command timed out") from exc
        except subprocess.CalledProcessError as exc:
            error_output = (exc.stderr or "").strip() or (exc.stdout or "").strip() or str(exc)
            raise WifiError(error_output) from exc
        except OSError as exc:
            raise WifiError(f"nmcli command failed: {exc}") from exc
        return completed.stdout

    def _get_interface(self) -> str:
        if self._preferred_interface:
            return self._preferred_interface
        if self._detected_interface:
            return self._detected_interface
        output = self._run(["nmcli", "-t", "-f", "DEVICE,TYPE,STATE", "device"])
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = _split_nmcli_fields(line)
            if len(parts) < 3:
                continue
            device, dev_type, state = (part.strip() for part in parts[:3])
            if dev_type == "wifi" and state != "unavailable":
                self._detected_interface = device
                return device
        raise WifiError("No Wi-Fi interface detected")

    def _list_networks(self, *, rescan: bool, timeout: float | None = None) -> list[WifiInfo]:
        interface = self._get_interface()
        output = self._run(
            [
                "nmcli",
                "-t",
                "-f",
                "IN-USE,SSID,SIGNAL,FREQ,SECURITY,BSSID",
                "device",
                "wifi",
                "list",
                "ifname",
                interface,
                "--rescan",
                "yes" if rescan else "no",
            ],
            timeout=timeout,
        )
        networks: list[WifiInfo] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = _split_nmcli_fields(line)
            while len(parts) < 6:
                parts.append("")
            in_use, ssid_raw, signal_raw, freq_raw, security_raw, bssid_raw = parts[:6]
            ssid = ssid_raw.strip()
            if not ssid:
                continue
            try:
                signal = int(float(signal_raw.strip())) if signal_raw.strip() else None
            except ValueError:
                signal = None
            frequency = None
            if freq_raw.strip():
                try:
                    frequency = float(freq_raw.strip().split()[0])
                except ValueError:
                    frequency = None
            networks.append(
                WifiInfo(
                    ssid=ssid,
                    signal_strength=signal,
                    bssid=bssid_raw.strip() or None,
                    frequency=frequency,
                    channel=_channel_from_frequency(frequency),
                    security=security_raw.strip() or "Open",
                    connected=in_use.strip() in {"*", "yes"},
                )
            )
        return networks

    def _current_wifi(self) -> WifiInfo | None:
        for network in self._list_networks(rescan=False, timeout=self._status_timeout):
            if network.connected:
                return network
        return None

    def _network_info(self) -> NetworkInfo:
        interface = self._get_interface()
        output = self._run(
            [
                "nmcli",
                "-t",
                "-f",
                "GENERAL.HWADDR,IP4.ADDRESS,IP4.GATEWAY,IP4.DNS,IP6.ADDRESS",
                "device",
                "show",
                interface,
            ]
        )
        info = NetworkInfo()
        for line in output.splitlines():
            parts = _split_nmcli_fields(line, maxsplit=1)
            if len(parts) < 2:
                continue
            key, value = parts[0].strip(), parts[1].strip()
            if not value or value == "--":
                continue
            base_key = key.split("[", 1)[0]
            if base_key == "GENERAL.HWADDR":
                info.mac = value
            elif base_key == "IP4.ADDRESS" and info.ipv4 is None:
                address, _, prefix = value.partition("/")
                info.ipv4 = address
                if prefix:
                    try:
                        network = ipaddress.IPv4Network(f"0.0.0.0/{prefix}")
                    except ValueError:
                        pass
                    else:
                        info.subnet_mask = str(network.netmask)
            elif base_key == "IP4.GATEWAY":
                info.gateway = value
            elif base_key == "IP4.DNS":
                info.dns.append(value)
            elif base_key == "IP6.ADDRESS" and info.ipv6 is None:
                address = value.partition("/")[0]
                if not address.lower().startswith("fe80"):
                    info.ipv6 = address
        return info

    def _connect(self, ssid: str, password: str | None) -> bool:
        interface = self._get_interface()
        args = ["nmcli", "device", "wifi", "connect", ssid]
        if password:
            args.extend(["password", password])
        args.extend(["ifname", interface])
        try:
            self._run(args, timeout=self._connect_timeout)
        except WifiError as exc:
            message = str(exc).strip()
            lowered = message.lower()
            if "not authorized" in lowered or "not authorised" in lowered:
                raise WifiError(
                    "Unable to join Wi-Fi network: not authorized to control networking."
                ) from exc
            raise WifiError(f"Connection to {ssid} failed: {message}") from exc
        return True

    def _disconnect(self) -> None:
        interface = self._get_interface()
        try:
            self._run(["nmcli", "device", "disconnect", interface])
        except WifiError as exc:
            lowered = str(exc).lower()
            if "is not active" in lowered or "already disconnected" in lowered:
                return
            raise

    # ---------------------------- interface impl ---------------------------
    async def get_current_wifi(self) -> WifiInfo | None:
        return await asyncio.to_thread(self._current_wifi)

    async def get_network_info(self) -> NetworkInfo:
        return await asyncio.to_thread(self._network_info)

    async def connect(self, ssid: str, password: str | None) -> bool:
        logging.getLogger(__name__).info("Joining Wi-Fi network %s", ssid)
        return await asyncio.to_thread(self._connect, ssid, password)

    async def scan(self) -> Sequence[WifiInfo]:
        return await asyncio.to_thread(self._list_networks, rescan=True)

    async def disconnect(self) -> None:
        await asyncio.to_thread(self._disconnect)


__all__ = [
    "NMCLIAdapter",
    "NetworkInfo",
    "WifiAdapter",
    "WifiError",
    "WifiInfo",
]
