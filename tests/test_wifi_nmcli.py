from __future__ import annotations

import asyncio
import subprocess
from typing import Sequence

import pytest

from campus_link.wifi import NMCLIAdapter, WifiError


class ScriptedNMCLI:
    """Answer nmcli invocations from a table keyed by the subcommand."""

    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses
        self.calls: list[list[str]] = []

    def __call__(self, args: Sequence[str], *, timeout: float | None = None) -> str:
        args = list(args)
        self.calls.append(args)
        if args[-1] == "device" and "DEVICE,TYPE,STATE" in args:
            key = "devices"
        elif "list" in args:
            key = "list"
        elif "show" in args:
            key = "show"
        elif "connect" in args:
            key = "connect"
        elif "disconnect" in args:
            key = "disconnect"
        else:  # pragma: no cover - unexpected command
            raise AssertionError(f"unexpected nmcli call: {args}")
        response = self.responses.get(key, "")
        if isinstance(response, Exception):
            raise response
        return str(response)


def _adapter(responses: dict[str, object], interface: str | None = "wlan0") -> tuple[NMCLIAdapter, ScriptedNMCLI]:
    adapter = NMCLIAdapter(interface)
    script = ScriptedNMCLI(responses)
    adapter._run = script  # type: ignore[assignment]
    return adapter, script


def test_current_wifi_parses_escaped_bssid() -> None:
    adapter, script = _adapter(
        {
            "list": "\n".join(
                [
                    " :Library:55:5180 MHz:WPA2:11\\:22\\:33\\:44\\:55\\:66",
                    "*:Campus:78:2437 MHz:WPA2:AA\\:BB\\:CC\\:DD\\:EE\\:FF",
                    " ::20:2412 MHz::",
                ]
            )
        }
    )

    current = asyncio.run(adapter.get_current_wifi())

    assert current is not None
    assert current.ssid == "Campus"
    assert current.signal_strength == 78
    assert current.frequency == 2437.0
    assert current.channel == 6
    assert current.bssid == "AA:BB:CC:DD:EE:FF"
    assert current.connected is True
    assert script.calls[0][-3:] == ["wlan0", "--rescan", "no"]


def test_scan_lists_networks_and_marks_open_security() -> None:
    adapter, script = _adapter({"list": " :Guest:40:5180 MHz::\n"})

    networks = asyncio.run(adapter.scan())

    assert [network.ssid for network in networks] == ["Guest"]
    assert networks[0].security == "Open"
    assert networks[0].channel == 36
    assert networks[0].connected is False
    assert script.calls[0][-1] == "yes"


def test_current_wifi_is_none_when_not_associated() -> None:
    adapter, _ = _adapter({"list": " :Library:55:5180 MHz:WPA2:\n"})

    assert asyncio.run(adapter.get_current_wifi()) is None


def test_network_info_parses_addresses() -> None:
    adapter, _ = _adapter(
        {
            "show": "\n".join(
                [
                    "GENERAL.HWADDR:AA\\:BB\\:CC\\:DD\\:EE\\:FF",
                    "IP4.ADDRESS[1]:10.20.30.40/22",
                    "IP4.GATEWAY:10.20.28.1",
                    "IP4.DNS[1]:10.10.0.21",
                    "IP4.DNS[2]:10.10.0.22",
                    "IP6.ADDRESS[1]:fe80\\:\\:1/64",
                    "IP6.ADDRESS[2]:2001\\:da8\\:\\:5/64",
                ]
            )
        }
    )

    info = asyncio.run(adapter.get_network_info())

    assert info.mac == "AA:BB:CC:DD:EE:FF"
    assert info.ipv4 == "10.20.30.40"
    assert info.subnet_mask == "255.255.252.0"
    assert info.gateway == "10.20.28.1"
    assert info.dns == ["10.10.0.21", "10.10.0.22"]
    assert info.ipv6 == "2001:da8::5"


def test_network_info_skips_empty_values() -> None:
    adapter, _ = _adapter({"show": "IP4.ADDRESS[1]:\nIP4.GATEWAY:--\n"})

    info = asyncio.run(adapter.get_network_info())

    assert info.ipv4 is None
    assert info.gateway is None
    assert info.dns == []


def test_connect_builds_nmcli_arguments() -> None:
    adapter, script = _adapter({"connect": "Device 'wlan0' successfully activated"})

    assert asyncio.run(adapter.connect("Campus", "hunter2")) is True
    assert script.calls[-1] == [
        "nmcli",
        "device",
        "wifi",
        "connect",
        "Campus",
        "password",
        "hunter2",
        "ifname",
        "wlan0",
    ]

    asyncio.run(adapter.connect("Guest", None))
    assert "password" not in script.calls[-1]


def test_connect_reports_permission_problems() -> None:
    adapter, _ = _adapter({"connect": WifiError("Error: Not authorized to control networking.")})

    with pytest.raises(WifiError, match="not authorized"):
        asyncio.run(adapter.connect("Campus", None))


def test_connect_failure_names_the_network() -> None:
    adapter, _ = _adapter({"connect": WifiError("Secrets were required, but not provided.")})

    with pytest.raises(WifiError, match="Connection to Campus failed"):
        asyncio.run(adapter.connect("Campus", None))


def test_interface_is_detected_once() -> None:
    adapter, script = _adapter(
        {
            "devices": "eth0:ethernet:connected\nwlan9:wifi:unavailable\nwlan1:wifi:disconnected\n",
            "list": "",
        },
        interface=None,
    )

    asyncio.run(adapter.scan())
    asyncio.run(adapter.scan())

    device_queries = [call for call in script.calls if "DEVICE,TYPE,STATE" in call]
    assert len(device_queries) == 1
    assert script.calls[1][-3] == "wlan1"


def test_missing_interface_raises() -> None:
    adapter, _ = _adapter({"devices": "eth0:ethernet:connected\n"}, interface=None)

    with pytest.raises(WifiError, match="No Wi-Fi interface"):
        asyncio.run(adapter.get_current_wifi())


def test_disconnect_ignores_inactive_device() -> None:
    adapter, script = _adapter({"disconnect": WifiError("Error: Device 'wlan0' is not active")})

    asyncio.run(adapter.disconnect())

    assert script.calls[-1] == ["nmcli", "device", "disconnect", "wlan0"]

    failing, _ = _adapter({"disconnect": WifiError("Error: permission denied")})
    with pytest.raises(WifiError):
        asyncio.run(failing.disconnect())


def test_run_wraps_operating_system_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _denied(*args: object, **kwargs: object) -> None:
        raise PermissionError("Permission denied: 'nmcli'")

    monkeypatch.setattr(subprocess, "run", _denied)
    adapter = NMCLIAdapter("wlan0")

    with pytest.raises(WifiError, match="nmcli command failed"):
        adapter._run(["nmcli", "device"])
    with pytest.raises(WifiError):
        asyncio.run(adapter.get_current_wifi())
