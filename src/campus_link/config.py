"""Persistent configuration: portal accounts, Wi-Fi profiles and settings."""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Mapping

from .auth import DEFAULT_SERVER_URL, ISP_SUFFIXES
from .catalog import NetworkCatalog, WifiProfile, generate_profile_id

MIN_POLLING_INTERVAL = 5.0


@dataclass(frozen=True, slots=True)
class Account:
    """Portal credentials for one user."""

    id: str
    name: str
    username: str
    password: str
    server_url: str = DEFAULT_SERVER_URL
    isp: str = "campus"

    def __post_init__(self) -> None:
        for attr in ("id", "username", "server_url"):
            value = getattr(self, attr)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Account {attr} must be a non-empty string")
            object.__setattr__(self, attr, value.strip())
        if not isinstance(self.password, str) or not self.password:
            raise ValueError("Account password must be a non-empty string")
        name = self.name.strip() if isinstance(self.name, str) else ""
        object.__setattr__(self, "name", name or self.username)
        isp = self.isp.strip().lower() if isinstance(self.isp, str) else ""
        if isp not in ISP_SUFFIXES:
            raise ValueError(f"Unknown ISP: {self.isp!r}")
        object.__setattr__(self, "isp", isp)

    def to_dict(self, *, include_password: bool = True) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "server_url": self.server_url,
            "isp": self.isp,
        }
        if include_password:
            payload["password"] = self.password
        return payload


@dataclass(frozen=True, slots=True)
class AppSettings:
    """Runtime behaviour of the connection services."""

    polling_interval: float = 30.0
    auto_reconnect: bool = True
    max_retries: int = 3
    enable_heartbeat: bool = True
    ssid_check_interval: float = 3.0

    def to_dict(self) -> dict[str, object]:
        return {
            "polling_interval": self.polling_interval,
            "auto_reconnect": self.auto_reconnect,
            "max_retries": self.max_retries,
            "enable_heartbeat": self.enable_heartbeat,
            "ssid_check_interval": self.ssid_check_interval,
        }


DEFAULT_SETTINGS = AppSettings()


def _parse_flag(value: Any, *, default: bool, name: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if math.isnan(float(value)):
            raise ValueError(f"{name} must be a boolean value")
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if not text:
            return default
        if text in {"true", "1", "yes", "on", "enabled"}:
            return True
        if text in {"false", "0", "no", "off", "disabled"}:
            return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_seconds(value: Any, *, default: float, minimum: float, name: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number of seconds") from exc
    if not math.isfinite(seconds) or seconds < minimum:
        raise ValueError(f"{name} must be at least {minimum:g} seconds")
    return seconds


def _parse_settings(value: Any, *, default: AppSettings) -> AppSettings:
    if value is None:
        return default
    if isinstance(value, AppSettings):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Settings must be provided as a mapping")
    max_retries_raw = value.get("max_retries", default.max_retries)
    if isinstance(max_retries_raw, bool):
        raise ValueError("max_retries must be an integer")
    try:
        max_retries = int(max_retries_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("max_retries must be an integer") from exc
    if max_retries < 0:
        raise ValueError("max_retries must not be negative")
    return AppSettings(
        polling_interval=_parse_seconds(
            value.get("polling_interval"),
            default=default.polling_interval,
            minimum=MIN_POLLING_INTERVAL,
            name="polling_interval",
        ),
        auto_reconnect=_parse_flag(
            value.get("auto_reconnect"), default=default.auto_reconnect, name="auto_reconnect"
        ),
        max_retries=max_retries,
        enable_heartbeat=_parse_flag(
            value.get("enable_heartbeat"), default=default.enable_heartbeat, name="enable_heartbeat"
        ),
        ssid_check_interval=_parse_seconds(
            value.get("ssid_check_interval"),
            default=default.ssid_check_interval,
            minimum=1.0,
            name="ssid_check_interval",
        ),
    )


def _parse_account(value: Any, *, account_id: str | None = None) -> Account:
    if isinstance(value, Account):
        return value
    if not isinstance(value, Mapping):
        raise ValueError("Account must be provided as a mapping")
    return Account(
        id=account_id or value.get("id") or uuid.uuid4().hex[:12],
        name=value.get("name") or "",
        username=value.get("username", ""),
        password=value.get("password", ""),
        server_url=value.get("server_url") or DEFAULT_SERVER_URL,
        isp=value.get("isp") or "campus",
    )


class ConfigManager:
    """Stores configuration state on disk with thread-safety."""

    def __init__(self, config_path: Path) -> None:
        self._path = Path(config_path)
        self._lock = Lock()
        self._ensure_parent()
        (
            self._settings,
            self._accounts,
            self._current_account_id,
            self._profiles,
        ) = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_parent(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _load(
        self,
    ) -> tuple[AppSettings, list[Account], str | None, list[WifiProfile]]:
        if not self._path.exists():
            return DEFAULT_SETTINGS, [], None, []
        try:
            payload = json.loads(self._path.read_text())
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            settings = _parse_settings(payload.get("settings"), default=DEFAULT_SETTINGS)
            accounts = [_parse_account(item) for item in payload.get("accounts") or []]
            current = payload.get("current_account_id")
            if current is not None and not any(account.id == current for account in accounts):
                current = None
            profiles = [WifiProfile.from_dict(item) for item in payload.get("wifi_profiles") or []]
            self._validate_profiles(profiles, accounts)
            return settings, accounts, current, profiles
        except (OSError, TypeError, ValueError) as exc:
            raise RuntimeError(f"Failed to load configuration: {exc}") from exc

    def _save(self) -> None:
        payload: Dict[str, Any] = {
            "settings": self._settings.to_dict(),
            "accounts": [account.to_dict() for account in self._accounts],
            "current_account_id": self._current_account_id,
            "wifi_profiles": [profile.to_dict() for profile in self._profiles],
        }
        self._path.write_text(json.dumps(payload, indent=2, ensure_ascii=False))

    @staticmethod
    def _validate_profiles(profiles: list[WifiProfile], accounts: list[Account]) -> None:
        account_ids = {account.id for account in accounts}
        seen: set[str] = set()
        ids: set[str] = set()
        for profile in profiles:
            if profile.ssid in seen:
                raise ValueError(f"Wi-Fi network {profile.ssid} is already configured")
            if profile.id in ids:
                raise ValueError(f"Duplicate Wi-Fi profile id: {profile.id}")
            if profile.linked_account_id is not None and profile.linked_account_id not in account_ids:
                raise ValueError(
                    f"Wi-Fi network {profile.ssid} links unknown account {profile.linked_account_id}"
                )
            seen.add(profile.ssid)
            ids.add(profile.id)

    # ------------------------------ settings ------------------------------
    def get_settings(self) -> AppSettings:
        with self._lock:
            return self._settings

    def update_settings(self, data: Mapping[str, Any]) -> AppSettings:
        with self._lock:
            settings = _parse_settings(data, default=self._settings)
            self._settings = settings
            self._save()
        return settings

    # ------------------------------ accounts ------------------------------
    def list_accounts(self) -> list[Account]:
        with self._lock:
            return list(self._accounts)

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            return self._find_account(account_id)

    def _find_account(self, account_id: str | None) -> Account | None:
        for account in self._accounts:
            if account.id == account_id:
                return account
        return None

    def add_account(self, data: Mapping[str, Any]) -> Account:
        account = _parse_account(data)
        with self._lock:
            if self._find_account(account.id) is not None:
                raise ValueError(f"Account {account.id} already exists")
            self._accounts.append(account)
            if self._current_account_id is None:
                self._current_account_id = account.id
            self._save()
        return account

    def update_account(self, account_id: str, data: Mapping[str, Any]) -> Account:
        with self._lock:
            existing = self._find_account(account_id)
            if existing is None:
                raise KeyError(account_id)
            merged = {**existing.to_dict(), **dict(data)}
            account = _parse_account(merged, account_id=existing.id)
            self._accounts = [account if item.id == account_id else item for item in self._accounts]
            self._save()
        return account

    def remove_account(self, account_id: str) -> None:
        with self._lock:
            if self._find_account(account_id) is None:
                raise KeyError(account_id)
            linked = [profile.ssid for profile in self._profiles if profile.linked_account_id == account_id]
            if linked:
                raise ValueError(
                    f"Account is linked to Wi-Fi network(s): {', '.join(linked)}"
                )
            self._accounts = [item for item in self._accounts if item.id != account_id]
            if self._current_account_id == account_id:
                self._current_account_id = self._accounts[0].id if self._accounts else None
            self._save()

    def get_current_account(self) -> Account | None:
        with self._lock:
            return self._find_account(self._current_account_id)

    def set_current_account(self, account_id: str) -> Account:
        with self._lock:
            account = self._find_account(account_id)
            if account is None:
                raise KeyError(account_id)
            self._current_account_id = account.id
            self._save()
        return account

    # ---------------------------- Wi-Fi profiles ---------------------------
    def list_wifi_profiles(self) -> list[WifiProfile]:
        with self._lock:
            return list(self._profiles)

    def get_catalog(self) -> NetworkCatalog:
        with self._lock:
            return NetworkCatalog(self._profiles)

    def add_wifi_profile(self, data: Mapping[str, Any]) -> WifiProfile:
        if not isinstance(data, Mapping):
            raise ValueError("Wi-Fi profile must be provided as a mapping")
        profile = WifiProfile.from_dict({**dict(data), "id": data.get("id") or generate_profile_id()})
        with self._lock:
            profiles = [*self._profiles, profile]
            self._validate_profiles(profiles, self._accounts)
            self._profiles = profiles
            self._save()
        return profile

    def update_wifi_profile(self, profile_id: str, data: Mapping[str, Any]) -> WifiProfile:
        with self._lock:
            existing = next((item for item in self._profiles if item.id == profile_id), None)
            if existing is None:
                raise KeyError(profile_id)
            profile = WifiProfile.from_dict({**existing.to_dict(), **dict(data), "id": existing.id})
            profiles = [profile if item.id == profile_id else item for item in self._profiles]
            self._validate_profiles(profiles, self._accounts)
            self._profiles = profiles
            self._save()
        return profile

    def remove_wifi_profile(self, profile_id: str) -> None:
        with self._lock:
            if not any(item.id == profile_id for item in self._profiles):
                raise KeyError(profile_id)
            self._profiles = [item for item in self._profiles if item.id != profile_id]
            self._save()


__all__ = [
    "Account",
    "AppSettings",
    "ConfigManager",
    "DEFAULT_SETTINGS",
    "MIN_POLLING_INTERVAL",
]
