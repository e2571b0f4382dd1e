"""Read-only view over the configured Wi-Fi profiles."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping


def generate_profile_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True, slots=True)
class WifiProfile:
    """A configured Wi-Fi network. Lower ``priority`` values are tried first."""

    id: str
    ssid: str
    password: str = ""
    priority: int = 0
    auto_connect: bool = True
    requires_auth: bool = True
    linked_account_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Wi-Fi profile id must be a non-empty string")
        if not isinstance(self.ssid, str) or not self.ssid.strip():
            raise ValueError("Wi-Fi SSID must be a non-empty string")
        if not isinstance(self.password, str):
            raise ValueError("Wi-Fi password must be a string")
        if isinstance(self.priority, bool):
            raise ValueError("Wi-Fi priority must be an integer")
        try:
            priority = int(self.priority)
        except (TypeError, ValueError) as exc:
            raise ValueError("Wi-Fi priority must be an integer") from exc
        if not isinstance(self.auto_connect, bool):
            raise ValueError("auto_connect must be a boolean")
        if not isinstance(self.requires_auth, bool):
            raise ValueError("requires_auth must be a boolean")
        linked = self.linked_account_id
        if isinstance(linked, str):
            linked = linked.strip() or None
        elif linked is not None:
            raise ValueError("linked_account_id must be a string")
        if self.requires_auth and linked is None:
            raise ValueError("Wi-Fi networks requiring authentication must link an account")
        object.__setattr__(self, "id", self.id.strip())
        object.__setattr__(self, "ssid", self.ssid.strip())
        object.__setattr__(self, "priority", priority)
        object.__setattr__(self, "linked_account_id", linked)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WifiProfile":
        if not isinstance(payload, Mapping):
            raise ValueError("Wi-Fi profile must be an object")
        return cls(
            id=payload.get("id") or generate_profile_id(),
            ssid=payload.get("ssid", ""),
            password=payload.get("password") or "",
            priority=payload.get("priority", 0),
            auto_connect=payload.get("auto_connect", True),
            requires_auth=payload.get("requires_auth", True),
            linked_account_id=payload.get("linked_account_id"),
        )

    def to_dict(self, *, include_password: bool = True) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "id": self.id,
            "ssid": self.ssid,
            "priority": self.priority,
            "auto_connect": self.auto_connect,
            "requires_auth": self.requires_auth,
            "linked_account_id": self.linked_account_id,
        }
        if include_password:
            payload["password"] = self.password
        return payload


class NetworkCatalog:
    """Immutable snapshot of Wi-Fi profiles with priority-ordered queries.

    Sorting is stable, so profiles sharing a priority keep their configured
    order. Edits produce a new catalog via :meth:`replace`.
    """

    __slots__ = ("_profiles",)

    def __init__(self, profiles: Iterable[WifiProfile] = ()) -> None:
        self._profiles: tuple[WifiProfile, ...] = tuple(profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self):
        return iter(self._profiles)

    @property
    def profiles(self) -> tuple[WifiProfile, ...]:
        return self._profiles

    def get(self, ssid: str | None) -> WifiProfile | None:
        if not isinstance(ssid, str):
            return None
        wanted = ssid.strip()
        for profile in self._profiles:
            if profile.ssid == wanted:
                return profile
        return None

    def should_auto_connect(self, ssid: str | None) -> bool:
        profile = self.get(ssid)
        return bool(profile and profile.auto_connect)

    def auto_connect_profiles(self) -> list[WifiProfile]:
        return [profile for profile in self._profiles if profile.auto_connect]

    def sorted_by_priority(self) -> list[WifiProfile]:
        return sorted(self._profiles, key=lambda profile: profile.priority)

    def failover_candidates(self, exclude: str | None = None) -> list[WifiProfile]:
        """Return auto-connect profiles other than ``exclude``, best first."""

        return [
            profile
            for profile in self.sorted_by_priority()
            if profile.auto_connect and profile.ssid != exclude
        ]

    def replace(self, profiles: Iterable[WifiProfile]) -> "NetworkCatalog":
        return NetworkCatalog(profiles)


__all__ = ["NetworkCatalog", "WifiProfile", "generate_profile_id"]
