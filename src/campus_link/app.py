"""FastAPI application wiring together the campus-link services."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .activity_log import ActivityLog
from .auth import AuthError, AuthService
from .config import ConfigManager
from .events import EVENT_TYPES, EventBus
from .network import ConnectivityProbe
from .supervisor import ConnectionSupervisor
from .version import APP_VERSION
from .wifi import NMCLIAdapter, WifiAdapter, WifiError

DEFAULT_CONFIG_PATH = Path("data/config.json")


class LoginPayload(BaseModel):
    account_id: str | None = None


class AccountPayload(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    username: str
    password: str
    server_url: str | None = None
    isp: str = "campus"


class AccountUpdatePayload(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    username: str | None = None
    password: str | None = None
    server_url: str | None = None
    isp: str | None = None


class WifiProfilePayload(BaseModel):
    ssid: str
    password: str = ""
    priority: int = 0
    auto_connect: bool = True
    requires_auth: bool = True
    linked_account_id: str | None = None


class WifiProfileUpdatePayload(BaseModel):
    ssid: str | None = None
    password: str | None = None
    priority: int | None = None
    auto_connect: bool | None = None
    requires_auth: bool | None = None
    linked_account_id: str | None = None


class SettingsPayload(BaseModel):
    polling_interval: float | None = Field(default=None, gt=0.0)
    auto_reconnect: bool | None = None
    max_retries: int | None = Field(default=None, ge=0)
    enable_heartbeat: bool | None = None
    ssid_check_interval: float | None = Field(default=None, gt=0.0)


def _default_adapter() -> WifiAdapter | None:
    if os.getenv("CAMPUS_LINK_DISABLE_WIFI"):
        return None
    if shutil.which("nmcli") is None:
        return None
    return NMCLIAdapter(os.getenv("CAMPUS_LINK_WIFI_INTERFACE") or None)


def create_app(
    config_path: Path | str | None = None,
    *,
    adapter: WifiAdapter | None = None,
    auth_service: AuthService | None = None,
    probe: ConnectivityProbe | None = None,
) -> FastAPI:
    app = FastAPI(title="campus-link", version=APP_VERSION)

    logger = logging.getLogger(__name__)

    if config_path is None:
        config_path = os.getenv("CAMPUS_LINK_CONFIG") or DEFAULT_CONFIG_PATH
    config_manager = ConfigManager(Path(config_path))

    activity_log_path = os.getenv("CAMPUS_LINK_ACTIVITY_LOG")
    activity_log = ActivityLog(activity_log_path or None)
    events = EventBus()
    if adapter is None:
        adapter = _default_adapter()
    supervisor = ConnectionSupervisor(
        config_manager,
        adapter=adapter,
        auth_service=auth_service,
        probe=probe,
        events=events,
        activity_log=activity_log,
    )
    app.state.supervisor = supervisor

    @app.on_event("startup")
    async def startup() -> None:
        try:
            await supervisor.start()
        except Exception:  # pragma: no cover - startup errors are only logged
            logger.exception("Failed to start connection services")

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await supervisor.aclose()

    # ------------------------------ status ------------------------------
    @app.get("/api/status")
    async def get_status(refresh: bool = False) -> dict[str, object | None]:
        status = supervisor.last_status
        if refresh or status is None:
            status = await supervisor.refresh_status()
        payload = status.to_dict()
        payload["reconnecting"] = supervisor.reconnect.is_reconnecting
        return payload

    @app.post("/api/login")
    async def login(payload: LoginPayload | None = None) -> dict[str, object | None]:
        account_id = payload.account_id if payload is not None else None
        try:
            result = await supervisor.login(account_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Account not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except WifiError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except AuthError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return result.to_dict()

    @app.post("/api/logout")
    async def logout() -> dict[str, object]:
        try:
            result = await supervisor.logout()
        except WifiError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except AuthError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return result.to_dict()

    @app.get("/api/reconnect")
    async def get_reconnect_state() -> dict[str, object | None]:
        failover = supervisor.failover
        last_failover = failover.last_result if failover is not None else None
        return {
            "state": supervisor.reconnect.state.value,
            "options": supervisor.reconnect.options.to_dict(),
            "failover_enabled": failover is not None,
            "failover_running": bool(failover and failover.is_running),
            "last_failover": last_failover.to_dict() if last_failover else None,
        }

    @app.post("/api/reconnect")
    async def trigger_reconnect() -> dict[str, bool]:
        started = await supervisor.reconnect.trigger_reconnect()
        return {"started": started}

    # ------------------------------ accounts ------------------------------
    def _account_summary() -> dict[str, object]:
        current = config_manager.get_current_account()
        return {
            "accounts": [
                account.to_dict(include_password=False)
                for account in config_manager.list_accounts()
            ],
            "current_account_id": current.id if current else None,
        }

    @app.get("/api/accounts")
    async def list_accounts() -> dict[str, object]:
        return _account_summary()

    @app.post("/api/accounts")
    async def add_account(payload: AccountPayload) -> dict[str, object]:
        try:
            account = config_manager.add_account(payload.model_dump(exclude_none=True))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return account.to_dict(include_password=False)

    @app.put("/api/accounts/{account_id}")
    async def update_account(account_id: str, payload: AccountUpdatePayload) -> dict[str, object]:
        try:
            account = config_manager.update_account(
                account_id, payload.model_dump(exclude_none=True)
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Account not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return account.to_dict(include_password=False)

    @app.delete("/api/accounts/{account_id}")
    async def remove_account(account_id: str) -> dict[str, object]:
        try:
            config_manager.remove_account(account_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Account not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _account_summary()

    @app.post("/api/accounts/{account_id}/select")
    async def select_account(account_id: str) -> dict[str, object]:
        try:
            config_manager.set_current_account(account_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Account not found") from exc
        return _account_summary()

    # ---------------------------- Wi-Fi profiles ---------------------------
    def _profiles_payload() -> dict[str, object]:
        return {
            "profiles": [
                profile.to_dict(include_password=False)
                for profile in config_manager.list_wifi_profiles()
            ]
        }

    @app.get("/api/wifi/profiles")
    async def list_wifi_profiles() -> dict[str, object]:
        return _profiles_payload()

    @app.post("/api/wifi/profiles")
    async def add_wifi_profile(payload: WifiProfilePayload) -> dict[str, object | None]:
        try:
            profile = config_manager.add_wifi_profile(payload.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        supervisor.refresh_catalog()
        return profile.to_dict(include_password=False)

    @app.put("/api/wifi/profiles/{profile_id}")
    async def update_wifi_profile(
        profile_id: str, payload: WifiProfileUpdatePayload
    ) -> dict[str, object | None]:
        try:
            profile = config_manager.update_wifi_profile(
                profile_id, payload.model_dump(exclude_unset=True)
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Wi-Fi profile not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        supervisor.refresh_catalog()
        return profile.to_dict(include_password=False)

    @app.delete("/api/wifi/profiles/{profile_id}")
    async def remove_wifi_profile(profile_id: str) -> dict[str, object]:
        try:
            config_manager.remove_wifi_profile(profile_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Wi-Fi profile not found") from exc
        supervisor.refresh_catalog()
        return _profiles_payload()

    # ------------------------------ settings ------------------------------
    @app.get("/api/settings")
    async def get_settings() -> dict[str, object]:
        return config_manager.get_settings().to_dict()

    @app.post("/api/settings")
    async def update_settings(payload: SettingsPayload) -> dict[str, object]:
        try:
            settings = config_manager.update_settings(payload.model_dump(exclude_none=True))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await supervisor.apply_settings(settings)
        return settings.to_dict()

    # --------------------------- logs and events ---------------------------
    @app.get("/api/logs")
    async def get_logs(
        limit: int = 100, category: str | None = None, level: str | None = None
    ) -> dict[str, object]:
        entries = activity_log.tail(limit, category=category, level=level)
        return {"entries": [entry.to_dict() for entry in entries]}

    @app.get("/api/events")
    async def get_events(limit: int = 50, name: str | None = None) -> dict[str, object]:
        if name is not None and name not in EVENT_TYPES:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {name}")
        return {"events": [event.to_dict() for event in events.recent(limit, name=name)]}

    return app


__all__ = ["create_app"]
