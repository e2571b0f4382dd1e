"""Client for the campus captive-portal (ePortal) login server."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import quote

import httpx

DEFAULT_SERVER_URL = "http://10.10.102.50:801"
DEFAULT_AC_IP = "10.10.102.49"
DEFAULT_MAC = "000000000000"
JSONP_CALLBACK = "dr1009"

ISP_SUFFIXES: dict[str, str] = {
    "campus": "",
    "cmcc": "@cmcc",
    "cucc": "@cucc",
    "ctcc": "@ctcc",
}

_JSONP_PATTERN = re.compile(rf"{JSONP_CALLBACK}\((.*)\)", re.DOTALL)


class AuthError(RuntimeError):
    """Raised when the portal cannot be reached or answers unexpectedly."""


@dataclass(frozen=True, slots=True)
class LoginConfig:
    """Everything the portal needs to authenticate one device."""

    server_url: str
    user_account: str
    user_password: str
    wlan_user_ip: str
    isp: str = "campus"
    wlan_user_ipv6: str | None = None
    wlan_user_mac: str | None = None


@dataclass(frozen=True, slots=True)
class LoginResult:
    success: bool
    message: str
    code: int | str | None = None
    raw_response: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {"success": self.success, "message": self.message, "code": self.code}


@dataclass(frozen=True, slots=True)
class LogoutResult:
    success: bool
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"success": self.success, "message": self.message}


def _encode(value: str) -> str:
    return quote(value, safe="")


def _query_string(params: dict[str, object | None]) -> str:
    return "&".join(
        f"{_encode(key)}={_encode(str(value))}"
        for key, value in params.items()
        if value is not None
    )


class AuthService:
    """Log devices in and out of the portal over plain HTTP GET requests."""

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._server_url = self._clean_url(server_url)
        self._timeout = timeout
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _clean_url(url: str) -> str:
        if not isinstance(url, str) or not url.strip():
            raise ValueError("Server URL must be a non-empty string")
        return url.strip().rstrip("/")

    @property
    def server_url(self) -> str:
        return self._server_url

    def set_server_url(self, url: str) -> None:
        cleaned = self._clean_url(url)
        if cleaned != self._server_url:
            self._logger.info("Portal server set to %s", cleaned)
        self._server_url = cleaned

    @staticmethod
    def build_user_account(username: str, isp: str) -> str:
        return username + ISP_SUFFIXES.get(isp, "")

    def build_login_url(self, config: LoginConfig, *, timestamp: int | None = None) -> str:
        # The portal reads the IPv6 address pre-encoded, so it is encoded
        # twice once the query string is assembled.
        params: dict[str, object | None] = {
            "callback": JSONP_CALLBACK,
            "login_method": 1,
            "user_account": self.build_user_account(config.user_account, config.isp),
            "user_password": config.user_password,
            "wlan_user_ip": config.wlan_user_ip,
            "wlan_user_ipv6": _encode(config.wlan_user_ipv6) if config.wlan_user_ipv6 else None,
            "wlan_user_mac": config.wlan_user_mac or DEFAULT_MAC,
            "wlan_ac_ip": DEFAULT_AC_IP,
            "wlan_ac_name": "",
            "jsVersion": "4.1.3",
            "terminal_type": 3,
            "lang": "zh-cn",
            "v": timestamp if timestamp is not None else int(time.time() * 1000),
        }
        server = self._clean_url(config.server_url) if config.server_url else self._server_url
        return f"{server}/eportal/portal/login?{_query_string(params)}"

    def build_logout_url(self, wlan_user_ip: str, *, timestamp: int | None = None) -> str:
        params: dict[str, object | None] = {
            "callback": JSONP_CALLBACK,
            "wlan_user_ip": wlan_user_ip,
            "wlan_user_mac": DEFAULT_MAC,
            "v": timestamp if timestamp is not None else int(time.time() * 1000),
        }
        return f"{self._server_url}/eportal/portal/logout?{_query_string(params)}"

    @staticmethod
    def parse_login_response(text: str) -> LoginResult:
        """Decode ``dr1009({...})`` JSONP responses."""

        match = _JSONP_PATTERN.search(text or "")
        if not match or not match.group(1).strip():
            return LoginResult(False, "Invalid portal response", raw_response=text)
        try:
            payload = json.loads(match.group(1))
        except ValueError:
            return LoginResult(False, "Unable to parse portal response", raw_response=text)
        if not isinstance(payload, dict):
            return LoginResult(False, "Unable to parse portal response", raw_response=text)
        code = payload.get("result")
        success = code in (1, "1")
        message = payload.get("msg") or ("Login succeeded" if success else "Login failed")
        return LoginResult(success, str(message), code=code, raw_response=text)

    async def _get(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise AuthError(f"Portal request timed out after {self._timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise AuthError(f"Portal request failed: {exc}") from exc
        return response.text

    async def login(self, config: LoginConfig) -> LoginResult:
        account = self.build_user_account(config.user_account, config.isp)
        self._logger.info(
            "Logging in %s (isp=%s, ip=%s) via %s",
            account,
            config.isp,
            config.wlan_user_ip,
            config.server_url or self._server_url,
        )
        text = await self._get(self.build_login_url(config))
        result = self.parse_login_response(text)
        if result.success:
            self._logger.info("Login succeeded for %s: %s", account, result.message)
        else:
            self._logger.warning(
                "Login rejected for %s: %s (code=%s)", account, result.message, result.code
            )
        return result

    async def logout(self, wlan_user_ip: str) -> LogoutResult:
        self._logger.info("Logging out %s via %s", wlan_user_ip, self._server_url)
        text = await self._get(self.build_logout_url(wlan_user_ip))
        parsed = self.parse_login_response(text)
        success = parsed.success or 'result":1' in text
        if success:
            self._logger.info("Logout succeeded for %s", wlan_user_ip)
        else:
            self._logger.warning("Logout failed for %s", wlan_user_ip)
        return LogoutResult(success, "Logout succeeded" if success else "Logout failed")


__all__ = [
    "AuthError",
    "AuthService",
    "DEFAULT_SERVER_URL",
    "ISP_SUFFIXES",
    "LoginConfig",
    "LoginResult",
    "LogoutResult",
]
