"""
HTTP clients for the captcha service and the authentication backend.

Every request has a short timeout; on timeout or connection failure a
``NetworkOrTimeout`` is raised so the caller can offer a retry.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import httpx

logger = logging.getLogger("captcha_client")

DEFAULT_TIMEOUT = 2.5  # seconds

STATUS_MESSAGES = {
    400: "Invalid data.",
    401: "Wrong email or password.",
    403: "Access denied.",
    404: "Service not found.",
    409: "Email already in use.",
    500: "The server is having trouble. Please try again later.",
    502: "The server is having trouble. Please try again later.",
    503: "The server is having trouble. Please try again later.",
    504: "The server is having trouble. Please try again later.",
}


class CaptchaClientError(Exception):
    def __init__(self, message: str, user_message: str, status: Optional[int] = None):
        super().__init__(message)
        self.user_message = user_message
        self.status = status


class NetworkOrTimeout(CaptchaClientError):
    pass


class _BaseAPI:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json_body, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkOrTimeout(
                "Request timeout", "Connection too slow. Please try again."
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkOrTimeout(
                str(exc), "Cannot reach the server. Please try again."
            ) from exc

        if response.is_error:
            try:
                body = response.json()
                detail = body.get("error") or body.get("detail")
            except (ValueError, AttributeError):
                detail = None
            raise CaptchaClientError(
                detail or f"HTTP {response.status_code}",
                STATUS_MESSAGES.get(response.status_code, "Something went wrong. Please try again."),
                response.status_code,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = await self._send(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise CaptchaClientError(
                "Malformed JSON response", "Something went wrong. Please try again."
            ) from exc


class CaptchaAPI(_BaseAPI):
    """Client for the captcha service (``/api/captcha/...``)."""

    async def generate(self) -> dict[str, Any]:
        data = await self._json("GET", "/api/captcha/generate")
        logger.info("🔄 Captcha loaded: session=%s", data.get("sessionId"))
        return data

    async def verify(
        self,
        session_id: str,
        position_x: float,
        duration: float,
        drag_path: Optional[list[dict[str, float]]] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "sessionId": session_id,
            "positionX": position_x,
            "duration": duration,
        }
        if drag_path is not None:
            body["dragPath"] = drag_path
        return await self._json("POST", "/api/captcha/verify", json_body=body)

    async def image(self, url: str) -> bytes:
        """Fetch an image by the path the generate payload returned."""
        response = await self._send("GET", url)
        return response.content


# ──────────────────────────────────────────────
# Authentication backend
# ──────────────────────────────────────────────
class TokenStorage:
    """In-memory stand-in for the device's key/value storage."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, *keys: str) -> None:
        for key in keys:
            self._items.pop(key, None)


class FileTokenStorage(TokenStorage):
    """TokenStorage persisted as a small JSON file."""

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._items = json.loads(self.path.read_text(encoding="utf-8"))

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def remove(self, *keys: str) -> None:
        super().remove(*keys)
        self._flush()


class AuthAPI(_BaseAPI):
    """Client for the authentication backend (``/api/...``)."""

    def __init__(self, base_url: str, storage: Optional[TokenStorage] = None, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.storage = storage or TokenStorage()

    def _remember(self, data: dict[str, Any]) -> None:
        if data.get("token") and data.get("user"):
            self.storage.set("token", data["token"])
            self.storage.set("user", json.dumps(data["user"]))

    async def signup(self, full_name: str, email: str, password: str) -> dict[str, Any]:
        data = await self._json(
            "POST",
            "/api/signup",
            json_body={"fullName": full_name, "email": email, "password": password},
        )
        self._remember(data)
        return data

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Password step; the returned pending token still needs a captcha."""
        data = await self._json(
            "POST", "/api/login", json_body={"email": email, "password": password}
        )
        if data.get("pendingToken"):
            self.storage.set("pendingToken", data["pendingToken"])
        return data

    async def upgrade_token(self, captcha_token: str) -> dict[str, Any]:
        """Exchange a captcha proof plus the pending token for a full session."""
        data = await self._json(
            "POST",
            "/api/auth/upgrade",
            json_body={"captchaToken": captcha_token},
            token=self.storage.get("pendingToken"),
        )
        if data.get("success"):
            self._remember(data)
            self.storage.remove("pendingToken")
        return data

    async def profile(self) -> dict[str, Any]:
        return await self._json("GET", "/api/profile", token=self.storage.get("token"))

    async def logout(self) -> None:
        token = self.storage.get("token")
        self.storage.remove("token", "user")
        try:
            await self._send("POST", "/api/logout", token=token)
        except CaptchaClientError as exc:
            logger.info("Logout call failed: %s", exc)
