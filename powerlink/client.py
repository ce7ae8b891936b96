"""
PowerLink — HTTP API client

Thin wrapper over an httpx.Client for scripts and integration use. The access
token travels in the Authorization header; the refresh token stays in the
client's cookie jar, exactly as a browser holds it.

Retry contract on 401:
  1. call POST /auth/refresh once (cookie only)
  2. if it yields a new access token, replay the original request once
  3. a second 401, or a failed refresh, is returned to the caller as-is
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from powerlink.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
API_PREFIX = "/api"

# Credential exchanges answer 401 for bad input, not for a stale session
_NO_REFRESH_PATHS = frozenset({"/auth/login", "/auth/register", "/auth/refresh"})


class APIError(Exception):
    """A non-2xx response, carrying the server's error envelope."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details
        super().__init__(f"{status_code} {code or 'ERROR'}: {message}")

    @classmethod
    def from_response(cls, response: httpx.Response) -> "APIError":
        error: Dict[str, Any] = {}
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
        return cls(
            response.status_code,
            error.get("message") or f"Request failed ({response.status_code})",
            error.get("code"),
            error.get("details"),
        )


class PowerLinkClient:
    """Session-aware client: holds the access token, refreshes it on 401."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        http: Optional[httpx.Client] = None,
        api_prefix: str = API_PREFIX,
        timeout: float = 10.0,
    ) -> None:
        self._owns_http = http is None
        self.http = http if http is not None else httpx.Client(base_url=base_url, timeout=timeout)
        self.api_prefix = api_prefix.rstrip("/")
        self.access_token: Optional[str] = None

    def __enter__(self) -> "PowerLinkClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    # ─── Transport ──────────────────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        retry: bool = True,
    ) -> httpx.Response:
        """Send one request; on 401 refresh once and replay once."""
        headers: Dict[str, str] = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        response = self.http.request(
            method, self._url(path), json=json, params=params, headers=headers
        )

        if response.status_code != 401 or not retry or path in _NO_REFRESH_PATHS:
            return response
        if self.refresh() is None:
            return response

        logger.debug("Replaying %s %s with a refreshed access token", method, path)
        return self.request(method, path, json=json, params=params, retry=False)

    def refresh(self) -> Optional[str]:
        """Mint a new access token from the refresh cookie. None if refused."""
        try:
            response = self.http.post(self._url("/auth/refresh"))
        except httpx.HTTPError as exc:
            logger.warning("Token refresh failed: %s", exc)
            return None
        if response.status_code != 200:
            return None
        token = response.json().get("accessToken")
        if token:
            self.access_token = token
        return token

    def call(self, method: str, path: str, **kwargs: Any) -> Any:
        """request() that returns the decoded body and raises APIError on failure."""
        response = self.request(method, path, **kwargs)
        if response.is_error:
            raise APIError.from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ─── Session ────────────────────────────────────────────────────────────

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        body = self.call(
            "POST", "/auth/register", json={"name": name, "email": email, "password": password}
        )
        self.access_token = body["accessToken"]
        return body["user"]

    def login(
        self, email: str, password: str, two_factor_token: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"email": email, "password": password}
        if two_factor_token:
            payload["twoFactorToken"] = two_factor_token
        body = self.call("POST", "/auth/login", json=payload)
        self.access_token = body["accessToken"]
        return body["user"]

    def logout(self) -> None:
        self.call("POST", "/auth/logout")
        self.access_token = None

    def me(self) -> Dict[str, Any]:
        return self.call("GET", "/auth/me")["user"]

    # ─── Resources ──────────────────────────────────────────────────────────

    def get(self, path: str, **params: Any) -> Any:
        clean = {k: v for k, v in params.items() if v is not None and v != ""}
        return self.call("GET", path, params=clean or None)

    def post(self, path: str, data: Dict[str, Any]) -> Any:
        return self.call("POST", path, json=data)

    def put(self, path: str, data: Dict[str, Any]) -> Any:
        return self.call("PUT", path, json=data)

    def delete(self, path: str) -> Any:
        return self.call("DELETE", path)
