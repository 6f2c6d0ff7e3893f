"""HTTP client for the search/indexing backend.

Every call returns a :class:`CallResult`; nothing raised by httpx crosses this
module. Protected calls need a token in the caller's :class:`Session` and
clear it when the backend answers 401/403.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import anyio
import httpx

from .config import Config
from .credentials import Session

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = {401, 403}


class CallStatus(str, Enum):
    OK = "ok"
    NO_CREDENTIAL = "no_credential"
    AUTH_FAILURE = "auth_failure"
    ERROR = "error"


@dataclass
class CallResult:
    status: CallStatus
    payload: Any = None
    message: Optional[str] = None
    status_code: Optional[int] = None
    body: Optional[str] = None  # raw response text, kept for forwarding

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.OK

    @property
    def needs_auth(self) -> bool:
        return self.status in (CallStatus.NO_CREDENTIAL, CallStatus.AUTH_FAILURE)


def no_credential_message(login_url: str) -> str:
    return (
        "No backend token is set for this session. "
        f"Log in at {login_url} to obtain one, then send: /set-token <token>"
    )


def auth_failure_message(login_url: str) -> str:
    return (
        "The backend token has expired or is invalid and was cleared. "
        f"Log in at {login_url} to obtain a new one, then send: /set-token <token>"
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
    text = response.text.strip()
    return text or f"Backend responded with status {response.status_code}"


class BackendClient:
    def __init__(self, cfg: Config, http: httpx.AsyncClient | None = None):
        self.cfg = cfg
        headers = {}
        if cfg.mcp_secret_token:
            headers["X-MCP-Token"] = cfg.mcp_secret_token
        self._http = http or httpx.AsyncClient(timeout=cfg.request_timeout)
        self._static_headers = headers

    @property
    def login_url(self) -> str:
        return self.cfg.login_url

    def _url(self, path: str) -> str:
        return f"{self.cfg.backend_url.rstrip('/')}{path}"

    async def call(
        self,
        session: Session,
        method: str,
        path: str,
        json: Dict[str, Any] | None = None,
    ) -> CallResult:
        """Perform a call on behalf of ``session``.

        Without a token no request is made at all.
        """
        if not session.has_token():
            logger.info("No backend token, skipping %s %s", method, path)
            return CallResult(
                CallStatus.NO_CREDENTIAL, message=no_credential_message(self.login_url)
            )

        result = await self._send(method, path, json, session.auth_header())
        if result.status_code in AUTH_FAILURE_STATUSES:
            logger.warning(
                "Backend rejected token (%s) on %s %s, clearing it",
                result.status_code,
                method,
                path,
            )
            session.clear_token()
            return CallResult(
                CallStatus.AUTH_FAILURE,
                message=auth_failure_message(self.login_url),
                status_code=result.status_code,
                body=result.body,
            )
        return result

    async def call_anonymous(
        self, method: str, path: str, json: Dict[str, Any] | None = None
    ) -> CallResult:
        """Call with the static shared header only, no session credential."""
        return await self._send(method, path, json, {})

    async def health(self) -> CallResult:
        return await self.call_anonymous("GET", "/health")

    async def _send(
        self,
        method: str,
        path: str,
        json: Dict[str, Any] | None,
        auth: Dict[str, str],
    ) -> CallResult:
        headers = {**self._static_headers, **auth}
        try:
            response = await self._http.request(
                method,
                self._url(path),
                json=json,
                headers=headers,
                timeout=self.cfg.request_timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("Backend %s %s timed out: %s", method, path, e)
            return CallResult(CallStatus.ERROR, message=f"Request timed out: {e}")
        except httpx.HTTPError as e:
            logger.error("Backend %s %s failed: %s", method, path, e)
            return CallResult(CallStatus.ERROR, message=str(e) or type(e).__name__)

        logger.debug("Backend %s %s -> %s", method, path, response.status_code)

        if response.is_error:
            return CallResult(
                CallStatus.ERROR,
                message=_error_message(response),
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            return CallResult(
                CallStatus.ERROR,
                message=f"Malformed backend response: {e}",
                status_code=response.status_code,
                body=response.text,
            )
        return CallResult(
            CallStatus.OK,
            payload=payload,
            status_code=response.status_code,
            body=response.text,
        )

    async def aclose(self) -> None:
        await self._http.aclose()


async def probe_backend(client: BackendClient, retries: int, delay: float, sleep=None) -> bool:
    """Check backend liveness at start-up; only logs, never raises."""
    sleep = sleep or anyio.sleep
    for attempt in range(1, retries + 1):
        result = await client.health()
        if result.ok and isinstance(result.payload, dict) and result.payload.get("success"):
            logger.info("Connected to backend at %s", client.cfg.backend_url)
            return True
        logger.error(
            "Failed to connect to backend (attempt %d/%d): %s",
            attempt,
            retries,
            result.message or "unhealthy",
        )
        if attempt < retries:
            await sleep(delay)
    logger.error("Could not establish connection to backend after all retries")
    return False
