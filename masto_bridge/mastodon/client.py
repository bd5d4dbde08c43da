"""
Mastodon REST client.

Thin aiohttp wrapper around the two endpoints the bridge needs:

    POST /api/v1/statuses        - publish a status
    GET  /api/v1/notifications   - latest notifications for the account

Errors are raised as MastodonApiError with the API's own ``error`` text as
the message, so callers can show it to users as-is.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from masto_bridge.core.types import NotificationKind, RemoteNotification

logger = logging.getLogger(__name__)


class MastodonApiError(Exception):
    """Raised when Mastodon API calls fail"""
    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


# ============================================================================
# Pydantic Models for API Payloads
# ============================================================================

class MastodonAccount(BaseModel):
    id: str
    acct: str
    username: Optional[str] = None
    display_name: Optional[str] = None

    class Config:
        extra = "allow"


class MastodonStatus(BaseModel):
    id: str
    url: Optional[str] = None
    uri: Optional[str] = None
    content: str = ""

    class Config:
        extra = "allow"

    @property
    def link(self) -> str:
        # Remote or unlisted statuses may not carry a web url
        return self.url or self.uri or ""


class MastodonNotification(BaseModel):
    id: str
    type: str
    account: MastodonAccount
    status: Optional[MastodonStatus] = None
    created_at: Optional[str] = None

    class Config:
        extra = "allow"

    def to_remote(self) -> RemoteNotification:
        return RemoteNotification(
            kind=NotificationKind.parse(self.type),
            actor_handle=self.account.acct,
            status_body=self.status.content if self.status else None,
        )


class MastodonClient:
    """Authenticated client for a single Mastodon account."""

    def __init__(self, api_url: str, access_token: str, timeout: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.api_url = api_url.rstrip("/")
        self._access_token = access_token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.api_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, headers=self._headers(), **kwargs) as response:
                if response.status >= 400:
                    body = await response.text()
                    message = _error_message(response.status, body)
                    logger.warning("Mastodon API error", extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status,
                        "error": message,
                    })
                    raise MastodonApiError(message, response.status, body[:500])
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.warning("Mastodon request failed", extra={"method": method, "path": path, "error": str(e)})
            raise MastodonApiError(str(e) or e.__class__.__name__)
        except asyncio.TimeoutError:
            raise MastodonApiError("request timed out")

    async def create_status(self, text: str) -> MastodonStatus:
        """Publish ``text`` as a new public status"""
        data = await self._request("POST", "/api/v1/statuses", json={"status": text})
        try:
            status = MastodonStatus(**data)
        except (TypeError, ValidationError) as e:
            raise MastodonApiError(f"unexpected response from Mastodon: {e}")
        logger.info("Posted status", extra={"status_id": status.id, "url": status.link})
        return status

    async def list_notifications(self, limit: int = 20) -> List[RemoteNotification]:
        """Most recent notifications, newest first"""
        data = await self._request("GET", "/api/v1/notifications", params={"limit": str(limit)})
        if not isinstance(data, list):
            raise MastodonApiError("unexpected response from Mastodon: expected a list")

        notifications: List[RemoteNotification] = []
        for item in data:
            try:
                notifications.append(MastodonNotification(**item).to_remote())
            except (TypeError, ValidationError) as e:
                logger.warning("Skipping malformed notification", extra={"error": str(e)})
        logger.debug("Fetched notifications", extra={"count": len(notifications)})
        return notifications

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def _error_message(status: int, body: str) -> str:
    """Pull the human readable ``error`` field out of an API error body"""
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return f"HTTP {status}"
