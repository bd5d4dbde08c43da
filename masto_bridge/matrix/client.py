"""
Matrix side of the bridge.

Outbound calls run as the appservice bot: a nio AsyncClient carrying the
registration's as_token handles joins and sends, and the appservice-only
registration endpoint (which nio does not wrap) is called with aiohttp.
"""
import logging
from typing import Any, Dict, Optional

import aiohttp
from nio import AsyncClient, JoinError, RoomSendError

logger = logging.getLogger(__name__)


class MatrixClientError(Exception):
    """Raised when Matrix client operations fail"""
    def __init__(self, message: str, errcode: Optional[str] = None):
        super().__init__(message)
        self.errcode = errcode


def localpart(user_id: str) -> str:
    value = user_id or ""
    if value.startswith("@"):
        value = value[1:]
    return value.split(":", 1)[0]


class MatrixTransport:
    """Chat transport used by the router: send, join and register."""

    def __init__(
        self,
        homeserver_url: str,
        as_token: str,
        user_id: str,
        timeout: float = 30.0,
        client: Optional[AsyncClient] = None,
    ):
        self.homeserver_url = homeserver_url.rstrip("/")
        self.user_id = user_id
        self._as_token = as_token
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        if client is None:
            client = AsyncClient(homeserver=self.homeserver_url, user=user_id)
            client.access_token = as_token
            client.user_id = user_id
        self.client = client

    async def send_text(self, room_id: str, text: str) -> str:
        """Send a plain m.text message, returning its event id"""
        response = await self.client.room_send(
            room_id=room_id,
            message_type="m.room.message",
            content={"msgtype": "m.text", "body": text},
        )
        if isinstance(response, RoomSendError):
            logger.error("Failed to send message", extra={
                "room_id": room_id,
                "error_message": response.message,
                "status_code": response.status_code,
            })
            raise MatrixClientError(f"Failed to send message to {room_id}: {response.message}", response.status_code)

        event_id = getattr(response, "event_id", "")
        logger.debug("Message sent", extra={"room_id": room_id, "event_id": event_id})
        return event_id

    async def join_room(self, room_id: str) -> str:
        logger.info("Attempting to join room", extra={"room": room_id})
        response = await self.client.join(room_id)

        if isinstance(response, JoinError):
            error_message = getattr(response, "message", str(response))
            status_code = getattr(response, "status_code", None)
            logger.error("Failed to join room", extra={
                "room": room_id,
                "error_message": error_message,
                "status_code": status_code,
            })
            if status_code == "M_FORBIDDEN":
                logger.warning("Bot not allowed to join room", extra={
                    "room": room_id,
                    "details": "The bot may not be invited. Invite it or make the room public"
                })
            raise MatrixClientError(f"Failed to join room {room_id}: {error_message}", status_code)

        logger.info("Successfully joined room", extra={"room_id": response.room_id})
        return response.room_id

    async def ensure_registered(self, user_id: Optional[str] = None) -> bool:
        """
        Register a user in the appservice namespace.

        Returns True if the user was created, False if it already existed.
        """
        user_id = user_id or self.user_id
        url = f"{self.homeserver_url}/_matrix/client/v3/register"
        payload = {"type": "m.login.application_service", "username": localpart(user_id)}
        headers = {"Authorization": f"Bearer {self._as_token}"}

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(url, json=payload, headers=headers) as response:
                    if response.status == 200:
                        logger.info("Registered bridge user", extra={"user_id": user_id})
                        return True

                    body = await _json_or_empty(response)
                    errcode = body.get("errcode")
                    if errcode == "M_USER_IN_USE":
                        logger.debug("Bridge user already registered", extra={"user_id": user_id})
                        return False

                    error = body.get("error") or f"HTTP {response.status}"
                    logger.error("Failed to register user", extra={
                        "user_id": user_id,
                        "status": response.status,
                        "errcode": errcode,
                    })
                    raise MatrixClientError(f"Failed to register {user_id}: {error}", errcode)
        except aiohttp.ClientError as e:
            raise MatrixClientError(f"Failed to register {user_id}: {e}")

    async def close(self) -> None:
        await self.client.close()


async def _json_or_empty(response: aiohttp.ClientResponse) -> Dict[str, Any]:
    try:
        data = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
