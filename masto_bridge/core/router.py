"""
Bridge router: decides what to do with each chat event and poll tick.

    chat event -> filter_event -> interpret -> dispatch -> chat.send_text
    poll tick  ----------------------------->  dispatch -> chat.send_text

Every dispatch produces exactly one RelayResult and exactly one message in
the bridged room. Remote failures are turned into that message; anything
unexpected is logged at the handle_event / poll_tick boundary.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Protocol, TypeVar, Union

from masto_bridge.config import Config
from masto_bridge.core.types import (
    MESSAGE_EVENT_TYPE,
    POLL_TICK,
    ChatEvent,
    Command,
    Help,
    ListNotifications,
    Post,
    RelayResult,
    RemoteNotification,
    Unknown,
    _PollTick,
)
from masto_bridge.mastodon.formatter import format_digest

logger = logging.getLogger(__name__)

T = TypeVar("T")

LATEST_COMMAND = "!latest"
POST_PREFIX = "!masto post "
HELP_COMMAND = "!masto help"

HELP_MESSAGE = (
    "Usage: !masto post <text> posts <text> as a new Mastodon status. "
    "!latest shows your latest Mastodon notifications."
)
UNKNOWN_MESSAGE = "Unknown command. Type !masto help for usage."
FETCH_ERROR_MESSAGE = "Error fetching notifications."


class ChatTransport(Protocol):
    async def send_text(self, room_id: str, text: str) -> Any: ...


class RemoteTransport(Protocol):
    async def create_status(self, text: str) -> Any: ...

    async def list_notifications(self, limit: int = ...) -> List[RemoteNotification]: ...


@dataclass
class BridgeContext:
    """Everything a dispatch cycle needs; read-only after startup."""
    config: Config
    chat: ChatTransport
    remote: RemoteTransport


# ============================================================================
# Event filter and command interpreter
# ============================================================================

def filter_event(event: Union[Dict[str, Any], ChatEvent], config: Config) -> Optional[ChatEvent]:
    """Return the event if it is a text message in the bridged room, else None."""
    if isinstance(event, dict):
        if not event.get("content"):
            return None
        chat_event = ChatEvent.from_matrix(event)
        if chat_event is None:
            return None
    else:
        chat_event = event

    if chat_event.type != MESSAGE_EVENT_TYPE:
        return None
    if chat_event.room_id != config.bridged_room_id:
        return None
    # Our own replies come back through the homeserver too
    if chat_event.sender_id == config.bot_user_id:
        return None
    if config.user_namespace_regex and re.match(config.user_namespace_regex, chat_event.sender_id):
        return None
    return chat_event


def interpret(text: str) -> Command:
    """Parse a message body into a command. Order and tokens are significant."""
    if text.strip() == LATEST_COMMAND:
        return ListNotifications()
    if text.startswith(POST_PREFIX):
        return Post(text[len(POST_PREFIX):].strip())
    if text.strip() == HELP_COMMAND:
        return Help()
    return Unknown(text)


# ============================================================================
# Dispatcher
# ============================================================================

class BridgeRouter:
    def __init__(self, context: BridgeContext):
        self.context = context

    @property
    def config(self) -> Config:
        return self.context.config

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.config.request_timeout)

    async def execute(self, action: Union[Command, _PollTick]) -> RelayResult:
        """Run the remote side of an action and describe the outcome."""
        if isinstance(action, Post):
            return await self._post(action.text)
        if isinstance(action, ListNotifications) or action is POLL_TICK:
            return await self._fetch_digest()
        if isinstance(action, Help):
            return RelayResult(True, HELP_MESSAGE)
        if isinstance(action, Unknown):
            return RelayResult(False, UNKNOWN_MESSAGE)
        raise TypeError(f"Cannot dispatch {action!r}")

    async def _post(self, text: str) -> RelayResult:
        try:
            status = await self._call(self.context.remote.create_status(text))
        except asyncio.TimeoutError:
            logger.error("Timed out posting to Mastodon")
            return RelayResult(False, "Error posting to Mastodon: request timed out")
        except Exception as e:
            logger.error("Error posting to Mastodon", extra={"error": str(e)})
            return RelayResult(False, f"Error posting to Mastodon: {e}")

        url = _status_url(status)
        logger.info("Posted to Mastodon", extra={"url": url})
        return RelayResult(True, f"Posted to Mastodon: {url}")

    async def _fetch_digest(self) -> RelayResult:
        try:
            notifications = await self._call(
                self.context.remote.list_notifications(limit=self.config.notification_limit)
            )
        except Exception as e:
            logger.error("Error fetching notifications", extra={"error": str(e) or e.__class__.__name__})
            return RelayResult(False, FETCH_ERROR_MESSAGE)
        return RelayResult(True, format_digest(notifications))

    async def dispatch(self, action: Union[Command, _PollTick]) -> RelayResult:
        """Execute an action and send its result to the bridged room."""
        result = await self.execute(action)
        await self._call(self.context.chat.send_text(self.config.bridged_room_id, result.human_message))
        return result

    async def handle_event(self, raw_event: Union[Dict[str, Any], ChatEvent]) -> Optional[RelayResult]:
        """Entry point for each inbound chat event."""
        try:
            event = filter_event(raw_event, self.config)
            if event is None:
                return None
            command = interpret(event.body)
            logger.info("Received command", extra={
                "sender": event.sender_id,
                "command": type(command).__name__,
            })
            return await self.dispatch(command)
        except Exception as e:
            logger.error("Unexpected error handling event", extra={"error": str(e)}, exc_info=True)
            return None

    async def poll_tick(self) -> Optional[RelayResult]:
        """Entry point for each notification poller tick."""
        try:
            return await self.dispatch(POLL_TICK)
        except Exception as e:
            logger.error("Unexpected error during notification poll", extra={"error": str(e)}, exc_info=True)
            return None


def _status_url(status: Any) -> str:
    if isinstance(status, dict):
        return status.get("url") or status.get("uri") or ""
    return getattr(status, "link", None) or getattr(status, "url", None) or ""
