#!/usr/bin/env python3
"""
Shared type definitions for the bridge core.

Chat events come in from Matrix, commands are derived from them, Mastodon
notifications come back from the poller and every dispatched action ends in
a RelayResult that is sent to the bridged room.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

# Custom type aliases for our application
RoomId = str
UserId = str

MESSAGE_EVENT_TYPE = "m.room.message"


@dataclass(frozen=True)
class ChatEvent:
    """A Matrix room event reduced to the fields the router looks at."""
    type: str
    room_id: RoomId
    sender_id: UserId
    body: str

    @classmethod
    def from_matrix(cls, raw: Dict[str, Any]) -> Optional["ChatEvent"]:
        """Build from a client-server event dict, None if it has no text body."""
        content = raw.get("content")
        if not isinstance(content, dict):
            return None
        body = content.get("body")
        if not isinstance(body, str):
            return None
        return cls(
            type=raw.get("type", ""),
            room_id=raw.get("room_id", ""),
            sender_id=raw.get("sender", ""),
            body=body,
        )


# ============================================================================
# Commands
# ============================================================================

@dataclass(frozen=True)
class Post:
    text: str


@dataclass(frozen=True)
class ListNotifications:
    pass


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class Unknown:
    raw_text: str


Command = Union[Post, ListNotifications, Help, Unknown]


class _PollTick:
    """Sentinel dispatched by the notification poller."""

    def __repr__(self) -> str:
        return "POLL_TICK"


POLL_TICK = _PollTick()


# ============================================================================
# Mastodon side
# ============================================================================

class NotificationKind(str, Enum):
    """Notification types the digest distinguishes."""
    MENTION = "mention"
    FAVOURITE = "favourite"
    REBLOG = "reblog"
    FOLLOW = "follow"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NotificationKind":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class RemoteNotification:
    kind: NotificationKind
    actor_handle: str
    status_body: Optional[str] = None


@dataclass(frozen=True)
class RelayResult:
    """Outcome of one dispatched action, always sent to the room."""
    success: bool
    human_message: str
