"""
Core module for the Matrix-Mastodon bridge

Contains:
- BridgeRouter: filters chat events, interprets commands, dispatches actions
- NotificationPoller: periodic Mastodon notification digest
- Shared types (ChatEvent, Command variants, RemoteNotification, RelayResult)
"""

from .types import (
    POLL_TICK,
    ChatEvent,
    Command,
    Help,
    ListNotifications,
    NotificationKind,
    Post,
    RelayResult,
    RemoteNotification,
    Unknown,
)
from .router import BridgeContext, BridgeRouter, filter_event, interpret
from .poller import NotificationPoller

__all__ = [
    "POLL_TICK",
    "ChatEvent",
    "Command",
    "Help",
    "ListNotifications",
    "NotificationKind",
    "Post",
    "RelayResult",
    "RemoteNotification",
    "Unknown",
    "BridgeContext",
    "BridgeRouter",
    "filter_event",
    "interpret",
    "NotificationPoller",
]
