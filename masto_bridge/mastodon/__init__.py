"""Mastodon REST integration module."""

from masto_bridge.mastodon.client import (
    MastodonAccount,
    MastodonApiError,
    MastodonClient,
    MastodonNotification,
    MastodonStatus,
)
from masto_bridge.mastodon.formatter import (
    NO_NOTIFICATIONS_MESSAGE,
    format_digest,
    format_notification,
    html_to_text,
)

__all__ = [
    # Client
    "MastodonAccount",
    "MastodonApiError",
    "MastodonClient",
    "MastodonNotification",
    "MastodonStatus",
    # Formatting
    "NO_NOTIFICATIONS_MESSAGE",
    "format_digest",
    "format_notification",
    "html_to_text",
]
