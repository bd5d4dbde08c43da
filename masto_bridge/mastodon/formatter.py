"""Plain-text rendering of Mastodon notifications for the bridged room."""

import re
from typing import Iterable, Optional

import html2text

from masto_bridge.core.types import RemoteNotification

WRAP_WIDTH = 130
NO_NOTIFICATIONS_MESSAGE = "No new notifications."

# Backslash escapes html2text adds to text that would otherwise read as Markdown
MARKDOWN_ESCAPE = re.compile(r"\\([\\`*_{}\[\]()#+\-.!>])")


def html_to_text(html: Optional[str], width: int = WRAP_WIDTH) -> str:
    """Convert status HTML to plain text, wrapped at ``width`` columns."""
    if not html:
        return ""
    converter = html2text.HTML2Text()
    converter.body_width = width
    converter.unicode_snob = True
    converter.ignore_links = True
    converter.ignore_images = True
    converter.ignore_emphasis = True
    text = MARKDOWN_ESCAPE.sub(r"\1", converter.handle(html))
    # <br> comes out as a Markdown hard break: two trailing spaces
    return "\n".join(line.rstrip() for line in text.splitlines()).strip()


def format_notification(notification: RemoteNotification) -> str:
    body = html_to_text(notification.status_body)
    return f"{notification.kind.value} from {notification.actor_handle}: {body}"


def format_digest(notifications: Iterable[RemoteNotification]) -> str:
    """One line per notification, separated by a blank line."""
    lines = [format_notification(n) for n in notifications]
    if not lines:
        return NO_NOTIFICATIONS_MESSAGE
    return "\n\n".join(lines)
