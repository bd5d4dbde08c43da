"""
Pytest configuration and shared fixtures for masto-bridge tests
"""
import pytest
from unittest.mock import AsyncMock

from masto_bridge.config import Config
from masto_bridge.core.router import BridgeContext, BridgeRouter
from masto_bridge.core.types import NotificationKind, RemoteNotification
from masto_bridge.matrix.registration import Registration


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def config():
    """Bridge configuration pointing at test hosts"""
    return Config(
        homeserver_url="http://test-synapse:8008",
        domain="matrix.test",
        bot_user_id="@mastobot:matrix.test",
        bridged_room_id="!bridged:matrix.test",
        mastodon_api_url="https://example.social",
        mastodon_access_token="test_mastodon_token",
        poll_interval=60.0,
        request_timeout=5.0,
    )


@pytest.fixture
def registration():
    return Registration(
        id="test-id",
        url="http://localhost:8090",
        as_token="test_as_token",
        hs_token="test_hs_token",
    )


# ============================================================================
# Transport Fixtures
# ============================================================================

@pytest.fixture
def mock_chat():
    """Chat transport that records every send"""
    chat = AsyncMock()
    chat.send_text = AsyncMock(return_value="$sent_event")
    chat.join_room = AsyncMock(return_value="!bridged:matrix.test")
    chat.ensure_registered = AsyncMock(return_value=True)
    return chat


@pytest.fixture
def mock_remote():
    """Mastodon transport with no notifications and a working post endpoint"""
    remote = AsyncMock()
    remote.create_status = AsyncMock(return_value={"url": "https://example.social/1"})
    remote.list_notifications = AsyncMock(return_value=[])
    return remote


@pytest.fixture
def router(config, mock_chat, mock_remote):
    return BridgeRouter(BridgeContext(config=config, chat=mock_chat, remote=mock_remote))


# ============================================================================
# Matrix / Mastodon Data Fixtures
# ============================================================================

@pytest.fixture
def make_message_event():
    """Factory for m.room.message events as delivered in a transaction"""
    def _make(body="hello", room_id="!bridged:matrix.test", sender="@alice:matrix.test",
              event_type="m.room.message"):
        return {
            "type": event_type,
            "room_id": room_id,
            "sender": sender,
            "event_id": "$event123",
            "origin_server_ts": 1704067200000,
            "content": {"msgtype": "m.text", "body": body},
        }
    return _make


@pytest.fixture
def sample_notifications():
    return [
        RemoteNotification(NotificationKind.MENTION, "alice", "<p>Hi</p>"),
        RemoteNotification(NotificationKind.FOLLOW, "bob@other.social", None),
    ]


@pytest.fixture
def mastodon_notifications_payload():
    """Raw /api/v1/notifications response"""
    return [
        {
            "id": "101",
            "type": "mention",
            "created_at": "2024-01-01T00:00:00.000Z",
            "account": {"id": "1", "acct": "alice", "username": "alice", "display_name": "Alice"},
            "status": {
                "id": "9001",
                "url": "https://example.social/@alice/9001",
                "content": "<p>Hi <a href=\"https://example.social/@mastobot\">@mastobot</a></p>",
            },
        },
        {
            "id": "102",
            "type": "follow",
            "created_at": "2024-01-01T00:01:00.000Z",
            "account": {"id": "2", "acct": "bob@other.social", "username": "bob"},
        },
        {
            "id": "103",
            "type": "poll",
            "account": {"id": "3", "acct": "carol"},
            "status": {"id": "9002", "content": "<p>Poll ended</p>"},
        },
    ]
