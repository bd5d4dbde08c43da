"""
Unit tests for masto_bridge/matrix/client.py

Tests cover:
- Sending messages through the nio client
- Room joins and join errors
- Appservice user registration
"""
import pytest
from unittest.mock import AsyncMock, Mock
from aioresponses import aioresponses
from nio import JoinError, JoinResponse, RoomSendError, RoomSendResponse

from masto_bridge.matrix.client import MatrixClientError, MatrixTransport, localpart

HOMESERVER = "http://test-synapse:8008"
REGISTER_URL = f"{HOMESERVER}/_matrix/client/v3/register"


@pytest.fixture
def nio_client():
    client = Mock()
    client.room_send = AsyncMock(return_value=RoomSendResponse("$event1", "!bridged:matrix.test"))
    client.join = AsyncMock(return_value=JoinResponse("!bridged:matrix.test"))
    client.close = AsyncMock()
    return client


@pytest.fixture
def transport(nio_client):
    return MatrixTransport(HOMESERVER + "/", "test_as_token", "@mastobot:matrix.test", client=nio_client)


class TestLocalpart:
    def test_full_mxid(self):
        assert localpart("@mastobot:matrix.test") == "mastobot"

    def test_bare(self):
        assert localpart("mastobot") == "mastobot"

    def test_none(self):
        assert localpart(None) == ""


class TestSendText:
    @pytest.mark.asyncio
    async def test_sends_m_text(self, transport, nio_client):
        event_id = await transport.send_text("!bridged:matrix.test", "hello")

        assert event_id == "$event1"
        nio_client.room_send.assert_awaited_once_with(
            room_id="!bridged:matrix.test",
            message_type="m.room.message",
            content={"msgtype": "m.text", "body": "hello"},
        )

    @pytest.mark.asyncio
    async def test_send_error(self, transport, nio_client):
        nio_client.room_send.return_value = RoomSendError("You are not in this room", "M_FORBIDDEN")

        with pytest.raises(MatrixClientError) as exc_info:
            await transport.send_text("!bridged:matrix.test", "hello")

        assert exc_info.value.errcode == "M_FORBIDDEN"


class TestJoinRoom:
    @pytest.mark.asyncio
    async def test_join(self, transport, nio_client):
        assert await transport.join_room("!bridged:matrix.test") == "!bridged:matrix.test"
        nio_client.join.assert_awaited_once_with("!bridged:matrix.test")

    @pytest.mark.asyncio
    async def test_join_forbidden(self, transport, nio_client):
        nio_client.join.return_value = JoinError("You are not invited to this room.", "M_FORBIDDEN")

        with pytest.raises(MatrixClientError, match="not invited"):
            await transport.join_room("!bridged:matrix.test")


class TestEnsureRegistered:
    @pytest.mark.asyncio
    async def test_registers_new_user(self, transport):
        with aioresponses() as mocked:
            mocked.post(REGISTER_URL, payload={"user_id": "@mastobot:matrix.test"})

            assert await transport.ensure_registered() is True

            request = list(mocked.requests.values())[0][0]
            assert request.kwargs["json"] == {"type": "m.login.application_service", "username": "mastobot"}
            assert request.kwargs["headers"]["Authorization"] == "Bearer test_as_token"

    @pytest.mark.asyncio
    async def test_existing_user(self, transport):
        with aioresponses() as mocked:
            mocked.post(REGISTER_URL, status=400, payload={"errcode": "M_USER_IN_USE", "error": "User ID already taken."})

            assert await transport.ensure_registered("@mastobot:matrix.test") is False

    @pytest.mark.asyncio
    async def test_exclusive_namespace_violation(self, transport):
        with aioresponses() as mocked:
            mocked.post(REGISTER_URL, status=400, payload={
                "errcode": "M_EXCLUSIVE",
                "error": "This user ID is reserved by an application service.",
            })

            with pytest.raises(MatrixClientError) as exc_info:
                await transport.ensure_registered("@someone:matrix.test")

        assert exc_info.value.errcode == "M_EXCLUSIVE"

    @pytest.mark.asyncio
    async def test_server_error_without_json(self, transport):
        with aioresponses() as mocked:
            mocked.post(REGISTER_URL, status=502, body="Bad Gateway")

            with pytest.raises(MatrixClientError, match="HTTP 502"):
                await transport.ensure_registered()


class TestClose:
    @pytest.mark.asyncio
    async def test_close(self, transport, nio_client):
        await transport.close()
        nio_client.close.assert_awaited_once()
