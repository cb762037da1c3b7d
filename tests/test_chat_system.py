"""
tests.test_chat_system
~~~~~~~~~~~~~~~~~~~~~~

ChatSystem 事件分发、连接生命周期与端到端场景测试。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from roomcast.core.config import Settings
from roomcast.core.errors import AuthenticationRejected, DuplicateConnection, StoreFailure
from roomcast.services.auth import AuthResult, GuestAuthenticator
from roomcast.services.chat_system import ChatSystem
from roomcast.services.session_registry import Identity
from tests.conftest import FakeConnection


# ── 连接生命周期 ─────────────────────────────────────────────────────

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_sends_snapshot_then_user_list(self, chat_system: ChatSystem) -> None:
        conn = FakeConnection()
        session = await chat_system.lifecycle.connect(conn, "guest:alice")

        assert session.is_guest is True
        assert conn.names() == ["room-list", "user-list", "room-counts", "user-list"]
        assert conn.of("room-list")[0].rooms == ["general", "random"]
        assert conn.of("user-list")[-1].identities == ["alice"]

    @pytest.mark.asyncio
    async def test_user_list_reaches_existing_sessions(self, chat_system: ChatSystem, connect) -> None:
        _, conn_a = connect("alice")
        conn_a.clear()

        await chat_system.lifecycle.connect(FakeConnection(), "guest:bob")

        assert conn_a.of("user-list")[-1].identities == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_invalid_credential_creates_no_session(self, chat_system: ChatSystem) -> None:
        with pytest.raises(AuthenticationRejected):
            await chat_system.lifecycle.connect(FakeConnection(), "bogus")
        with pytest.raises(AuthenticationRejected):
            await chat_system.lifecycle.connect(FakeConnection(), None)
        assert len(chat_system.sessions) == 0

    @pytest.mark.asyncio
    async def test_authenticator_crash_is_rejection(
        self, mock_repo: MagicMock, test_settings: Settings,
    ) -> None:
        authenticator = MagicMock()
        authenticator.verify = AsyncMock(side_effect=ConnectionError("auth backend down"))
        system = ChatSystem(mock_repo, authenticator, config=test_settings)

        with pytest.raises(AuthenticationRejected) as exc_info:
            await system.lifecycle.authenticate("token")
        assert exc_info.value.message == "authentication unavailable"

    def test_duplicate_connection(self, chat_system: ChatSystem) -> None:
        conn = FakeConnection()
        chat_system.lifecycle.open_session(conn, _guest("alice"))

        with pytest.raises(DuplicateConnection):
            chat_system.lifecycle.open_session(conn, _guest("alice"))

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up(self, chat_system: ChatSystem, connect) -> None:
        sid_a, _ = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.membership.join(sid_a, "general")
        await chat_system.membership.join(sid_b, "general")
        conn_b.clear()

        removed = chat_system.lifecycle.disconnect(sid_a)

        assert removed is not None and removed.username == "alice"
        assert [e.identity for e in conn_b.of("member-left")] == ["alice"]
        assert conn_b.of("user-list")[-1].identities == ["bob"]
        assert conn_b.of("room-counts")[-1].counts["general"] == 1
        assert chat_system.lifecycle.disconnect(sid_a) is None


def _guest(name: str) -> AuthResult:
    return AuthResult(identity=Identity(name), is_guest=True)


# ── 事件分发 ─────────────────────────────────────────────────────────

class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_event(self, chat_system: ChatSystem, connect) -> None:
        sid, _ = connect("alice")
        ack = await chat_system.handle_event(sid, "teleport", {})
        assert ack.success is False
        assert ack.code == "unknown_event"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, chat_system: ChatSystem, connect) -> None:
        sid, _ = connect("alice")
        ack = await chat_system.handle_event(sid, "join-room", {})
        assert ack.success is False
        assert ack.code == "invalid_payload"
        assert "roomName" in ack.error

    @pytest.mark.asyncio
    async def test_unknown_session(self, chat_system: ChatSystem) -> None:
        ack = await chat_system.handle_event("gone", "start-typing", {})
        assert ack.code == "unknown_session"

    @pytest.mark.asyncio
    async def test_join_and_send(self, chat_system: ChatSystem, connect) -> None:
        """A、B 进入 general，A 发送 hello：双方收到同一 messageId，A 得到成功应答。"""
        sid_a, conn_a = connect("alice")
        sid_b, conn_b = connect("bob")
        assert (await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})).success
        assert (await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})).success

        ack = await chat_system.handle_event(sid_a, "send-message", {"body": "hello"})

        assert ack.success is True
        assert conn_a.of("message")[0].id == ack.message_id
        assert conn_b.of("message")[0].id == ack.message_id

    @pytest.mark.asyncio
    async def test_send_outside_room_fails(self, chat_system: ChatSystem, connect) -> None:
        sid, _ = connect("alice")
        ack = await chat_system.handle_event(sid, "send-message", {"body": "hello"})
        assert ack.success is False
        assert ack.error == "not in room"

    @pytest.mark.asyncio
    async def test_private_offline(self, chat_system: ChatSystem, connect) -> None:
        sid, conn_a = connect("alice")
        _, conn_b = connect("bob")
        ack = await chat_system.handle_event(
            sid, "private-message", {"recipientIdentity": "ghost", "body": "psst"},
        )
        assert ack.model_dump(by_alias=True, exclude_none=True) == {
            "success": False,
            "error": "recipient offline",
            "code": "recipient_offline",
        }
        assert conn_a.of("private-message") == []
        assert conn_b.of("private-message") == []

    @pytest.mark.asyncio
    async def test_sending_stops_typing(self, chat_system: ChatSystem, connect) -> None:
        sid_a, _ = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_a, "start-typing", {})

        await chat_system.handle_event(sid_a, "send-message", {"body": "done"})

        assert [e.identity for e in conn_b.of("typing-stopped")] == ["alice"]
        assert chat_system.typing.typing_in("general") == []

    @pytest.mark.asyncio
    async def test_switching_room_clears_typing(self, chat_system: ChatSystem, connect) -> None:
        sid_a, _ = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_a, "start-typing", {})

        await chat_system.handle_event(sid_a, "join-room", {"roomName": "random"})

        assert [e.identity for e in conn_b.of("typing-stopped")] == ["alice"]

    @pytest.mark.asyncio
    async def test_join_unknown_room_keeps_typing(self, chat_system: ChatSystem, connect) -> None:
        """进入不存在的房间失败时，不清除输入状态，也不广播 typing-stopped。"""
        sid_a, _ = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_a, "start-typing", {})
        conn_b.clear()

        ack = await chat_system.handle_event(sid_a, "join-room", {"roomName": "nope"})

        assert ack.success is False
        assert ack.code == "unknown_room"
        assert conn_b.events == []
        assert chat_system.typing.typing_in("general") == ["alice"]
        assert chat_system.sessions.get(sid_a).current_room == "general"

    @pytest.mark.asyncio
    async def test_reactions(self, chat_system: ChatSystem, connect) -> None:
        """A、B 都对 m1 回应 👍：双方收到 {👍: [A, B]}。"""
        sid_a, conn_a = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})

        await chat_system.handle_event(sid_a, "add-reaction", {"messageId": "m1", "emoji": "👍"})
        await chat_system.handle_event(sid_b, "add-reaction", {"messageId": "m1", "emoji": "👍"})

        for conn in (conn_a, conn_b):
            update = conn.of("reaction-update")[-1]
            assert update.message_id == "m1"
            assert update.reactions == {"👍": ["alice", "bob"]}

    @pytest.mark.asyncio
    async def test_mark_read_and_get_receipts(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        sid_a, conn_a = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.handle_event(sid_a, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid_b, "join-room", {"roomName": "general"})

        ack = await chat_system.handle_event(sid_b, "mark-read", {"messageId": "m1"})
        await chat_system.receipts.drain()

        assert ack.success is True
        [read] = conn_a.of("message-read")
        assert (read.message_id, read.reader_identity) == ("m1", "bob")
        mock_repo.upsert_read_receipt.assert_awaited_once()

        mock_repo.get_read_receipts.side_effect = StoreFailure("down")
        await chat_system.handle_event(sid_a, "get-read-receipts", {"messageId": "m1"})

        [receipts] = conn_a.of("read-receipts")
        assert [r.reader_identity for r in receipts.receipts] == ["bob"]
        assert conn_b.of("read-receipts") == []

    @pytest.mark.asyncio
    async def test_create_room_then_join(self, chat_system: ChatSystem, connect) -> None:
        sid, conn = connect("alice")

        assert (await chat_system.handle_event(sid, "create-room", {"roomName": "lobby"})).success
        ack = await chat_system.handle_event(sid, "join-room", {"roomName": "lobby"})

        assert ack.success is True
        assert conn.of("room-created")[0].creator == "alice"
        assert chat_system.rooms.get("lobby").member_count == 1

    @pytest.mark.asyncio
    async def test_load_older_messages(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        sid, conn = connect("alice")
        ack = await chat_system.handle_event(
            sid, "load-older-messages", {"room": "general", "offset": 50, "limit": 20},
        )
        assert ack.success is True
        mock_repo.query.assert_awaited_with("general", limit=20, offset=50)
        assert conn.of("older-messages")[0].has_more is False

    @pytest.mark.asyncio
    async def test_rate_limit(self, mock_repo: MagicMock, test_settings: Settings, connect) -> None:
        system = ChatSystem(
            mock_repo,
            GuestAuthenticator(),
            config=test_settings.model_copy(update={"WS_RATE_LIMIT_INTERVAL": 60}),
        )
        conn = FakeConnection()
        session = await system.lifecycle.connect(conn, "guest:alice")
        await system.handle_event(session.session_id, "join-room", {"roomName": "general"})

        first = await system.handle_event(session.session_id, "send-message", {"body": "one"})
        second = await system.handle_event(session.session_id, "send-message", {"body": "two"})

        assert first.success is True
        assert second.success is False
        assert second.code == "rate_limited"
        assert len(conn.of("message")) == 1

    @pytest.mark.asyncio
    async def test_shutdown_drains_background_work(
        self, chat_system: ChatSystem, mock_responder: MagicMock, connect,
    ) -> None:
        sid, conn = connect("alice")
        await chat_system.handle_event(sid, "join-room", {"roomName": "general"})
        await chat_system.handle_event(sid, "start-typing", {})
        await chat_system.handle_event(sid, "send-message", {"body": "@ai hi"})

        await chat_system.shutdown()

        mock_responder.generate.assert_awaited_once()
        assert conn.of("message")[-1].kind == "ai"
        assert chat_system.typing.snapshot() == {}
