"""
tests.test_membership
~~~~~~~~~~~~~~~~~~~~~

进房 / 换房 / 建房 / 断线离房与历史回放测试。
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from roomcast.core.errors import StoreFailure, UnknownRoom
from roomcast.schemas.messages import ChatMessage
from roomcast.services.chat_system import ChatSystem


def _stored(body: str, room: str = "general") -> ChatMessage:
    message = ChatMessage(author="carol", room=room, body=body)
    message.mark_acknowledged(f"id-{body}")
    return message


class TestJoin:
    @pytest.mark.asyncio
    async def test_second_member_join(self, chat_system: ChatSystem, connect) -> None:
        """A 在房间内时 B 进入：A 收到 member-joined，B 自己收不到，人数为 2。"""
        sid_a, conn_a = connect("alice")
        sid_b, conn_b = connect("bob")
        await chat_system.membership.join(sid_a, "general")
        conn_a.clear()

        await chat_system.membership.join(sid_b, "general")

        joined = conn_a.of("member-joined")
        assert len(joined) == 1
        assert joined[0].identity == "bob"
        assert joined[0].room == "general"
        assert conn_b.of("member-joined") == []
        assert chat_system.rooms.get("general").member_count == 2

    @pytest.mark.asyncio
    async def test_join_sends_room_joined_then_history(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        mock_repo.query.return_value = [_stored("one"), _stored("two")]
        sid, conn = connect("alice")

        await chat_system.membership.join(sid, "general")

        names = conn.names()
        assert names.index("room-counts", 3) < names.index("room-joined") < names.index("room-history")
        history = conn.of("room-history")[0]
        assert [m.body for m in history.messages] == ["one", "two"]
        mock_repo.query.assert_awaited_with("general", limit=50)

    @pytest.mark.asyncio
    async def test_switch_room(self, chat_system: ChatSystem, connect) -> None:
        """换房：旧房人数减一，旧房成员收到 member-left。"""
        sid_a, conn_a = connect("alice")
        sid_b, _ = connect("bob")
        await chat_system.membership.join(sid_a, "general")
        await chat_system.membership.join(sid_b, "general")
        conn_a.clear()

        await chat_system.membership.join(sid_b, "random")

        left = conn_a.of("member-left")
        assert [(e.identity, e.room) for e in left] == [("bob", "general")]
        assert chat_system.rooms.snapshot_counts() == {"general": 1, "random": 1}
        assert chat_system.sessions.get(sid_b).current_room == "random"

    @pytest.mark.asyncio
    async def test_rejoin_current_room_keeps_count(self, chat_system: ChatSystem, connect) -> None:
        sid_a, conn_a = connect("alice")
        sid_b, _ = connect("bob")
        await chat_system.membership.join(sid_a, "general")
        await chat_system.membership.join(sid_b, "general")
        conn_a.clear()

        await chat_system.membership.join(sid_b, "general")

        assert chat_system.rooms.get("general").member_count == 2
        assert conn_a.events == []

    @pytest.mark.asyncio
    async def test_unknown_room(self, chat_system: ChatSystem, connect) -> None:
        sid, conn = connect("alice")
        conn.clear()

        with pytest.raises(UnknownRoom):
            await chat_system.membership.join(sid, "nowhere")
        assert chat_system.sessions.get(sid).current_room is None
        assert conn.events == []

    @pytest.mark.asyncio
    async def test_history_failure_sends_empty_history(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        """存储不可用时仍然进房成功，历史为空。"""
        mock_repo.query.side_effect = StoreFailure("down")
        sid, conn = connect("alice")

        await chat_system.membership.join(sid, "general")

        assert chat_system.sessions.get(sid).current_room == "general"
        assert conn.of("room-history")[0].messages == []

    @pytest.mark.asyncio
    async def test_member_counts_match_sessions(self, chat_system: ChatSystem, connect) -> None:
        """任意进房 / 换房 / 断线序列后，房间人数等于该房间内的会话数。"""
        sids = [connect(name)[0] for name in ("a", "b", "c", "d")]
        await chat_system.membership.join(sids[0], "general")
        await chat_system.membership.join(sids[1], "general")
        await chat_system.membership.join(sids[2], "random")
        await chat_system.membership.join(sids[1], "random")
        await chat_system.membership.join(sids[3], "general")
        chat_system.lifecycle.disconnect(sids[0])
        await chat_system.membership.join(sids[2], "general")

        for room in chat_system.rooms.list_rooms():
            assert chat_system.rooms.get(room).member_count == len(chat_system.sessions.in_room(room))


class TestCreateRoom:
    def test_create_room_broadcasts_to_everyone(self, chat_system: ChatSystem, connect) -> None:
        _, conn_a = connect("alice")
        _, conn_b = connect("bob")
        conn_a.clear()
        conn_b.clear()

        assert chat_system.membership.create_room("lobby", "alice") is True

        for conn in (conn_a, conn_b):
            created = conn.of("room-created")
            assert [(e.room_name, e.creator) for e in created] == [("lobby", "alice")]
            assert "lobby" in conn.of("room-list")[-1].rooms
            assert conn.of("room-counts")[-1].counts["lobby"] == 0

    def test_create_existing_room_is_silent(self, chat_system: ChatSystem, connect) -> None:
        _, conn = connect("alice")
        conn.clear()

        assert chat_system.membership.create_room("general", "alice") is False
        assert conn.events == []
        assert chat_system.rooms.get("general").created_by == "system"


class TestLoadOlder:
    @pytest.mark.asyncio
    async def test_load_older_page(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        mock_repo.query.return_value = [_stored("old-1"), _stored("old-2")]
        mock_repo.count.return_value = 5
        sid, conn = connect("alice")

        await chat_system.membership.load_older(sid, "general", offset=2, limit=2)

        mock_repo.query.assert_awaited_with("general", limit=2, offset=2)
        page = conn.of("older-messages")[0]
        assert [m.body for m in page.messages] == ["old-1", "old-2"]
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_load_older_last_page(
        self, chat_system: ChatSystem, mock_repo: MagicMock, connect,
    ) -> None:
        mock_repo.query.return_value = [_stored("first")]
        mock_repo.count.return_value = 3
        sid, conn = connect("alice")

        await chat_system.membership.load_older(sid, "general", offset=2, limit=50)

        assert conn.of("older-messages")[0].has_more is False
