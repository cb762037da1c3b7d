"""
roomcast.services.membership
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间成员协调 —— 处理进房 / 换房 / 建房 / 断线离房。

每个会话的状态机为 ``Unjoined → InRoom(A) → InRoom(B) ...``。
离开旧房、进入新房、通知双方成员这几步在同一个同步片段内完成，
其他进出房操作不可能插入其中，房间人数不会被并发写坏。
历史回放需要访问外部存储，放在状态变更之后再 await。
"""
from __future__ import annotations

from roomcast.core.errors import StoreFailure, UnknownRoom
from roomcast.core.logging import get_logger
from roomcast.db.message_repository import MessageRepository
from roomcast.schemas.events import (
    MemberEventData,
    OlderMessagesData,
    RoomCreatedData,
    RoomHistoryData,
    RoomJoinedData,
    ServerEvent,
)
from roomcast.services.broadcaster import Broadcaster
from roomcast.services.presence import PresencePublisher
from roomcast.services.room_registry import RoomRegistry
from roomcast.services.session_registry import Session, SessionRegistry

logger = get_logger(__name__)


class MembershipCoordinator:
    """房间成员协调器。

    Attributes:
        history_size: 进房时回放的历史消息条数。
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        rooms: RoomRegistry,
        broadcaster: Broadcaster,
        presence: PresencePublisher,
        repo: MessageRepository,
        history_size: int = 50,
    ) -> None:
        self.sessions = sessions
        self.rooms = rooms
        self.broadcaster = broadcaster
        self.presence = presence
        self.repo = repo
        self.history_size = history_size

    async def join(self, session_id: str, room_name: str) -> None:
        """进入（或切换到）指定房间，并单播该房间的最近历史。

        重复进入当前所在房间时只重发 ``room-joined`` 与历史，不改人数、不发成员事件。

        Raises:
            UnknownSession: 会话不存在。
            UnknownRoom: 房间不存在（建房是单独的操作）。
        """
        session = self.sessions.get(session_id)
        if not self.rooms.exists(room_name):
            raise UnknownRoom(f"unknown room: {room_name}")

        if session.current_room != room_name:
            self._leave_current(session)
            self.rooms.increment_members(room_name)
            self.sessions.set_room(session_id, room_name)
            self.broadcaster.to_room(
                room_name,
                ServerEvent.MEMBER_JOINED,
                MemberEventData(identity=session.username, room=room_name),
                exclude=session_id,
            )
            self.presence.publish_room_counts()
            logger.info("进入房间 | user=%s | room=%s", session.username, room_name)

        session.send(ServerEvent.ROOM_JOINED, RoomJoinedData(room=room_name))
        await self._replay_history(session, room_name)

    def create_room(self, room_name: str, creator: str) -> bool:
        """创建房间；同名房间已存在时静默忽略。返回是否新建。"""
        if not self.rooms.ensure_exists(room_name, creator):
            return False
        self.broadcaster.to_all(
            ServerEvent.ROOM_CREATED,
            RoomCreatedData(room_name=room_name, creator=creator),
        )
        self.presence.publish_room_list()
        self.presence.publish_room_counts()
        return True

    def leave_on_disconnect(self, session_id: str) -> str | None:
        """断线时离开当前房间，返回离开的房间名（未进房则为 ``None``）。"""
        return self._leave_current(self.sessions.get(session_id))

    async def load_older(
        self,
        session_id: str,
        room_name: str,
        offset: int,
        limit: int,
    ) -> None:
        """向请求方单播更早的一页历史。

        Raises:
            UnknownRoom: 房间不存在。
            StoreFailure: 存储不可用。
        """
        session = self.sessions.get(session_id)
        if not self.rooms.exists(room_name):
            raise UnknownRoom(f"unknown room: {room_name}")

        messages = await self.repo.query(room_name, limit=limit, offset=offset)
        total = await self.repo.count(room_name)
        session.send(
            ServerEvent.OLDER_MESSAGES,
            OlderMessagesData(
                room=room_name,
                messages=messages,
                has_more=offset + len(messages) < total,
            ),
        )

    def _leave_current(self, session: Session) -> str | None:
        old_room = session.current_room
        if old_room is None:
            return None
        self.rooms.decrement_members(old_room)
        self.sessions.set_room(session.session_id, None)
        self.broadcaster.to_room(
            old_room,
            ServerEvent.MEMBER_LEFT,
            MemberEventData(identity=session.username, room=old_room),
            exclude=session.session_id,
        )
        logger.info("离开房间 | user=%s | room=%s", session.username, old_room)
        return old_room

    async def _replay_history(self, session: Session, room_name: str) -> None:
        try:
            messages = await self.repo.query(room_name, limit=self.history_size)
        except StoreFailure as e:
            logger.warning("历史回放失败，下发空历史 | room=%s | %s", room_name, e)
            messages = []

        # await 期间会话可能已断线或换房
        if self.sessions.find(session.session_id) is None or session.current_room != room_name:
            return
        session.send(
            ServerEvent.ROOM_HISTORY,
            RoomHistoryData(room=room_name, messages=messages),
        )
