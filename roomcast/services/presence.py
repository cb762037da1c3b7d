"""
roomcast.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~~

在线状态发布 —— 从会话表与房间表派生在线用户列表和房间人数，推送给所有人。

只读派生，不修改任何其他组件的状态。
"""
from __future__ import annotations

from roomcast.schemas.events import RoomCountsData, RoomListData, ServerEvent, UserListData
from roomcast.services.broadcaster import Broadcaster
from roomcast.services.room_registry import RoomRegistry
from roomcast.services.session_registry import Session, SessionRegistry


class PresencePublisher:
    def __init__(
        self,
        sessions: SessionRegistry,
        rooms: RoomRegistry,
        broadcaster: Broadcaster,
    ) -> None:
        self.sessions = sessions
        self.rooms = rooms
        self.broadcaster = broadcaster

    def user_list(self) -> UserListData:
        return UserListData(identities=self.sessions.list_identities())

    def room_counts(self) -> RoomCountsData:
        return RoomCountsData(counts=self.rooms.snapshot_counts())

    def room_list(self) -> RoomListData:
        return RoomListData(rooms=self.rooms.list_rooms())

    def publish_user_list(self) -> None:
        self.broadcaster.to_all(ServerEvent.USER_LIST, self.user_list())

    def publish_room_counts(self) -> None:
        self.broadcaster.to_all(ServerEvent.ROOM_COUNTS, self.room_counts())

    def publish_room_list(self) -> None:
        self.broadcaster.to_all(ServerEvent.ROOM_LIST, self.room_list())

    def send_snapshot(self, session: Session) -> None:
        """新连接建立后单播一次完整快照：房间列表、在线用户、房间人数。"""
        session.send(ServerEvent.ROOM_LIST, self.room_list())
        session.send(ServerEvent.USER_LIST, self.user_list())
        session.send(ServerEvent.ROOM_COUNTS, self.room_counts())
