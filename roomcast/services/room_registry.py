"""
roomcast.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 房间名 → 创建信息与在线人数。

房间一旦创建，在进程生命周期内不会被删除。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from roomcast.core.errors import UnknownRoom
from roomcast.core.logging import get_logger
from roomcast.schemas.messages import utcnow

logger = get_logger(__name__)


@dataclass
class Room:
    """一个房间。

    Attributes:
        name: 房间唯一名称。
        created_by: 创建者用户名（预置房间为 ``"system"``）。
        created_at: 创建时间。
        member_count: 当前位于该房间的会话数，永不为负。
    """

    name: str
    created_by: str = "system"
    created_at: datetime = field(default_factory=utcnow)
    member_count: int = 0


class RoomRegistry:
    def __init__(self, seed: list[str] | None = None) -> None:
        self._rooms: dict[str, Room] = {}
        for name in seed or []:
            self.ensure_exists(name)

    def ensure_exists(self, room_name: str, creator: str = "system") -> bool:
        """房间不存在则创建，返回是否为本次新建。"""
        if room_name in self._rooms:
            return False
        self._rooms[room_name] = Room(name=room_name, created_by=creator)
        logger.info("房间已创建 | room=%s | creator=%s", room_name, creator)
        return True

    def exists(self, room_name: str) -> bool:
        return room_name in self._rooms

    def get(self, room_name: str) -> Room:
        room = self._rooms.get(room_name)
        if room is None:
            raise UnknownRoom(f"unknown room: {room_name}")
        return room

    def increment_members(self, room_name: str) -> int:
        room = self.get(room_name)
        room.member_count += 1
        return room.member_count

    def decrement_members(self, room_name: str) -> int:
        """人数减一，最小为 0。"""
        room = self.get(room_name)
        room.member_count = max(0, room.member_count - 1)
        return room.member_count

    def snapshot_counts(self) -> dict[str, int]:
        return {name: room.member_count for name, room in self._rooms.items()}

    def list_rooms(self) -> list[str]:
        """房间名列表（按创建顺序）。"""
        return list(self._rooms)

    def __len__(self) -> int:
        return len(self._rooms)
