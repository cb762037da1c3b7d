"""
roomcast.services.typing_indicator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

"正在输入" 状态协调 —— 每个房间一组正在输入的用户，各自带一个过期定时器。

显式停止、定时器过期、断线清理三条路径对接收方完全一致：
都会从集合中移除并广播一次 ``typing-stopped``。定时器在移除时必定被取消，
不会有迟到的回调把已移除的状态重新写回。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

from roomcast.core.errors import NotInRoom
from roomcast.core.logging import get_logger
from roomcast.schemas.events import ServerEvent, TypingData
from roomcast.services.broadcaster import Broadcaster
from roomcast.services.session_registry import Session, SessionRegistry

logger = get_logger(__name__)


@dataclass
class _TypingEntry:
    session_id: str
    timer: asyncio.TimerHandle


class TypingCoordinator:
    """输入状态协调器。

    Attributes:
        timeout: 输入状态的过期时间（秒）。
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        broadcaster: Broadcaster,
        timeout: float = 1.5,
    ) -> None:
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.timeout = timeout
        # 房间名 → 用户名 → 条目
        self._typing: dict[str, dict[str, _TypingEntry]] = {}

    def start_typing(self, session_id: str) -> None:
        """开始输入；已在输入中则只刷新过期时间，不重复广播。

        Raises:
            NotInRoom: 会话尚未加入任何房间。
        """
        session = self.sessions.get(session_id)
        room = session.current_room
        if room is None:
            raise NotInRoom()

        entries = self._typing.setdefault(room, {})
        timer = asyncio.get_running_loop().call_later(
            self.timeout, self._expire, room, session.username,
        )
        existing = entries.get(session.username)
        if existing is not None:
            # 同一用户多端在线时，输入状态归属最近一次输入的会话
            existing.timer.cancel()
            existing.timer = timer
            existing.session_id = session_id
            return

        entries[session.username] = _TypingEntry(session_id=session_id, timer=timer)
        self.broadcaster.to_room(
            room,
            ServerEvent.TYPING_STARTED,
            TypingData(identity=session.username, room=room),
            exclude=session_id,
        )

    def stop_typing(self, session_id: str) -> bool:
        """显式停止输入。返回是否确实处于输入状态。"""
        session = self.sessions.get(session_id)
        if session.current_room is None:
            return False
        return self._remove(session.current_room, session.username)

    def clear_session(self, session: Session) -> None:
        """清除某会话在所有房间的输入状态（断线、换房时调用）。"""
        for room in list(self._typing):
            entry = self._typing[room].get(session.username)
            if entry is not None and entry.session_id == session.session_id:
                self._remove(room, session.username)

    def typing_in(self, room: str) -> list[str]:
        return list(self._typing.get(room, {}))

    def snapshot(self) -> dict[str, list[str]]:
        return {room: list(users) for room, users in self._typing.items() if users}

    def _expire(self, room: str, username: str) -> None:
        logger.debug("输入状态过期 | room=%s | user=%s", room, username)
        self._remove(room, username)

    def _remove(self, room: str, username: str) -> bool:
        entries = self._typing.get(room)
        if not entries or username not in entries:
            return False
        entry = entries.pop(username)
        entry.timer.cancel()
        if not entries:
            del self._typing[room]
        self.broadcaster.to_room(
            room,
            ServerEvent.TYPING_STOPPED,
            TypingData(identity=username, room=room),
            exclude=entry.session_id,
        )
        return True

    def cancel_all(self) -> None:
        """取消所有定时器（关闭时调用，不广播）。"""
        for entries in self._typing.values():
            for entry in entries.values():
                entry.timer.cancel()
        self._typing.clear()
