"""
roomcast.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件扇出 —— 按 单个会话 / 房间 / 全体 三种范围向连接投递事件。

接收者集合在调用瞬间从 ``SessionRegistry`` 取快照；投递本身是同步入队，
不会在广播途中让出事件循环。
"""
from __future__ import annotations

from typing import Any

from roomcast.core.logging import get_logger
from roomcast.services.session_registry import SessionRegistry

logger = get_logger(__name__)


class Broadcaster:
    """基于会话注册表的广播器。"""

    def __init__(self, sessions: SessionRegistry) -> None:
        self.sessions = sessions

    def to_room(
        self,
        room_name: str,
        event: str,
        data: Any = None,
        exclude: str | None = None,
    ) -> int:
        """向房间内所有会话广播，``exclude`` 为需要跳过的会话 ID。

        Returns:
            实际投递的会话数。
        """
        delivered = 0
        for session in self.sessions.in_room(room_name):
            if session.session_id == exclude:
                continue
            session.send(event, data)
            delivered += 1
        logger.debug("房间广播 | room=%s | event=%s | 接收者=%d", room_name, event, delivered)
        return delivered

    def to_all(self, event: str, data: Any = None) -> int:
        """向所有在线会话广播（不区分房间）。"""
        delivered = 0
        for session in self.sessions:
            session.send(event, data)
            delivered += 1
        return delivered
