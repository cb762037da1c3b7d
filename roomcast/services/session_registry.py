"""
roomcast.services.session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话注册表 —— 连接 → 会话（身份 + 当前房间）的唯一归属者。

同时维护一个 用户名 → 会话 的反向索引，供私聊按身份查找在线连接，
避免在热路径上线性扫描。
"""
from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from roomcast.core.errors import DuplicateConnection, UnknownSession
from roomcast.core.logging import get_logger
from roomcast.schemas.messages import utcnow

logger = get_logger(__name__)


class ConnectionHandle(Protocol):
    """传输层拥有的连接句柄，核心只持有引用并向其投递事件。"""

    connection_id: str

    def send(self, event: str, data: Any = None) -> None: ...


@dataclass(frozen=True)
class Identity:
    """经过认证的用户身份，会话创建后不可变。"""

    username: str
    user_id: str | None = None


@dataclass(eq=False)
class Session:
    """一个在线连接对应的服务端会话。

    ``current_room`` 只能由 ``MembershipCoordinator`` 通过
    ``SessionRegistry.set_room()`` 修改。
    """

    session_id: str
    connection: ConnectionHandle
    identity: Identity
    is_guest: bool = False
    current_room: str | None = None
    joined_at: datetime = field(default_factory=utcnow)

    @property
    def username(self) -> str:
        return self.identity.username

    def send(self, event: str, data: Any = None) -> None:
        """向本会话的连接投递一个事件（连接已关闭时静默丢弃）。"""
        self.connection.send(event, data)


class SessionRegistry:
    """进程内的会话表。

    所有读写都在事件循环的同步片段内完成，调用方不会看到半更新状态。
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._by_connection: dict[str, str] = {}
        # 用户名 → 会话 ID（按连接先后），同一用户可多端在线
        self._by_username: dict[str, list[str]] = {}

    def create_session(
        self,
        connection: ConnectionHandle,
        identity: Identity,
        is_guest: bool = False,
    ) -> str:
        """为新连接创建会话并返回会话 ID。

        Raises:
            DuplicateConnection: 该连接已经拥有会话。
        """
        if connection.connection_id in self._by_connection:
            raise DuplicateConnection(
                f"connection {connection.connection_id} already has a session",
            )

        session_id = uuid.uuid4().hex
        session = Session(
            session_id=session_id,
            connection=connection,
            identity=identity,
            is_guest=is_guest,
        )
        self._sessions[session_id] = session
        self._by_connection[connection.connection_id] = session_id
        self._by_username.setdefault(identity.username, []).append(session_id)
        logger.debug("会话已创建 | user=%s | session=%s", identity.username, session_id)
        return session_id

    def get(self, session_id: str) -> Session:
        """按 ID 获取会话。

        Raises:
            UnknownSession: 会话不存在（已断开）。
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession()
        return session

    def find(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def set_room(self, session_id: str, room_name: str | None) -> None:
        self.get(session_id).current_room = room_name

    def remove(self, session_id: str) -> Session:
        """移除会话并返回被移除的会话。

        Raises:
            UnknownSession: 会话不存在（重复移除）。
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise UnknownSession()

        self._by_connection.pop(session.connection.connection_id, None)
        ids = self._by_username.get(session.username, [])
        if session_id in ids:
            ids.remove(session_id)
        if not ids:
            self._by_username.pop(session.username, None)
        logger.debug("会话已移除 | user=%s | session=%s", session.username, session_id)
        return session

    def find_by_identity(self, username: str) -> list[Session]:
        """返回该用户名当前所有在线会话（可能为空）。"""
        return [self._sessions[sid] for sid in self._by_username.get(username, [])]

    def list_identities(self) -> list[str]:
        """在线用户名快照（按首次连接顺序去重）。"""
        return list(self._by_username)

    def in_room(self, room_name: str) -> list[Session]:
        return [s for s in self._sessions.values() if s.current_room == room_name]

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
