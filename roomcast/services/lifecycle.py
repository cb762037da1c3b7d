"""
roomcast.services.lifecycle
~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接生命周期控制 —— 认证交接、会话创建与拆除。

状态机: ``Connecting → Authenticated → (Unjoined ⇄ InRoom) → Disconnected``。
优雅断开与异常断开走同一条 ``disconnect()`` 路径。
"""
from __future__ import annotations

from roomcast.core.errors import AuthenticationRejected, DuplicateConnection
from roomcast.core.logging import get_logger
from roomcast.core.rate_limit import WebSocketRateLimiter
from roomcast.services.auth import Authenticator, AuthResult
from roomcast.services.membership import MembershipCoordinator
from roomcast.services.presence import PresencePublisher
from roomcast.services.session_registry import ConnectionHandle, Session, SessionRegistry
from roomcast.services.typing_indicator import TypingCoordinator

logger = get_logger(__name__)


class ConnectionLifecycle:
    def __init__(
        self,
        authenticator: Authenticator,
        sessions: SessionRegistry,
        presence: PresencePublisher,
        membership: MembershipCoordinator,
        typing: TypingCoordinator,
        limiter: WebSocketRateLimiter,
    ) -> None:
        self.authenticator = authenticator
        self.sessions = sessions
        self.presence = presence
        self.membership = membership
        self.typing = typing
        self.limiter = limiter

    async def authenticate(self, credential: str | None) -> AuthResult:
        """通过外部认证协作方校验凭证。

        Raises:
            AuthenticationRejected: 凭证无效，或认证服务本身出错。
        """
        try:
            return await self.authenticator.verify(credential)
        except AuthenticationRejected:
            raise
        except Exception as e:
            logger.error("认证服务异常: %s", e, exc_info=True)
            raise AuthenticationRejected("authentication unavailable") from e

    def open_session(self, connection: ConnectionHandle, auth: AuthResult) -> Session:
        """认证通过后创建会话，单播初始快照，再向所有人广播在线列表。"""
        try:
            session_id = self.sessions.create_session(connection, auth.identity, auth.is_guest)
        except DuplicateConnection:
            logger.error("同一连接重复创建会话 | conn=%s", connection.connection_id)
            raise

        session = self.sessions.get(session_id)
        self.presence.send_snapshot(session)
        self.presence.publish_user_list()
        logger.info(
            "用户上线 | user=%s | guest=%s | 在线会话: %d",
            session.username, session.is_guest, len(self.sessions),
        )
        return session

    async def connect(self, connection: ConnectionHandle, credential: str | None) -> Session:
        auth = await self.authenticate(credential)
        return self.open_session(connection, auth)

    def disconnect(self, session_id: str) -> Session | None:
        """拆除会话（幂等）：离房、清除输入状态、移除会话、广播在线状态。"""
        session = self.sessions.find(session_id)
        if session is None:
            return None

        self.membership.leave_on_disconnect(session_id)
        self.typing.clear_session(session)
        self.sessions.remove(session_id)
        self.limiter.remove_client(session_id)

        self.presence.publish_user_list()
        self.presence.publish_room_counts()
        logger.info("用户下线 | user=%s | 在线会话: %d", session.username, len(self.sessions))
        return session
