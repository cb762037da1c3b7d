"""
roomcast.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统 —— 组装所有核心组件，并把客户端事件分发到对应的处理函数。

在 FastAPI lifespan 中初始化一次并挂载于 ``app.state.chat_system``。

分发约定:
  - 每个事件先用对应的 Pydantic 模型校验负载
  - 处理函数返回 ``Acknowledgment``；``ChatError`` / 校验失败统一转换为失败应答
  - 失败只回给发起方，不影响其他连接
"""
from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from roomcast.core.config import Settings, settings as default_settings
from roomcast.core.errors import (
    ChatError,
    DuplicateConnection,
    InvalidPayload,
    NotInRoom,
    RateLimited,
    UnknownEvent,
    UnknownRoom,
)
from roomcast.core.logging import get_logger
from roomcast.core.rate_limit import WebSocketRateLimiter
from roomcast.db.message_repository import MessageRepository
from roomcast.schemas.events import (
    Acknowledgment,
    AddReactionPayload,
    ClientEvent,
    CreateRoomPayload,
    EmptyPayload,
    JoinRoomPayload,
    LoadOlderMessagesPayload,
    MessageReadData,
    MessageRefPayload,
    PrivateMessagePayload,
    ReactionUpdateData,
    ReadReceiptsData,
    SendFileMessagePayload,
    SendMessagePayload,
    ServerEvent,
)
from roomcast.services.auth import Authenticator
from roomcast.services.broadcaster import Broadcaster
from roomcast.services.lifecycle import ConnectionLifecycle
from roomcast.services.membership import MembershipCoordinator
from roomcast.services.message_router import AIResponder, MessageRouter
from roomcast.services.presence import PresencePublisher
from roomcast.services.reactions import ReactionStore
from roomcast.services.read_receipts import ReadReceiptTracker
from roomcast.services.room_registry import RoomRegistry
from roomcast.services.session_registry import Session, SessionRegistry
from roomcast.services.typing_indicator import TypingCoordinator

logger = get_logger(__name__)

Handler = Callable[[Session, Any], Awaitable[Acknowledgment]]


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "data"
    return f"invalid {location}: {first['msg']}"


class ChatSystem:
    """聊天系统（全局单例，挂载于 ``app.state``）。

    Attributes:
        sessions: 会话注册表。
        rooms: 房间注册表。
        lifecycle: 连接生命周期控制器，WebSocket 端点通过它建立 / 拆除会话。
    """

    def __init__(
        self,
        repo: MessageRepository,
        authenticator: Authenticator,
        responder: AIResponder | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.started_at: float = time.monotonic()

        self.sessions = SessionRegistry()
        self.rooms = RoomRegistry(seed=config.DEFAULT_ROOMS)
        self.broadcaster = Broadcaster(self.sessions)
        self.presence = PresencePublisher(self.sessions, self.rooms, self.broadcaster)
        self.membership = MembershipCoordinator(
            self.sessions, self.rooms, self.broadcaster, self.presence, repo,
            history_size=config.HISTORY_PAGE_SIZE,
        )
        self.router = MessageRouter(
            self.sessions, self.broadcaster, repo, responder,
            bot_name=config.AI_BOT_NAME,
            mention_pattern=config.AI_MENTION_PATTERN,
            reply_delay=config.AI_REPLY_DELAY,
            context_size=config.AI_CONTEXT_SIZE,
            fallback_reply=config.AI_FALLBACK_REPLY,
        )
        self.typing = TypingCoordinator(
            self.sessions, self.broadcaster, timeout=config.TYPING_TIMEOUT,
        )
        self.reactions = ReactionStore()
        self.receipts = ReadReceiptTracker(repo)
        self.limiter = WebSocketRateLimiter(interval_seconds=config.WS_RATE_LIMIT_INTERVAL)
        self.lifecycle = ConnectionLifecycle(
            authenticator, self.sessions, self.presence,
            self.membership, self.typing, self.limiter,
        )

        self._routes: dict[str, tuple[type[BaseModel], Handler]] = {
            ClientEvent.JOIN_ROOM: (JoinRoomPayload, self._on_join_room),
            ClientEvent.CREATE_ROOM: (CreateRoomPayload, self._on_create_room),
            ClientEvent.SEND_MESSAGE: (SendMessagePayload, self._on_send_message),
            ClientEvent.SEND_FILE_MESSAGE: (SendFileMessagePayload, self._on_send_file_message),
            ClientEvent.PRIVATE_MESSAGE: (PrivateMessagePayload, self._on_private_message),
            ClientEvent.START_TYPING: (EmptyPayload, self._on_start_typing),
            ClientEvent.STOP_TYPING: (EmptyPayload, self._on_stop_typing),
            ClientEvent.ADD_REACTION: (AddReactionPayload, self._on_add_reaction),
            ClientEvent.MARK_READ: (MessageRefPayload, self._on_mark_read),
            ClientEvent.GET_READ_RECEIPTS: (MessageRefPayload, self._on_get_read_receipts),
            ClientEvent.LOAD_OLDER_MESSAGES: (LoadOlderMessagesPayload, self._on_load_older_messages),
        }

    # ── 分发入口 ──────────────────────────────────────────────────────

    async def handle_event(
        self,
        session_id: str,
        event: str,
        data: dict[str, Any] | None = None,
    ) -> Acknowledgment:
        """处理一个客户端事件，返回只属于发起方的应答。"""
        try:
            session = self.sessions.get(session_id)
            route = self._routes.get(event)
            if route is None:
                raise UnknownEvent(f"unknown event: {event}")

            payload_model, handler = route
            try:
                payload = payload_model.model_validate(data or {})
            except ValidationError as e:
                raise InvalidPayload(_summarize(e)) from e
            return await handler(session, payload)
        except DuplicateConnection:
            raise
        except ChatError as e:
            logger.info("请求失败 | event=%s | code=%s | %s", event, e.code, e.message)
            return Acknowledgment.fail(e)

    async def shutdown(self) -> None:
        """关闭前取消定时器并等待后台任务。"""
        self.typing.cancel_all()
        await self.router.drain()
        await self.receipts.drain()

    # ── 处理函数 ──────────────────────────────────────────────────────

    async def _on_join_room(self, session: Session, payload: JoinRoomPayload) -> Acknowledgment:
        if not self.rooms.exists(payload.room_name):
            raise UnknownRoom(f"unknown room: {payload.room_name}")
        if session.current_room not in (None, payload.room_name):
            self.typing.clear_session(session)
        await self.membership.join(session.session_id, payload.room_name)
        return Acknowledgment.ok()

    async def _on_create_room(self, session: Session, payload: CreateRoomPayload) -> Acknowledgment:
        self.membership.create_room(payload.room_name, session.username)
        return Acknowledgment.ok()

    async def _on_send_message(self, session: Session, payload: SendMessagePayload) -> Acknowledgment:
        self._check_rate(session)
        self.typing.stop_typing(session.session_id)
        return await self.router.send_room_message(
            session.session_id, payload.body, payload.client_message_id,
        )

    async def _on_send_file_message(
        self, session: Session, payload: SendFileMessagePayload,
    ) -> Acknowledgment:
        self._check_rate(session)
        return await self.router.send_file_message(session.session_id, payload.file_ref)

    async def _on_private_message(
        self, session: Session, payload: PrivateMessagePayload,
    ) -> Acknowledgment:
        self._check_rate(session)
        return self.router.send_private_message(
            session.session_id, payload.recipient_identity, payload.body,
        )

    async def _on_start_typing(self, session: Session, payload: EmptyPayload) -> Acknowledgment:
        self.typing.start_typing(session.session_id)
        return Acknowledgment.ok()

    async def _on_stop_typing(self, session: Session, payload: EmptyPayload) -> Acknowledgment:
        self.typing.stop_typing(session.session_id)
        return Acknowledgment.ok()

    async def _on_add_reaction(self, session: Session, payload: AddReactionPayload) -> Acknowledgment:
        room = self._require_room(session)
        reactions = self.reactions.toggle(payload.message_id, payload.emoji, session.username)
        self.broadcaster.to_room(
            room,
            ServerEvent.REACTION_UPDATE,
            ReactionUpdateData(message_id=payload.message_id, reactions=reactions),
        )
        return Acknowledgment.ok(payload.message_id)

    async def _on_mark_read(self, session: Session, payload: MessageRefPayload) -> Acknowledgment:
        room = self._require_room(session)
        read_at = self.receipts.mark_read(payload.message_id, session.identity, room)
        self.broadcaster.to_room(
            room,
            ServerEvent.MESSAGE_READ,
            MessageReadData(
                message_id=payload.message_id,
                reader_identity=session.username,
                read_at=read_at,
            ),
        )
        return Acknowledgment.ok(payload.message_id)

    async def _on_get_read_receipts(
        self, session: Session, payload: MessageRefPayload,
    ) -> Acknowledgment:
        receipts = await self.receipts.get_receipts(payload.message_id)
        # await 期间连接可能已断开，send 会静默丢弃
        session.send(
            ServerEvent.READ_RECEIPTS,
            ReadReceiptsData(message_id=payload.message_id, receipts=receipts),
        )
        return Acknowledgment.ok(payload.message_id)

    async def _on_load_older_messages(
        self, session: Session, payload: LoadOlderMessagesPayload,
    ) -> Acknowledgment:
        await self.membership.load_older(
            session.session_id, payload.room, payload.offset, payload.limit,
        )
        return Acknowledgment.ok()

    # ── 内部 ──────────────────────────────────────────────────────────

    def _require_room(self, session: Session) -> str:
        if session.current_room is None:
            raise NotInRoom()
        return session.current_room

    def _check_rate(self, session: Session) -> None:
        if not self.limiter.is_allowed(session.session_id):
            raise RateLimited()

    # ── 只读统计（REST 用）────────────────────────────────────────────

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at
