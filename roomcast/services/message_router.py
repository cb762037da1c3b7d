"""
roomcast.services.message_router
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息路由 —— 房间消息、文件消息、私聊，以及 @AI 自动回复。

房间消息遵循 "先持久化、后广播"：只有存储确认写入后才会广播，
写入失败只通过应答告知发送方，不会出现半广播。
广播与确认处于同一个同步片段，房间内广播顺序即存储确认顺序。
"""
from __future__ import annotations

import asyncio
import re
import uuid
from typing import Protocol

from roomcast.core.errors import NotInRoom, RecipientOffline, StoreFailure
from roomcast.core.logging import get_logger
from roomcast.db.message_repository import MessageRepository
from roomcast.schemas.events import Acknowledgment, ServerEvent
from roomcast.schemas.messages import ChatMessage, FileAttachment
from roomcast.services.broadcaster import Broadcaster
from roomcast.services.session_registry import Session, SessionRegistry

logger = get_logger(__name__)


class AIResponder(Protocol):
    """AI 回复协作方：根据提问和最近上下文生成回复文本，可能失败。"""

    async def generate(self, prompt: str, recent_context: list[ChatMessage]) -> str: ...


class MessageRouter:
    """消息路由器。

    Attributes:
        bot_name: AI 回复使用的作者名。
        reply_delay: 触发 AI 到开始生成之间的固定延迟（秒）。
        context_size: 发给 AI 的最近消息条数。
        fallback_reply: AI 失败时的兜底文案。
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        broadcaster: Broadcaster,
        repo: MessageRepository,
        responder: AIResponder | None = None,
        *,
        bot_name: str = "AI Assistant",
        mention_pattern: str = r"@ai\b",
        reply_delay: float = 1.0,
        context_size: int = 10,
        fallback_reply: str = "Sorry, I'm having trouble responding right now.",
    ) -> None:
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.repo = repo
        self.responder = responder
        self.bot_name = bot_name
        self.reply_delay = reply_delay
        self.context_size = context_size
        self.fallback_reply = fallback_reply
        self._mention = re.compile(mention_pattern, re.IGNORECASE)
        self._ai_tasks: set[asyncio.Task[None]] = set()

    # ── 房间消息 ──────────────────────────────────────────────────────

    async def send_room_message(
        self,
        session_id: str,
        body: str,
        client_message_id: str | None = None,
    ) -> Acknowledgment:
        """发送房间文本消息。

        Raises:
            NotInRoom: 发送方尚未进入任何房间。
        """
        session = self._require_room(session_id)
        message = ChatMessage(
            client_message_id=client_message_id,
            author=session.username,
            user_id=session.identity.user_id,
            room=session.current_room,
            body=body,
            kind="text",
        )
        ack = await self._persist_and_broadcast(message)
        if ack.success and self._mention.search(body):
            self._schedule_ai_reply(message.room, body)
        return ack

    async def send_file_message(self, session_id: str, file: FileAttachment) -> Acknowledgment:
        """发送文件消息（文件本体已由外部存储保存，这里只处理元数据）。"""
        session = self._require_room(session_id)
        message = ChatMessage(
            author=session.username,
            user_id=session.identity.user_id,
            room=session.current_room,
            body=file.name,
            file=file,
            kind="file",
        )
        return await self._persist_and_broadcast(message)

    # ── 私聊 ──────────────────────────────────────────────────────────

    def send_private_message(
        self,
        sender_session_id: str,
        recipient: str,
        body: str,
    ) -> Acknowledgment:
        """一对一私聊：投递给接收方所有在线会话，并回显给发送方。

        私聊不落库、不进入任何房间历史，也不做离线投递。

        Raises:
            RecipientOffline: 接收方当前没有在线会话。
        """
        sender = self.sessions.get(sender_session_id)
        targets = self.sessions.find_by_identity(recipient)
        if not targets:
            logger.info("私聊目标不在线 | from=%s | to=%s", sender.username, recipient)
            raise RecipientOffline()

        message = ChatMessage(
            author=sender.username,
            user_id=sender.identity.user_id,
            recipient=recipient,
            body=body,
        )
        message.mark_acknowledged(uuid.uuid4().hex)

        # 给自己发私聊时只投递一次
        receivers: dict[str, Session] = {s.session_id: s for s in targets}
        receivers.setdefault(sender.session_id, sender)
        for session in receivers.values():
            session.send(ServerEvent.PRIVATE_MESSAGE, message)
        return Acknowledgment.ok(message.id)

    # ── AI 回复 ───────────────────────────────────────────────────────

    def _schedule_ai_reply(self, room: str, body: str) -> None:
        task = asyncio.create_task(self._reply_with_ai(room, body))
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)

    async def _reply_with_ai(self, room: str, body: str) -> None:
        await asyncio.sleep(self.reply_delay)
        prompt = self._mention.sub("", body).strip()
        reply = await self._generate(prompt, room)

        message = ChatMessage(author=self.bot_name, room=room, body=reply, kind="ai")
        ack = await self._persist_and_broadcast(message)
        if not ack.success:
            logger.warning("AI 回复写入失败 | room=%s | %s", room, ack.error)

    async def _generate(self, prompt: str, room: str) -> str:
        if self.responder is None:
            return self.fallback_reply
        try:
            context: list[ChatMessage] = []
            if self.context_size:
                context = await self.repo.query(room, limit=self.context_size)
            reply = await self.responder.generate(prompt, context)
        except Exception as e:
            # AI 协作方的任何失败都降级为兜底文案
            logger.error("AI 回复生成失败 | room=%s | %s", room, e, exc_info=True)
            return self.fallback_reply
        return reply.strip() or self.fallback_reply

    async def drain(self) -> None:
        """等待所有进行中的 AI 回复完成。"""
        if self._ai_tasks:
            await asyncio.gather(*self._ai_tasks, return_exceptions=True)

    # ── 内部 ──────────────────────────────────────────────────────────

    def _require_room(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session.current_room is None:
            raise NotInRoom()
        return session

    async def _persist_and_broadcast(self, message: ChatMessage) -> Acknowledgment:
        try:
            stored_id = await self.repo.append(message)
        except StoreFailure as e:
            message.mark_failed()
            return Acknowledgment.fail(e)

        message.mark_acknowledged(stored_id)
        self.broadcaster.to_room(message.room, ServerEvent.MESSAGE, message)
        return Acknowledgment.ok(stored_id)
