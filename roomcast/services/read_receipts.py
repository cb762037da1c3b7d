"""
roomcast.services.read_receipts
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

已读回执跟踪 —— 消息 ID → {读者: 已读时间}。

内存表是持久化存储的缓存：``mark_read`` 先更新内存，再在后台异步写库；
``get_receipts`` 以数据库为准，数据库不可用时退回内存缓存。
"""
from __future__ import annotations

import asyncio
from datetime import datetime

from roomcast.core.errors import StoreFailure
from roomcast.core.logging import get_logger
from roomcast.db.message_repository import MessageRepository
from roomcast.schemas.events import ReadReceiptData
from roomcast.schemas.messages import utcnow
from roomcast.services.session_registry import Identity

logger = get_logger(__name__)


class ReadReceiptTracker:
    """已读回执跟踪器。

    Attributes:
        repo: 持久化仓库，用于异步写入与查询。
    """

    def __init__(self, repo: MessageRepository) -> None:
        self.repo = repo
        self._receipts: dict[str, dict[str, datetime]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def mark_read(
        self,
        message_id: str,
        reader: Identity,
        room: str,
        read_at: datetime | None = None,
    ) -> datetime:
        """记录已读（同一读者重复上报只覆盖时间），并在后台写库。

        Returns:
            实际记录的已读时间。
        """
        read_at = read_at or utcnow()
        self._receipts.setdefault(message_id, {})[reader.username] = read_at

        task = asyncio.create_task(self._persist(message_id, reader, room, read_at))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return read_at

    async def _persist(
        self,
        message_id: str,
        reader: Identity,
        room: str,
        read_at: datetime,
    ) -> None:
        try:
            await self.repo.upsert_read_receipt(
                message_id, reader.username, reader.user_id, room, read_at,
            )
        except StoreFailure as e:
            logger.warning("已读回执写库失败 | message=%s | reader=%s | %s",
                           message_id, reader.username, e)

    def cached(self, message_id: str) -> list[ReadReceiptData]:
        """内存中的回执，最近读取的在前。"""
        entries = self._receipts.get(message_id, {})
        ordered = sorted(entries.items(), key=lambda item: item[1], reverse=True)
        return [
            ReadReceiptData(reader_identity=username, read_at=read_at)
            for username, read_at in ordered
        ]

    async def get_receipts(self, message_id: str) -> list[ReadReceiptData]:
        """查询消息的已读回执（最近读取的在前）。"""
        try:
            records = await self.repo.get_read_receipts(message_id)
        except StoreFailure as e:
            logger.warning("已读回执查询失败，使用内存缓存 | message=%s | %s", message_id, e)
            return self.cached(message_id)
        return [
            ReadReceiptData(reader_identity=r["username"], read_at=r["read_at"])
            for r in records
        ]

    async def drain(self) -> None:
        """等待所有后台写库任务完成（关闭时调用）。"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
