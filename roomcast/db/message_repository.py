"""
roomcast.db.message_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息持久化仓库 —— 历史消息的唯一事实来源。

封装两个 MongoDB 集合:
  - ``messages``       每条房间消息一个文档（扁平设计，便于分页）
  - ``read_receipts``  每个 (消息, 读者) 一条已读回执，唯一索引保证不重复

所有数据库异常统一转换为 ``StoreFailure``，由上层决定如何回应发送方。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from roomcast.core.errors import StoreFailure
from roomcast.core.logging import get_logger
from roomcast.schemas.messages import ChatMessage

logger = get_logger(__name__)

_MESSAGES = "messages"
_READ_RECEIPTS = "read_receipts"


class ReadReceiptRecord(TypedDict):
    """``read_receipts`` 集合中的单条记录。"""

    message_id: str
    username: str
    user_id: str | None
    room: str
    read_at: datetime


class MessageRepository:
    """房间消息与已读回执的持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._messages = db[_MESSAGES]
        self._receipts = db[_READ_RECEIPTS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._messages.create_index(
            [("room", ASCENDING), ("created_at", DESCENDING)],
            name="idx_room_time",
        )
        await self._receipts.create_index(
            [("message_id", ASCENDING), ("username", ASCENDING)],
            name="uniq_message_reader",
            unique=True,
        )
        self._indexes_created = True
        logger.debug("messages / read_receipts 索引已就绪")

    async def append(self, message: ChatMessage) -> str:
        """追加一条房间消息，返回存储分配的消息 ID。

        Raises:
            StoreFailure: 写入失败。
        """
        try:
            await self._ensure_indexes()
            result = await self._messages.insert_one(message.to_document())
        except PyMongoError as e:
            logger.error("消息写入失败 | room=%s | %s", message.room, e)
            raise StoreFailure(f"failed to store message: {e}") from e
        return str(result.inserted_id)

    async def query(
        self,
        room: str,
        before: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ChatMessage]:
        """获取房间的一页消息（页内按时间正序）。

        先按时间倒序取最近的 ``limit`` 条（跳过最新的 ``offset`` 条），再反转为正序。

        Args:
            room: 房间名。
            before: 只返回早于该时间的消息。
            limit: 最大返回条数。
            offset: 从最新一条开始跳过的条数（加载更早的消息用）。
        """
        query: dict[str, Any] = {"room": room}
        if before is not None:
            query["created_at"] = {"$lt": before}
        try:
            await self._ensure_indexes()
            cursor = (
                self._messages
                .find(query, {"read_by": 0})
                .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                .skip(offset)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            logger.error("历史查询失败 | room=%s | %s", room, e)
            raise StoreFailure(f"failed to load history: {e}") from e
        docs.reverse()
        return [ChatMessage.from_document(doc) for doc in docs]

    async def count(self, room: str) -> int:
        """获取房间的消息总数。"""
        try:
            return await self._messages.count_documents({"room": room})
        except PyMongoError as e:
            raise StoreFailure(f"failed to count messages: {e}") from e

    async def upsert_read_receipt(
        self,
        message_id: str,
        username: str,
        user_id: str | None,
        room: str,
        read_at: datetime,
    ) -> None:
        """写入或覆盖某读者对某消息的已读时间，并同步消息文档上的 ``read_by`` 列表。"""
        try:
            await self._ensure_indexes()
            await self._receipts.update_one(
                {"message_id": message_id, "username": username},
                {"$set": {"user_id": user_id, "room": room, "read_at": read_at}},
                upsert=True,
            )
            if ObjectId.is_valid(message_id):
                oid = ObjectId(message_id)
                await self._messages.update_one(
                    {"_id": oid}, {"$pull": {"read_by": {"username": username}}},
                )
                await self._messages.update_one(
                    {"_id": oid},
                    {"$push": {"read_by": {"username": username, "read_at": read_at}}},
                )
        except PyMongoError as e:
            raise StoreFailure(f"failed to store read receipt: {e}") from e

    async def get_read_receipts(self, message_id: str) -> list[ReadReceiptRecord]:
        """获取消息的全部已读回执，最近读取的在前。"""
        try:
            cursor = (
                self._receipts
                .find({"message_id": message_id}, {"_id": 0})
                .sort("read_at", DESCENDING)
            )
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            raise StoreFailure(f"failed to load read receipts: {e}") from e
