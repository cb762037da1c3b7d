"""
roomcast.schemas.messages
~~~~~~~~~~~~~~~~~~~~~~~~~

核心内存中的消息模型。

一条消息要么属于某个房间，要么是一对一私聊，二者互斥；
投递状态只允许 ``pending → acknowledged`` 或 ``pending → failed`` 单向流转。
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

MessageKind = Literal["text", "file", "notification", "ai"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """线上 JSON 使用 camelCase，Python 侧使用 snake_case。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class FileAttachment(CamelModel):
    """已上传文件的元数据引用（文件本体由外部存储负责）。"""

    name: str = Field(..., min_length=1, max_length=255, description="文件名")
    url: str = Field(..., min_length=1, description="文件访问地址")
    size: int | None = Field(default=None, ge=0, description="文件大小（字节）")
    mime_type: str | None = Field(default=None, description="MIME 类型")


class ChatMessage(CamelModel):
    """一条聊天消息。

    Attributes:
        id: 存储分配的消息 ID，持久化成功前为 ``None``。
        client_message_id: 客户端生成的临时 ID，用于前端对账。
        author: 作者用户名。
        user_id: 作者稳定 ID，访客为 ``None``。
        room: 房间名（房间消息）。
        recipient: 接收方用户名（私聊消息）。
        body: 文本内容。
        file: 文件附件引用。
        kind: 消息类型。
        created_at: 服务端时间戳。
        status: 投递状态。
    """

    id: str | None = None
    client_message_id: str | None = None
    author: str
    user_id: str | None = None
    room: str | None = None
    recipient: str | None = None
    body: str = ""
    file: FileAttachment | None = None
    kind: MessageKind = "text"
    created_at: datetime = Field(default_factory=utcnow)
    status: DeliveryStatus = DeliveryStatus.PENDING

    @model_validator(mode="after")
    def check_scope(self) -> ChatMessage:
        if (self.room is None) == (self.recipient is None):
            raise ValueError("a message is either room-scoped or private, not both")
        return self

    @property
    def is_private(self) -> bool:
        return self.recipient is not None

    def mark_acknowledged(self, stored_id: str) -> None:
        """存储确认写入后调用。"""
        if self.status is not DeliveryStatus.PENDING:
            raise ValueError(f"cannot acknowledge a {self.status.value} message")
        self.id = stored_id
        self.status = DeliveryStatus.ACKNOWLEDGED

    def mark_failed(self) -> None:
        if self.status is not DeliveryStatus.PENDING:
            raise ValueError(f"cannot fail a {self.status.value} message")
        self.status = DeliveryStatus.FAILED

    def to_document(self) -> dict[str, Any]:
        """转换为 MongoDB 文档（``_id`` 由数据库分配）。"""
        return {
            "client_message_id": self.client_message_id,
            "room": self.room,
            "author": self.author,
            "user_id": self.user_id,
            "body": self.body,
            "file": self.file.model_dump() if self.file else None,
            "kind": self.kind,
            "created_at": self.created_at,
            "read_by": [],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> ChatMessage:
        """从 MongoDB 文档恢复（已持久化的消息一律视为 acknowledged）。"""
        created_at: datetime = doc["created_at"]
        # motor 默认返回 naive datetime（UTC）
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(doc["_id"]),
            client_message_id=doc.get("client_message_id"),
            author=doc["author"],
            user_id=doc.get("user_id"),
            room=doc["room"],
            body=doc.get("body", ""),
            file=doc.get("file"),
            kind=doc.get("kind", "text"),
            created_at=created_at,
            status=DeliveryStatus.ACKNOWLEDGED,
        )
