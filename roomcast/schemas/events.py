"""
roomcast.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~

实时事件协议 —— 信封格式、客户端请求体与服务端推送体。

每一帧都是一个 JSON 文本::

    {"event": "send-message", "data": {"body": "hi"}, "ack": 7}

客户端带 ``ack`` 时，服务端恰好回一帧 ``{"event": "ack", "ack": 7, "data": Acknowledgment}``。
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, StringConstraints

from roomcast.core.config import settings
from roomcast.core.errors import ChatError
from roomcast.schemas.messages import CamelModel, ChatMessage, FileAttachment

RoomName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
MessageBody = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=settings.MAX_MESSAGE_LENGTH),
]


class ClientEvent:
    """客户端 → 服务端事件名。"""

    JOIN_ROOM = "join-room"
    CREATE_ROOM = "create-room"
    SEND_MESSAGE = "send-message"
    SEND_FILE_MESSAGE = "send-file-message"
    PRIVATE_MESSAGE = "private-message"
    START_TYPING = "start-typing"
    STOP_TYPING = "stop-typing"
    ADD_REACTION = "add-reaction"
    MARK_READ = "mark-read"
    GET_READ_RECEIPTS = "get-read-receipts"
    LOAD_OLDER_MESSAGES = "load-older-messages"


class ServerEvent:
    """服务端 → 客户端事件名。"""

    ACK = "ack"
    ERROR = "error"
    ROOM_LIST = "room-list"
    ROOM_COUNTS = "room-counts"
    USER_LIST = "user-list"
    ROOM_JOINED = "room-joined"
    ROOM_HISTORY = "room-history"
    OLDER_MESSAGES = "older-messages"
    MEMBER_JOINED = "member-joined"
    MEMBER_LEFT = "member-left"
    MESSAGE = "message"
    PRIVATE_MESSAGE = "private-message"
    REACTION_UPDATE = "reaction-update"
    MESSAGE_READ = "message-read"
    READ_RECEIPTS = "read-receipts"
    TYPING_STARTED = "typing-started"
    TYPING_STOPPED = "typing-stopped"
    ROOM_CREATED = "room-created"


# ── 信封 ──────────────────────────────────────────────────────────────

class ClientEnvelope(BaseModel):
    """客户端上行帧。"""

    event: str = Field(..., min_length=1, description="事件名")
    data: dict[str, Any] = Field(default_factory=dict, description="事件负载")
    ack: int | None = Field(default=None, description="需要应答时的请求序号")


class ServerEnvelope(BaseModel):
    """服务端下行帧。"""

    event: str
    data: Any = None
    ack: int | None = None


class Acknowledgment(CamelModel):
    """只回给发起方的一次性应答。"""

    success: bool
    message_id: str | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, message_id: str | None = None) -> Acknowledgment:
        return cls(success=True, message_id=message_id)

    @classmethod
    def fail(cls, exc: ChatError) -> Acknowledgment:
        return cls(success=False, error=exc.message, code=exc.code)


# ── 客户端请求体 ──────────────────────────────────────────────────────

class EmptyPayload(CamelModel):
    pass


class JoinRoomPayload(CamelModel):
    room_name: RoomName


class CreateRoomPayload(CamelModel):
    room_name: RoomName


class SendMessagePayload(CamelModel):
    body: MessageBody
    client_message_id: str | None = Field(default=None, max_length=128)


class SendFileMessagePayload(CamelModel):
    file_ref: FileAttachment


class PrivateMessagePayload(CamelModel):
    recipient_identity: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    body: MessageBody


class AddReactionPayload(CamelModel):
    message_id: str = Field(..., min_length=1)
    emoji: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=16)]


class MessageRefPayload(CamelModel):
    """``mark-read`` / ``get-read-receipts`` 共用。"""

    message_id: str = Field(..., min_length=1)


class LoadOlderMessagesPayload(CamelModel):
    room: RoomName
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=100)


# ── 服务端推送体 ──────────────────────────────────────────────────────

class RoomListData(CamelModel):
    rooms: list[str]


class RoomCountsData(CamelModel):
    counts: dict[str, int]


class UserListData(CamelModel):
    identities: list[str]


class RoomJoinedData(CamelModel):
    room: str


class RoomHistoryData(CamelModel):
    room: str
    messages: list[ChatMessage]


class OlderMessagesData(CamelModel):
    room: str
    messages: list[ChatMessage]
    has_more: bool


class MemberEventData(CamelModel):
    identity: str
    room: str


class RoomCreatedData(CamelModel):
    room_name: str
    creator: str


class ReactionUpdateData(CamelModel):
    message_id: str
    reactions: dict[str, list[str]]


class MessageReadData(CamelModel):
    message_id: str
    reader_identity: str
    read_at: datetime


class ReadReceiptData(CamelModel):
    reader_identity: str
    read_at: datetime


class ReadReceiptsData(CamelModel):
    message_id: str
    receipts: list[ReadReceiptData]


class TypingData(CamelModel):
    identity: str
    room: str


class ErrorData(CamelModel):
    event: str
    code: str
    message: str
