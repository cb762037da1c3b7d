"""
roomcast.core.errors
~~~~~~~~~~~~~~~~~~~~

聊天核心的异常体系。

除 ``AuthenticationRejected``（断开连接）与 ``DuplicateConnection``（不变量被破坏）外，
所有异常都只影响当前这一次请求：由分发层转换为
``{"success": false, "error": ...}`` 回给发起方，不会影响其他连接。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天核心异常基类。

    Attributes:
        code: 机器可读的错误码，随失败应答一起下发给客户端。
        message: 人类可读的错误描述。
    """

    code: str = "chat_error"
    default_message: str = "request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRejected(ChatError):
    """凭证校验失败，连接将被立即关闭。"""

    code = "authentication_rejected"
    default_message = "authentication rejected"


class UnknownRoom(ChatError):
    code = "unknown_room"
    default_message = "unknown room"


class UnknownSession(ChatError):
    code = "unknown_session"
    default_message = "unknown session"


class NotInRoom(ChatError):
    code = "not_in_room"
    default_message = "not in room"


class StoreFailure(ChatError):
    """外部消息存储不可用或写入失败。"""

    code = "store_failure"
    default_message = "message store unavailable"


class RecipientOffline(ChatError):
    code = "recipient_offline"
    default_message = "recipient offline"


class DuplicateConnection(ChatError):
    """同一个连接重复创建会话，属于生命周期时序错误。"""

    code = "duplicate_connection"
    default_message = "connection already has a session"


class InvalidPayload(ChatError):
    code = "invalid_payload"
    default_message = "invalid payload"


class UnknownEvent(ChatError):
    code = "unknown_event"
    default_message = "unknown event"


class RateLimited(ChatError):
    code = "rate_limited"
    default_message = "rate limited"
