"""
roomcast.api.ws
~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 群聊事件通道。

连接地址 ``/ws?token=<凭证>``（也可使用 ``Authorization: Bearer <凭证>`` 头）。
认证通过前不处理任何事件；认证失败以关闭码 ``4401`` 断开。

帧协议（JSON 文本）::

    → {"event": "send-message", "data": {"body": "hi"}, "ack": 1}
    ← {"event": "ack", "ack": 1, "data": {"success": true, "messageId": "..."}}
    ← {"event": "message", "data": {...}, "ack": null}
"""
from __future__ import annotations

import asyncio
import contextlib

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from roomcast.core.config import settings
from roomcast.core.errors import AuthenticationRejected, InvalidPayload
from roomcast.core.logging import connection_id_ctx_var, get_logger
from roomcast.schemas.events import Acknowledgment, ClientEnvelope
from roomcast.services.chat_system import ChatSystem
from roomcast.services.connection import ClientConnection

logger = get_logger(__name__)

router: APIRouter = APIRouter()

# 认证失败的关闭码（4000-4999 为应用自定义区间）
AUTH_REJECTED_CLOSE_CODE: int = 4401


def _bearer_token(header: str | None) -> str | None:
    if header and header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket, token: str | None = None) -> None:
    """WebSocket 群聊端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        token: 查询参数中的凭证。
    """
    system: ChatSystem = websocket.app.state.chat_system
    connection = ClientConnection(websocket, max_queue=settings.OUTBOUND_QUEUE_SIZE)
    ctx_token = connection_id_ctx_var.set(connection.connection_id)

    try:
        await websocket.accept()
        credential = token or _bearer_token(websocket.headers.get("authorization"))
        try:
            auth = await system.lifecycle.authenticate(credential)
        except AuthenticationRejected as e:
            logger.info("认证失败，关闭连接: %s", e.message)
            await websocket.close(code=AUTH_REJECTED_CLOSE_CODE, reason=e.message)
            return

        session = system.lifecycle.open_session(connection, auth)
        writer = asyncio.create_task(connection.writer_loop())
        try:
            await _receive_loop(websocket, connection, system, session.session_id)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 异常: %s", e, exc_info=True)
        finally:
            # 优雅断开与异常断开走同一条清理路径
            system.lifecycle.disconnect(session.session_id)
            connection.close()
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
    finally:
        connection_id_ctx_var.reset(ctx_token)


async def _receive_loop(
    websocket: WebSocket,
    connection: ClientConnection,
    system: ChatSystem,
    session_id: str,
) -> None:
    """逐帧读取并处理客户端事件，同一连接内按到达顺序处理。"""
    while not connection.closed:
        raw = await _next_frame(websocket, connection)
        if raw is None:
            break
        try:
            envelope = ClientEnvelope.model_validate_json(raw)
        except ValidationError:
            connection.send_error("unknown", Acknowledgment.fail(InvalidPayload("malformed frame")))
            continue

        result = await system.handle_event(session_id, envelope.event, envelope.data)
        if envelope.ack is not None:
            connection.send_ack(envelope.ack, result)
        elif not result.success:
            connection.send_error(envelope.event, result)

    # 连接被服务端关闭（如发送队列溢出）
    await websocket.close()


async def _next_frame(websocket: WebSocket, connection: ClientConnection) -> str | None:
    """等待下一帧；连接先被服务端关闭时返回 ``None``。

    只有等待读取这一步可以被打断，已开始处理的事件（如写库）不会被取消。
    """
    receive = asyncio.ensure_future(websocket.receive_text())
    closed = asyncio.ensure_future(connection.wait_closed())
    try:
        await asyncio.wait({receive, closed}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        closed.cancel()
        if not receive.done():
            receive.cancel()
            await asyncio.wait({receive})
    if receive.cancelled():
        logger.info("连接已被服务端关闭，停止读取 | conn=%s", connection.connection_id)
        return None
    return receive.result()
