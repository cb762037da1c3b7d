"""
roomcast.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接句柄 —— 每个连接一个有界发送队列 + 一个写协程。

核心层只调用同步的 ``send()``（入队即返回），真正的网络写入由
``writer_loop()`` 在独立协程中完成。这样一次广播在同一个同步片段内
入队到所有接收者，房间内的事件顺序就不会被慢连接打乱。
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any

from fastapi import WebSocket

from roomcast.core.logging import get_logger
from roomcast.schemas.events import Acknowledgment, ErrorData, ServerEnvelope, ServerEvent

logger = get_logger(__name__)


class ClientConnection:
    """单个 WebSocket 连接的发送端。

    Attributes:
        connection_id: 连接唯一标识。
        closed: 连接是否已关闭；关闭后所有 ``send()`` 都是空操作。
    """

    def __init__(
        self,
        websocket: WebSocket,
        max_queue: int = 256,
        connection_id: str | None = None,
    ) -> None:
        self.websocket = websocket
        self.connection_id: str = connection_id or f"ws-{uuid.uuid4().hex[:8]}"
        self.closed: bool = False
        # 接收端等待该事件，服务端主动关闭时立即结束读循环
        self._closed_event = asyncio.Event()
        # None 是写协程的结束信号
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_queue)

    def send(self, event: str, data: Any = None, ack: int | None = None) -> None:
        """序列化并入队一个事件，不等待网络写入。"""
        if self.closed:
            return
        frame = ServerEnvelope(event=event, data=data, ack=ack).model_dump_json(by_alias=True)
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            # 消费过慢的连接直接断开，不能拖慢其他人
            logger.warning("发送队列已满，关闭慢连接 | conn=%s", self.connection_id)
            self.close()

    def send_ack(self, ack: int, result: Acknowledgment) -> None:
        self.send(ServerEvent.ACK, result, ack=ack)

    def send_error(self, event: str, result: Acknowledgment) -> None:
        self.send(
            ServerEvent.ERROR,
            ErrorData(event=event, code=result.code or "error", message=result.error or ""),
        )

    def close(self) -> None:
        """标记关闭，并唤醒读循环与写协程退出。"""
        if self.closed:
            return
        self.closed = True
        self._closed_event.set()
        if self._queue.full():
            # 慢连接：未发送的帧直接丢弃，保证结束信号能入队
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def wait_closed(self) -> None:
        """等待连接被关闭（发送队列溢出或写入失败）。"""
        await self._closed_event.wait()

    async def writer_loop(self) -> None:
        """把队列中的帧依次写入 WebSocket，直到收到结束信号或写入失败。"""
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            if not await self._write(frame):
                break

    async def _write(self, frame: str) -> bool:
        try:
            await self.websocket.send_text(frame)
            return True
        except Exception as e:
            logger.info("写入失败，连接视为已断开 | conn=%s | %s", self.connection_id, e)
            self.closed = True
            self._closed_event.set()
            return False
