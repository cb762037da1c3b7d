"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— mock 掉所有外部协作方（MongoDB 消息存储、Gemini），
用内存中的假连接记录每个会话收到的事件，使单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import itertools
import os
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from roomcast.core.config import Settings  # noqa: E402
from roomcast.services.auth import AuthResult, GuestAuthenticator  # noqa: E402
from roomcast.services.chat_system import ChatSystem  # noqa: E402
from roomcast.services.session_registry import Identity  # noqa: E402

_connection_ids = itertools.count(1)


class FakeConnection:
    """记录所有下发事件的假连接。"""

    def __init__(self, connection_id: str | None = None) -> None:
        self.connection_id = connection_id or f"conn-{next(_connection_ids)}"
        self.events: list[tuple[str, Any]] = []
        self.closed = False

    def send(self, event: str, data: Any = None) -> None:
        if self.closed:
            return
        self.events.append((event, data))

    def of(self, event: str) -> list[Any]:
        """返回某类事件的全部负载（按收到顺序）。"""
        return [data for name, data in self.events if name == event]

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture()
def test_settings() -> Settings:
    """测试专用配置：关闭限流、AI 无延迟、输入状态快速过期。"""
    return Settings(
        DEFAULT_ROOMS=["general", "random"],
        WS_RATE_LIMIT_INTERVAL=0,
        AI_REPLY_DELAY=0,
        AI_CONTEXT_SIZE=2,
        TYPING_TIMEOUT=0.05,
        HISTORY_PAGE_SIZE=50,
    )


@pytest.fixture()
def mock_repo() -> MagicMock:
    """mock 的消息存储，append 依次分配 msg-1、msg-2 ..."""
    repo = MagicMock()
    ids = itertools.count(1)

    async def _append(message: Any) -> str:
        return f"msg-{next(ids)}"

    repo.append = AsyncMock(side_effect=_append)
    repo.query = AsyncMock(return_value=[])
    repo.count = AsyncMock(return_value=0)
    repo.upsert_read_receipt = AsyncMock()
    repo.get_read_receipts = AsyncMock(return_value=[])
    return repo


@pytest.fixture()
def mock_responder() -> MagicMock:
    responder = MagicMock()
    responder.generate = AsyncMock(return_value="Hello from the assistant")
    return responder


@pytest.fixture()
def chat_system(
    mock_repo: MagicMock,
    mock_responder: MagicMock,
    test_settings: Settings,
) -> ChatSystem:
    return ChatSystem(
        repo=mock_repo,
        authenticator=GuestAuthenticator(),
        responder=mock_responder,
        config=test_settings,
    )


@pytest.fixture()
def connect(chat_system: ChatSystem) -> Callable[..., tuple[str, FakeConnection]]:
    """以已认证身份建立一个会话，返回 (session_id, 假连接)。"""

    def _connect(username: str, user_id: str | None = None) -> tuple[str, FakeConnection]:
        connection = FakeConnection()
        auth = AuthResult(
            identity=Identity(username=username, user_id=user_id),
            is_guest=user_id is None,
        )
        session = chat_system.lifecycle.open_session(connection, auth)
        return session.session_id, connection

    return _connect
