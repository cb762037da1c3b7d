"""
roomcast.schemas.directory
~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 查询接口的响应模型（在线用户、房间、统计）。
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class UserInfoData(BaseModel):
    """在线用户信息。"""

    username: str = Field(..., description="用户名")
    is_guest: bool = Field(..., description="是否为访客")
    joined_at: datetime = Field(..., description="上线时间")
    room: str | None = Field(default=None, description="当前所在房间")


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    name: str = Field(..., description="房间名")
    member_count: int = Field(..., description="当前在房人数")
    created_by: str = Field(..., description="创建者")
    created_at: datetime = Field(..., description="创建时间")


class StatsData(BaseModel):
    """聊天系统运行统计。"""

    total_users: int = Field(..., description="在线会话数")
    total_rooms: int = Field(..., description="房间数")
    typing_users: dict[str, list[str]] = Field(..., description="各房间正在输入的用户")
    uptime: float = Field(..., description="运行时长（秒）")
