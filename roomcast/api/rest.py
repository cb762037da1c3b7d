"""
roomcast.api.rest
~~~~~~~~~~~~~~~~~

聊天系统 REST 查询接口 —— 只读，全部数据来自内存注册表。

端点:
  - ``GET /users``  → 在线用户列表
  - ``GET /rooms``  → 房间列表与人数
  - ``GET /stats``  → 运行统计
"""
from fastapi import APIRouter, Depends, Request

from roomcast.api.deps import get_chat_system
from roomcast.core.rate_limit import limiter
from roomcast.schemas.api_response import ApiResponse
from roomcast.schemas.directory import RoomInfoData, StatsData, UserInfoData
from roomcast.services.chat_system import ChatSystem

router: APIRouter = APIRouter()


@router.get("/users", summary="获取在线用户", response_model=ApiResponse[list[UserInfoData]])
@limiter.limit("10/second")
async def list_users(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回当前所有在线会话的用户信息。"""
    users = [
        UserInfoData(
            username=session.username,
            is_guest=session.is_guest,
            joined_at=session.joined_at,
            room=session.current_room,
        )
        for session in system.sessions
    ]
    return ApiResponse.ok(data=users)


@router.get("/rooms", summary="获取房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回所有房间及其当前在房人数。"""
    rooms = []
    for name in system.rooms.list_rooms():
        room = system.rooms.get(name)
        rooms.append(
            RoomInfoData(
                name=room.name,
                member_count=room.member_count,
                created_by=room.created_by,
                created_at=room.created_at,
            ),
        )
    return ApiResponse.ok(data=rooms)


@router.get("/stats", summary="获取运行统计", response_model=ApiResponse[StatsData])
@limiter.limit("5/second")
async def chat_stats(request: Request, system: ChatSystem = Depends(get_chat_system)):
    """返回在线人数、房间数、输入状态与运行时长。"""
    return ApiResponse.ok(
        data=StatsData(
            total_users=len(system.sessions),
            total_rooms=len(system.rooms),
            typing_users=system.typing.snapshot(),
            uptime=round(system.uptime_seconds, 1),
        ),
    )
