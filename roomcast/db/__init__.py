"""
roomcast.db
~~~~~~~~~~~

消息存储的 MongoDB 连接。

进程内只有一个 ``AsyncIOMotorClient``：lifespan 启动时 ``connect_mongo()``，
关闭时 ``close_mongo()``。客户端以 ``tz_aware=True`` 创建，读出的时间都带 UTC 时区。
"""
from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from roomcast.core.config import settings
from roomcast.core.errors import StoreFailure
from roomcast.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


async def connect_mongo() -> None:
    """创建客户端并 ping 一次，存储不可达时启动失败。

    Raises:
        StoreFailure: 在 ``MONGO_TIMEOUT_MS`` 内没有可用节点。
    """
    global _client
    client: AsyncIOMotorClient = AsyncIOMotorClient(
        settings.MONGO_URI,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
    )
    try:
        info = await client.server_info()
    except PyMongoError as e:
        client.close()
        logger.error("MongoDB 不可达: %s", e)
        raise StoreFailure(f"message store unreachable: {e}") from e

    _client = client
    # 只记录库名与版本，连接串可能含密码
    logger.info("MongoDB 已连接 | db=%s | version=%s", settings.MONGO_DB_NAME, info.get("version"))


async def close_mongo() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """消息仓库使用的数据库。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB is not connected, call connect_mongo() first")
    return _client[settings.MONGO_DB_NAME]
