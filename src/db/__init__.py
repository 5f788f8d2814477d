from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine
from .base import Base
from .models import SessionRecord, ParticipantRecord
from .session import AsyncSessionLocal, get_db, engine, create_engine, create_session_factory
from loguru import logger

__all__ = [
    "Base",
    "SessionRecord",
    "ParticipantRecord",
    "AsyncSessionLocal",
    "get_db",
    "engine",
    "create_engine",
    "create_session_factory",
    "init_db",
]

# 创建数据库表
async def init_db(bind: Optional[AsyncEngine] = None):
    """初始化数据库"""
    try:
        logger.info("开始初始化数据库...")
        async with (bind or engine).begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("数据库初始化成功")
    except Exception as e:
        logger.error(f"数据库初始化失败: {str(e)}")
        raise
