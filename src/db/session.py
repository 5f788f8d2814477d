from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from src.config.settings import settings


def create_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """创建异步引擎，sqlite 内存库共享单连接"""
    url = url or settings.db.DB_URL
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
    return create_async_engine(
        url,
        echo=settings.db.DB_ECHO if echo is None else echo,
        **kwargs
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """创建异步会话工厂"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


# 创建异步引擎
engine = create_engine()

# 创建异步会话工厂
AsyncSessionLocal = create_session_factory(engine)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话的依赖函数"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
