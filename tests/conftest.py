import os
import sys
from pathlib import Path

# 添加项目根目录到Python路径
project_root = str(Path(__file__).parent.parent)
sys.path.insert(0, project_root)

# 设置测试环境变量(必须在导入项目模块之前)
os.environ["STORE_BACKEND"] = "memory"  # 使用内存存储
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"  # 使用内存数据库
os.environ["AI_ZHIPU_API_KEY"] = ""

# 现在可以导入项目模块
import pytest
import pytest_asyncio
from src.collab.identity import IdentityProvider
from src.collab.lifecycle import SessionManager
from src.collab.notifier import Notifier
from src.collab.presence import MemoryPresenceRegistry
from src.collab.store import MemorySessionStore
from src.db import create_engine, create_session_factory, init_db


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def presence():
    return MemoryPresenceRegistry()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def make_manager(store, presence, clock):
    """创建已登录用户的会话管理器，测试结束后统一关闭"""
    managers = []

    def factory(user: str = "alice@example.com", idle_timeout: float = 1200, **kwargs) -> SessionManager:
        manager = SessionManager(
            store=kwargs.pop("store", store),
            presence=kwargs.pop("presence", presence),
            identity=IdentityProvider(user),
            notifier=Notifier(),
            idle_timeout=idle_timeout,
            idle_watch=False,
            clock=clock,
            heartbeat_interval=kwargs.pop("heartbeat_interval", 0),
            **kwargs
        )
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        await manager.aclose()


@pytest_asyncio.fixture
async def session_factory():
    """内存 sqlite 数据库的会话工厂"""
    engine = create_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()
