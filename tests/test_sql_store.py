import asyncio
from datetime import timedelta
import pytest
from src.collab.errors import SessionExistsError, SessionNotFoundError, StoreError
from src.collab.models import CaseStatus, Role, TestCase
from src.collab.sql_store import SqlPresenceRegistry, SqlSessionStore, store_errors
from sqlalchemy.exc import OperationalError

CODE = "SQL234"

@pytest.mark.asyncio
async def test_sql_store_crud(session_factory):
    """测试数据库会话存储"""
    store = SqlSessionStore(session_factory, poll_interval=60)
    document = await store.create_session(CODE, "alice")
    assert document.code == CODE
    assert document.revision == 0

    with pytest.raises(SessionExistsError):
        await store.create_session(CODE, "bob")

    cases = [
        TestCase(case_id="TC-1", status=CaseStatus.FAILED, comments="c", evidence="e", last_editor="alice"),
        TestCase(case_id="TC-2"),
    ]
    document = await store.replace_cases(CODE, cases)
    assert document.revision == 1

    loaded = await store.get_session(CODE)
    assert loaded.test_cases == cases
    assert loaded.owner == "alice"
    assert loaded.created_at.tzinfo is not None

    assert await store.get_session("NOPE23") is None
    with pytest.raises(SessionNotFoundError):
        await store.replace_cases("NOPE23", cases)

    assert await store.delete_session(CODE) is True
    assert await store.delete_session(CODE) is False
    assert await store.get_session(CODE) is None

@pytest.mark.asyncio
async def test_sql_store_subscription(session_factory):
    """轮询订阅推送初始快照和后续变化"""
    store = SqlSessionStore(session_factory, poll_interval=60)
    await store.create_session(CODE, "alice")
    received = []
    subscription = store.subscribe(CODE, received.append)
    await asyncio.sleep(0.1)
    assert len(received) == 1

    await store.replace_cases(CODE, [TestCase(case_id="TC-1")])
    assert await subscription.poll_once() is True
    assert received[-1].test_cases[0].case_id == "TC-1"

    await store.delete_session(CODE)
    assert await subscription.poll_once() is True
    assert received[-1] is None
    subscription.cancel()

@pytest.mark.asyncio
async def test_sql_presence(session_factory):
    """测试数据库参与者登记"""
    presence = SqlPresenceRegistry(session_factory, poll_interval=60)
    alice = await presence.register_participant(CODE, "alice", Role.EDITOR)
    bob = await presence.register_participant(CODE, "bob", Role.VIEWER)
    other = await presence.register_participant("OTHER2", "carol", Role.EDITOR)

    online = await presence.list_online(CODE)
    assert [p.id for p in online] == [alice, bob]
    assert online[1].role == Role.VIEWER

    await presence.mark_offline(CODE, alice)
    await presence.mark_offline(CODE, alice)
    await presence.mark_offline(CODE, other)
    assert [p.id for p in await presence.list_online(CODE)] == [bob]
    assert [p.id for p in await presence.list_online("OTHER2")] == [other]

    await presence.touch(CODE, bob)
    assert await presence.sweep_stale(CODE, timedelta(minutes=5)) == 0
    assert await presence.sweep_stale(CODE, timedelta(0)) == 1
    assert await presence.list_online(CODE) == []

def test_store_errors_wraps_database_errors():
    """数据库异常被转换为 StoreError"""
    with pytest.raises(StoreError) as exc_info:
        with store_errors("写入会话"):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
    assert "写入会话" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, OperationalError)
