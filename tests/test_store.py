import asyncio
from datetime import timedelta
import pytest
from src.collab.errors import SessionExistsError, SessionNotFoundError
from src.collab.models import Role, TestCase
from src.collab.store import PollingSubscription, document_marker

CODE = "ABC234"

@pytest.mark.asyncio
async def test_memory_store_crud(store):
    """测试内存会话存储的创建、替换和删除"""
    document = await store.create_session(CODE, "alice")
    assert document.test_cases == []
    assert document.revision == 0

    with pytest.raises(SessionExistsError):
        await store.create_session(CODE, "bob")

    cases = [TestCase(case_id="TC-1"), TestCase(case_id="TC-2")]
    document = await store.replace_cases(CODE, cases)
    assert document.revision == 1
    assert [c.case_id for c in (await store.get_session(CODE)).test_cases] == ["TC-1", "TC-2"]

    assert await store.delete_session(CODE) is True
    assert await store.get_session(CODE) is None
    assert await store.delete_session(CODE) is False

    with pytest.raises(SessionNotFoundError):
        await store.replace_cases(CODE, cases)

@pytest.mark.asyncio
async def test_memory_store_subscription(store):
    """订阅时立即推送快照，删除时推送None，取消后不再推送"""
    await store.create_session(CODE, "alice")
    received = []
    subscription = store.subscribe(CODE, received.append)
    assert len(received) == 1
    assert received[0].code == CODE

    await store.replace_cases(CODE, [TestCase(case_id="TC-1")])
    assert received[-1].test_cases[0].case_id == "TC-1"

    await store.delete_session(CODE)
    assert received[-1] is None

    subscription.cancel()
    subscription.cancel()
    await store.create_session(CODE, "alice")
    assert len(received) == 3

@pytest.mark.asyncio
async def test_subscription_listener_error_is_isolated(store):
    """订阅回调异常不影响其他订阅者"""
    await store.create_session(CODE, "alice")
    errors = []
    received = []

    def broken(_document):
        raise RuntimeError("boom")

    store.subscribe(CODE, broken, errors.append)
    store.subscribe(CODE, received.append)
    await store.replace_cases(CODE, [TestCase()])
    assert len(errors) == 2
    assert len(received) == 2

@pytest.mark.asyncio
async def test_memory_presence(presence):
    """测试参与者登记与在线列表"""
    received = []
    presence.subscribe_online(CODE, received.append)
    assert received == [[]]

    alice = await presence.register_participant(CODE, "alice", Role.EDITOR)
    bob = await presence.register_participant(CODE, "bob", Role.VIEWER)
    online = await presence.list_online(CODE)
    assert [p.identity for p in online] == ["alice", "bob"]
    assert online[1].role == Role.VIEWER
    assert [p.id for p in received[-1]] == [alice, bob]

    await presence.mark_offline(CODE, alice)
    await presence.mark_offline(CODE, alice)
    await presence.mark_offline(CODE, "missing")
    assert [p.id for p in await presence.list_online(CODE)] == [bob]

    # 同一用户重复加入产生新记录
    again = await presence.register_participant(CODE, "alice", Role.EDITOR)
    assert again != alice
    assert len(await presence.list_online(CODE)) == 2

@pytest.mark.asyncio
async def test_memory_presence_sweep(presence):
    """心跳过期的参与者被清理"""
    alice = await presence.register_participant(CODE, "alice", Role.EDITOR)
    await presence.register_participant(CODE, "bob", Role.EDITOR)
    assert await presence.sweep_stale(CODE, timedelta(minutes=5)) == 0
    await asyncio.sleep(0.01)
    await presence.touch(CODE, alice)
    assert await presence.sweep_stale(CODE, timedelta(milliseconds=5)) == 1
    assert [p.id for p in await presence.list_online(CODE)] == [alice]

@pytest.mark.asyncio
async def test_polling_subscription_delivers_only_changes(store):
    """轮询订阅只在内容变化时推送"""
    await store.create_session(CODE, "alice")
    received = []
    subscription = PollingSubscription(
        fetch=lambda: store.get_session(CODE),
        listener=received.append,
        interval=60,
        serialize=document_marker,
    )
    await asyncio.sleep(0.05)
    assert len(received) == 1

    assert await subscription.poll_once() is False
    await store.replace_cases(CODE, [TestCase(case_id="TC-1")])
    assert await subscription.poll_once() is True
    assert received[-1].test_cases[0].case_id == "TC-1"

    subscription.cancel()
    assert not subscription.active
    await store.replace_cases(CODE, [])
    assert await subscription.poll_once() is False
    assert len(received) == 2
