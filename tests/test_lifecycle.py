import asyncio
import pytest
from src.collab.errors import (
    AuthenticationRequiredError,
    FailedStatusRequirementsError,
    InvalidSessionCodeError,
    ReadOnlySessionError,
    SessionCreateError,
    SessionJoinError,
    SessionNotFoundError,
    StoreError,
)
from src.collab.identity import IdentityProvider
from src.collab.lifecycle import SessionManager, SessionState
from src.collab.models import CaseStatus, Role, TestCase
from src.collab.notifier import NoticeKind
from src.collab.presence import MemoryPresenceRegistry
from src.collab.store import MemorySessionStore, PollingSubscription, document_marker
from src.config.settings import settings

@pytest.mark.asyncio
async def test_collaboration_scenario(make_manager, presence):
    """完整协作流程：创建、导入、标记失败、观察者加入"""
    alice = make_manager("alice@example.com")
    code = await alice.create_session()
    assert alice.state == SessionState.IN_SESSION
    assert alice.role == Role.EDITOR
    assert alice.notifier.last.kind == NoticeKind.SUCCESS

    await alice.replica.append_cases([
        {"process": "Login", "case_id": "TC-1"},
        {"process": "Login", "case_id": "TC-2"},
    ])
    first = alice.replica.cases[0]

    with pytest.raises(FailedStatusRequirementsError):
        await alice.replica.update_field(first.id, "status", "Failed")

    await alice.replica.update_field(first.id, "comments", "Error 500 al iniciar sesión")
    await alice.replica.update_field(first.id, "evidence", "captura.png")
    failed = await alice.replica.update_field(first.id, "status", "Failed")
    assert failed.last_editor == "alice@example.com"

    bob = make_manager("bob@example.com")
    joined = await bob.join_session(code.lower(), as_viewer=True)
    assert joined == code
    assert bob.role == Role.VIEWER
    assert bob.replica.cases == alice.replica.cases
    assert bob.snapshot().stats.failed == 1

    # 双方都能看到两个在线参与者
    assert [p.identity for p in alice.participants] == ["alice@example.com", "bob@example.com"]
    assert [p.role for p in bob.participants] == [Role.EDITOR, Role.VIEWER]

    with pytest.raises(ReadOnlySessionError):
        await bob.replica.update_field(first.id, "status", "Passed")
    assert alice.replica.cases[0].status == CaseStatus.FAILED

    await alice.replica.update_field(alice.replica.cases[1].id, "status", "Passed")
    assert bob.replica.stats().passed == 1

@pytest.mark.asyncio
async def test_leave_is_idempotent(make_manager, presence):
    """离开会话可重复调用"""
    alice = make_manager()
    await alice.leave_session()
    assert alice.state == SessionState.AUTHENTICATED

    code = await alice.create_session()
    await alice.replica.append_cases([{"case_id": "TC-1"}])
    alice.replica.filters.status = "Passed"
    await alice.leave_session()
    await alice.leave_session()

    assert alice.state == SessionState.AUTHENTICATED
    assert alice.session_code is None
    assert alice.replica.cases == []
    assert alice.replica.filters.status == "all"
    assert alice.participants == []
    assert await presence.list_online(code) == []
    assert not alice.idle.running

@pytest.mark.asyncio
async def test_leave_does_not_receive_later_updates(make_manager, store):
    """离开后不再接收该会话的推送"""
    alice = make_manager("alice")
    bob = make_manager("bob")
    code = await alice.create_session()
    await bob.join_session(code)
    await bob.leave_session()

    await alice.replica.append_cases([{"case_id": "TC-1"}])
    assert bob.replica.cases == []
    assert bob.session_code is None

@pytest.mark.asyncio
async def test_logout(make_manager, presence):
    """登出会离开会话并清除身份"""
    alice = make_manager()
    code = await alice.create_session()
    views = []
    alice.subscribe(views.append)

    await alice.logout()
    assert alice.state == SessionState.UNAUTHENTICATED
    assert alice.user is None
    assert await presence.list_online(code) == []
    assert views[-1].state == SessionState.UNAUTHENTICATED

    with pytest.raises(AuthenticationRequiredError):
        await alice.create_session()

@pytest.mark.asyncio
async def test_external_sign_out_leaves_session(make_manager, presence):
    """身份提供方登出时自动离开会话"""
    alice = make_manager()
    code = await alice.create_session()
    alice.identity.sign_out()
    assert alice.state == SessionState.UNAUTHENTICATED
    await alice.aclose()
    assert await presence.list_online(code) == []

@pytest.mark.asyncio
async def test_create_and_join_require_identity(store, presence):
    """未登录时不能创建或加入会话"""
    manager = SessionManager(store, presence, IdentityProvider(), idle_watch=False, heartbeat_interval=0)
    assert manager.state == SessionState.UNAUTHENTICATED
    with pytest.raises(AuthenticationRequiredError):
        await manager.create_session()
    with pytest.raises(AuthenticationRequiredError):
        await manager.join_session("ABC234")

@pytest.mark.asyncio
async def test_join_errors(make_manager):
    """无效会话码和不存在的会话"""
    bob = make_manager("bob")
    with pytest.raises(InvalidSessionCodeError):
        await bob.join_session("   ")
    assert bob.notifier.last.kind == NoticeKind.VALIDATION

    with pytest.raises(SessionNotFoundError):
        await bob.join_session("ZZZZZZ")
    assert bob.notifier.last.kind == NoticeKind.NOT_FOUND
    assert bob.state == SessionState.AUTHENTICATED

@pytest.mark.asyncio
async def test_create_retries_on_code_collision(make_manager, store, monkeypatch):
    """会话码冲突时重新生成"""
    await store.create_session("AAAAAA", "someone")
    codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    monkeypatch.setattr("src.collab.lifecycle.generate_session_code", lambda: next(codes))

    alice = make_manager()
    assert await alice.create_session() == "BBBBBB"
    assert (await store.get_session("AAAAAA")).owner == "someone"

@pytest.mark.asyncio
async def test_create_gives_up_after_attempts(make_manager, store, monkeypatch):
    """会话码持续冲突时创建失败"""
    await store.create_session("AAAAAA", "someone")
    monkeypatch.setattr("src.collab.lifecycle.generate_session_code", lambda: "AAAAAA")

    alice = make_manager()
    with pytest.raises(SessionCreateError):
        await alice.create_session()
    assert alice.state == SessionState.AUTHENTICATED
    assert alice.notifier.last.kind == NoticeKind.CONNECTION_ERROR

class BrokenPresence(MemoryPresenceRegistry):
    async def register_participant(self, code, identity, role):
        raise StoreError("presence down")

    async def mark_offline(self, code, participant_id):
        raise StoreError("presence down")

@pytest.mark.asyncio
async def test_presence_failure_on_join(make_manager, store):
    """登记参与者失败时加入失败"""
    alice = make_manager("alice")
    code = await alice.create_session()

    bob = make_manager("bob", presence=BrokenPresence())
    with pytest.raises(SessionJoinError):
        await bob.join_session(code)
    assert bob.state == SessionState.AUTHENTICATED

@pytest.mark.asyncio
async def test_offline_failure_does_not_block_leave(make_manager, presence):
    """离线标记失败不影响离开"""
    alice = make_manager("alice")
    await alice.create_session()
    alice.presence = BrokenPresence()
    await alice.leave_session()
    assert alice.state == SessionState.AUTHENTICATED

@pytest.mark.asyncio
async def test_create_while_in_session_leaves_first(make_manager, presence):
    """在会话中创建新会话会先离开旧会话"""
    alice = make_manager()
    first = await alice.create_session()
    second = await alice.create_session()
    assert first != second
    assert alice.session_code == second
    assert await presence.list_online(first) == []
    assert len(await presence.list_online(second)) == 1

@pytest.mark.asyncio
async def test_session_deleted_remotely(make_manager, store, presence):
    """会话文档被删除时回到已登录状态"""
    alice = make_manager()
    code = await alice.create_session()
    await store.delete_session(code)

    assert alice.state == SessionState.AUTHENTICATED
    assert alice.notifier.last.kind == NoticeKind.SESSION_LOST
    await alice.aclose()
    assert await presence.list_online(code) == []

@pytest.mark.asyncio
async def test_idle_session_is_closed(make_manager, clock, presence):
    """超过空闲窗口后自动关闭会话"""
    alice = make_manager(idle_timeout=60)
    code = await alice.create_session()

    clock.advance(40)
    await alice.replica.append_cases([{"case_id": "TC-1"}])
    clock.advance(40)
    assert await alice.idle.check() is False
    assert alice.state == SessionState.IN_SESSION

    clock.advance(20)
    assert await alice.idle.check() is True
    assert alice.state == SessionState.AUTHENTICATED
    assert alice.replica.cases == []
    assert alice.notifier.last.kind == NoticeKind.SESSION_IDLE_CLOSED
    assert await presence.list_online(code) == []

@pytest.mark.asyncio
async def test_heartbeat(make_manager, presence):
    """心跳刷新自身并清理过期参与者"""
    alice = make_manager()
    assert await alice.heartbeat() == 0
    await alice.create_session()
    assert await alice.heartbeat() == 0
    assert len(alice.participants) == 1

class UnreachableStore(MemorySessionStore):
    """订阅走轮询，可以模拟服务不可达的内存存储"""

    def __init__(self):
        super().__init__()
        self.down = False

    async def fetch(self, code):
        if self.down:
            raise StoreError("network down")
        return await self.get_session(code)

    def subscribe(self, code, listener, on_error=None):
        return PollingSubscription(
            fetch=lambda: self.fetch(code),
            listener=listener,
            interval=0.01,
            serialize=document_marker,
            on_error=on_error,
        )

async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "等待条件超时"
        await asyncio.sleep(0.01)

@pytest.mark.asyncio
async def test_poll_failure_keeps_session_and_recovers(make_manager):
    """轮询失败只提示一次连接错误，恢复后继续同步"""
    store = UnreachableStore()
    alice = make_manager(store=store, max_subscription_failures=1000)
    code = await alice.create_session()

    store.down = True
    await wait_until(lambda: alice._document_sub.consecutive_failures >= 3)
    connection_errors = [n for n in alice.notifier.history if n.kind == NoticeKind.CONNECTION_ERROR]
    assert len(connection_errors) == 1
    assert alice.state == SessionState.IN_SESSION

    store.down = False
    await wait_until(lambda: alice._document_sub.consecutive_failures == 0)
    await store.replace_cases(code, [TestCase(case_id="TC-9")])
    await wait_until(lambda: [c.case_id for c in alice.replica.cases] == ["TC-9"])
    assert alice.state == SessionState.IN_SESSION
    assert alice.session_code == code

@pytest.mark.asyncio
async def test_repeated_poll_failures_leave_session(make_manager, presence):
    """连续失败达到上限后判定连接丢失并离开会话"""
    store = UnreachableStore()
    alice = make_manager(store=store, max_subscription_failures=3)
    code = await alice.create_session()

    store.down = True
    await wait_until(lambda: alice.state == SessionState.AUTHENTICATED)
    assert alice.notifier.last.kind == NoticeKind.CONNECTION_ERROR
    assert alice.notifier.last.title == "连接已断开"
    assert alice.notifier.last.data == {"code": code}
    assert alice.replica.cases == []

    await alice.aclose()
    assert await presence.list_online(code) == []

@pytest.mark.asyncio
async def test_heartbeat_runs_while_in_session(make_manager, presence, monkeypatch):
    """会话期间定期心跳，清理不再心跳的参与者"""
    monkeypatch.setattr(settings.session, "PRESENCE_STALE_SECONDS", 0.2)
    alice = make_manager(heartbeat_interval=0.02)
    code = await alice.create_session()
    await presence.register_participant(code, "bob@example.com", Role.VIEWER)
    assert len(alice.participants) == 2

    await wait_until(lambda: [p.identity for p in alice.participants] == ["alice@example.com"])
    assert alice._heartbeat_task is not None

    await alice.leave_session()
    assert alice._heartbeat_task is None
