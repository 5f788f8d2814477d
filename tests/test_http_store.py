import httpx
import pytest
import pytest_asyncio
from datetime import timedelta
from src.collab.errors import SessionExistsError, SessionNotFoundError, StoreError
from src.collab.http_store import HttpPresenceRegistry, HttpSessionStore, SessionServiceClient
from src.collab.identity import IdentityProvider
from src.collab.lifecycle import SessionManager
from src.collab.models import Role, TestCase
from src.collab.presence import MemoryPresenceRegistry
from src.collab.store import MemorySessionStore
from src.main import create_app

CODE = "HTT234"

@pytest_asyncio.fixture
async def service():
    """通过 ASGITransport 直接访问应用的客户端"""
    app = create_app(store=MemorySessionStore(), presence=MemoryPresenceRegistry())
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    yield SessionServiceClient(client=client)
    await client.aclose()

@pytest.mark.asyncio
async def test_http_store(service):
    """测试远程会话存储"""
    store = HttpSessionStore(service, poll_interval=60)
    document = await store.create_session(CODE, "alice")
    assert document.code == CODE

    with pytest.raises(SessionExistsError):
        await store.create_session(CODE, "bob")

    cases = [TestCase(case_id="TC-1")]
    document = await store.replace_cases(CODE, cases)
    assert document.revision == 1
    assert (await store.get_session(CODE)).test_cases == cases

    assert await store.get_session("NOPE23") is None
    with pytest.raises(SessionNotFoundError):
        await store.replace_cases("NOPE23", cases)

    assert await store.delete_session(CODE) is True
    assert await store.delete_session(CODE) is False

@pytest.mark.asyncio
async def test_http_presence(service):
    """测试远程参与者登记"""
    presence = HttpPresenceRegistry(service, poll_interval=60)
    alice = await presence.register_participant(CODE, "alice", Role.EDITOR)
    bob = await presence.register_participant(CODE, "bob", Role.VIEWER)
    assert [p.id for p in await presence.list_online(CODE)] == [alice, bob]

    await presence.touch(CODE, alice)
    await presence.mark_offline(CODE, alice)
    assert [p.id for p in await presence.list_online(CODE)] == [bob]
    assert await presence.sweep_stale(CODE, timedelta(hours=1)) == 0

@pytest.mark.asyncio
async def test_http_store_network_error():
    """网络错误转换为 StoreError"""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    store = HttpSessionStore(SessionServiceClient(client=client))
    with pytest.raises(StoreError):
        await store.get_session(CODE)
    await client.aclose()

@pytest.mark.asyncio
async def test_http_store_server_error():
    """服务端错误状态转换为 StoreError"""
    def handler(request):
        return httpx.Response(500, json={"code": 500, "message": "Internal server error", "data": None})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    store = HttpSessionStore(SessionServiceClient(client=client))
    with pytest.raises(StoreError) as exc_info:
        await store.replace_cases(CODE, [])
    assert exc_info.value.message == "Internal server error"
    await client.aclose()

@pytest.mark.asyncio
async def test_manager_over_http(service):
    """两个客户端通过HTTP服务协作"""
    def make(user):
        return SessionManager(
            HttpSessionStore(service, poll_interval=60),
            HttpPresenceRegistry(service, poll_interval=60),
            IdentityProvider(user),
            idle_watch=False,
            heartbeat_interval=0,
        )

    alice, bob = make("alice"), make("bob")
    code = await alice.create_session()
    await alice.replica.append_cases([{"case_id": "TC-1"}])

    await bob.join_session(code, as_viewer=True)
    assert [c.case_id for c in bob.replica.cases] == ["TC-1"]
    online = await bob.presence.list_online(code)
    assert [p.identity for p in online] == ["alice", "bob"]

    await bob.aclose()
    await alice.aclose()
    assert await alice.presence.list_online(code) == []
