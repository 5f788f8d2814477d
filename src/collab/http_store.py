"""通过 HTTP 访问会话服务的客户端存储

服务端接口见 ``src/api/routers/session.py``，响应统一为
``{"code": ..., "message": ..., "data": ...}``。订阅通过轮询实现。
"""
from datetime import timedelta
from typing import Any, List, Optional

import httpx
from loguru import logger

from src.config.settings import settings

from .errors import SessionExistsError, SessionNotFoundError, StoreError
from .models import Participant, Role, SessionDocument, TestCase
from .presence import ParticipantsListener, PresenceRegistry, participants_marker
from .store import (
    DocumentListener,
    ErrorListener,
    PollingSubscription,
    SessionStore,
    Subscription,
    document_marker,
)

API_PREFIX = "/api/v1/sessions"


class SessionServiceClient:
    """会话服务HTTP客户端

    Args:
        base_url: 服务地址，默认读取 STORE_API_URL
        client: 外部传入的 httpx.AsyncClient(测试时可使用 ASGITransport)
        timeout: 请求超时(秒)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.store.STORE_API_URL,
            timeout=httpx.Timeout(timeout or settings.store.STORE_TIMEOUT)
        )

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"会话服务请求失败: {method} {path}: {str(e)}")
            raise StoreError(f"会话服务请求失败: {str(e)}", data={"path": path}) from e

    @staticmethod
    def payload(response: httpx.Response) -> Any:
        """解析响应体，非2xx状态转换为 StoreError"""
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise StoreError(
                message or f"会话服务返回错误状态: {response.status_code}",
                data={"status_code": response.status_code}
            )
        return body.get("data") if isinstance(body, dict) else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class HttpSessionStore(SessionStore):
    """远程会话存储"""

    def __init__(
        self,
        client: Optional[SessionServiceClient] = None,
        poll_interval: Optional[float] = None
    ):
        self.client = client or SessionServiceClient()
        self.poll_interval = poll_interval or settings.session.SESSION_POLL_INTERVAL

    async def create_session(self, code: str, owner: str) -> SessionDocument:
        response = await self.client.request("POST", API_PREFIX, json={"code": code, "owner": owner})
        if response.status_code == 409:
            raise SessionExistsError(data={"code": code})
        return SessionDocument.model_validate(self.client.payload(response))

    async def get_session(self, code: str) -> Optional[SessionDocument]:
        response = await self.client.request("GET", f"{API_PREFIX}/{code}")
        if response.status_code == 404:
            return None
        return SessionDocument.model_validate(self.client.payload(response))

    async def replace_cases(self, code: str, cases: List[TestCase]) -> SessionDocument:
        response = await self.client.request(
            "PUT",
            f"{API_PREFIX}/{code}/cases",
            json={"test_cases": [case.model_dump(mode="json") for case in cases]}
        )
        if response.status_code == 404:
            raise SessionNotFoundError(data={"code": code})
        return SessionDocument.model_validate(self.client.payload(response))

    async def delete_session(self, code: str) -> bool:
        response = await self.client.request("DELETE", f"{API_PREFIX}/{code}")
        if response.status_code == 404:
            return False
        self.client.payload(response)
        return True

    def subscribe(
        self,
        code: str,
        listener: DocumentListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        return PollingSubscription(
            fetch=lambda: self.get_session(code),
            listener=listener,
            interval=self.poll_interval,
            serialize=document_marker,
            on_error=on_error,
            name=f"http-session-{code}",
        )


class HttpPresenceRegistry(PresenceRegistry):
    """远程参与者登记"""

    def __init__(
        self,
        client: Optional[SessionServiceClient] = None,
        poll_interval: Optional[float] = None
    ):
        self.client = client or SessionServiceClient()
        self.poll_interval = poll_interval or settings.session.SESSION_POLL_INTERVAL

    async def register_participant(self, code: str, identity: str, role: Role) -> str:
        response = await self.client.request(
            "POST",
            f"{API_PREFIX}/{code}/participants",
            json={"identity": identity, "role": role.value}
        )
        return self.client.payload(response)["id"]

    async def mark_offline(self, code: str, participant_id: str) -> None:
        response = await self.client.request("POST", f"{API_PREFIX}/{code}/participants/{participant_id}/offline")
        if response.status_code != 404:
            self.client.payload(response)

    async def list_online(self, code: str) -> List[Participant]:
        response = await self.client.request("GET", f"{API_PREFIX}/{code}/participants")
        return [Participant.model_validate(item) for item in self.client.payload(response) or []]

    async def touch(self, code: str, participant_id: str) -> None:
        response = await self.client.request("POST", f"{API_PREFIX}/{code}/participants/{participant_id}/heartbeat")
        if response.status_code != 404:
            self.client.payload(response)

    async def sweep_stale(self, code: str, max_age: timedelta) -> int:
        response = await self.client.request(
            "POST",
            f"{API_PREFIX}/{code}/participants/sweep",
            json={"max_age_seconds": max_age.total_seconds()}
        )
        return int(self.client.payload(response)["swept"])

    def subscribe_online(
        self,
        code: str,
        listener: ParticipantsListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        return PollingSubscription(
            fetch=lambda: self.list_online(code),
            listener=listener,
            interval=self.poll_interval,
            serialize=participants_marker,
            on_error=on_error,
            name=f"http-presence-{code}",
        )
