"""会话存储

会话存储以会话码为键保存一份完整的用例列表文档，支持：

- 时点读取 ``get_session``
- 整表替换写入 ``replace_cases``(最后写入者胜出，不做字段级合并)
- 变更订阅 ``subscribe``，订阅时立即推送一次当前快照，之后每次写入推送最新文档

``MemorySessionStore`` 在进程内直接推送；SQL 与 HTTP 实现使用
``PollingSubscription`` 轮询并在内容变化时才推送。
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from loguru import logger

from .errors import SessionExistsError, SessionNotFoundError
from .models import SessionDocument, TestCase, utcnow

T = TypeVar("T")

DocumentListener = Callable[[Optional[SessionDocument]], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """订阅句柄，cancel() 可重复调用"""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._active = True
        # 连续拉取失败次数，成功一次即清零
        self.consecutive_failures = 0

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_cancel:
            self._on_cancel()


def deliver(listener: Callable[[T], None], value: T, on_error: Optional[ErrorListener] = None) -> None:
    """调用订阅回调，回调异常只记录不外抛"""
    try:
        listener(value)
    except Exception as e:
        logger.error(f"订阅回调执行失败: {str(e)}")
        if on_error:
            try:
                on_error(e)
            except Exception as inner:
                logger.error(f"订阅错误回调执行失败: {str(inner)}")


class PollingSubscription(Subscription, Generic[T]):
    """轮询订阅

    按固定间隔拉取最新值，序列化比较后只在内容变化时推送，
    避免自身写入回显造成无谓的刷新。
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        listener: Callable[[T], None],
        interval: float,
        serialize: Callable[[T], str],
        on_error: Optional[ErrorListener] = None,
        name: str = "poll"
    ):
        super().__init__()
        self._fetch = fetch
        self._listener = listener
        self._interval = interval
        self._serialize = serialize
        self._on_error = on_error
        self._last: Optional[str] = None
        self._task = asyncio.get_running_loop().create_task(self._run(), name=name)

    async def poll_once(self) -> bool:
        """拉取一次，有变化时推送并返回True"""
        value = await self._fetch()
        if not self.active:
            return False
        marker = self._serialize(value)
        if marker == self._last:
            return False
        self._last = marker
        deliver(self._listener, value, self._on_error)
        return True

    async def _run(self) -> None:
        while self.active:
            try:
                await self.poll_once()
                self.consecutive_failures = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.consecutive_failures += 1
                logger.warning(f"轮询订阅拉取失败(连续 {self.consecutive_failures} 次): {str(e)}")
                if self._on_error and self.active:
                    deliver(self._on_error, e)
            await asyncio.sleep(self._interval)

    def cancel(self) -> None:
        if self.active:
            self._task.cancel()
        super().cancel()


def document_marker(document: Optional[SessionDocument]) -> str:
    """用于轮询比较的文档序列化结果(版本号和用例列表)"""
    if document is None:
        return "<missing>"
    return f"{document.revision}:[" + ",".join(case.model_dump_json() for case in document.test_cases) + "]"


class SessionStore(ABC):
    """会话存储接口"""

    @abstractmethod
    async def create_session(self, code: str, owner: str) -> SessionDocument:
        """创建空会话文档

        Raises:
            SessionExistsError: 会话码已存在
            StoreError: 存储不可用
        """

    @abstractmethod
    async def get_session(self, code: str) -> Optional[SessionDocument]:
        """读取会话文档，不存在返回None"""

    @abstractmethod
    async def replace_cases(self, code: str, cases: List[TestCase]) -> SessionDocument:
        """用完整列表替换会话中的用例

        Raises:
            SessionNotFoundError: 会话不存在
            StoreError: 存储不可用
        """

    @abstractmethod
    async def delete_session(self, code: str) -> bool:
        """删除会话文档，返回是否存在"""

    @abstractmethod
    def subscribe(
        self,
        code: str,
        listener: DocumentListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        """订阅会话文档变更；文档被删除时推送None"""


class MemorySessionStore(SessionStore):
    """进程内会话存储，写入后立即推送给订阅者"""

    def __init__(self):
        self._documents: Dict[str, SessionDocument] = {}
        self._listeners: Dict[str, List[DocumentListener]] = {}

    async def create_session(self, code: str, owner: str) -> SessionDocument:
        if code in self._documents:
            raise SessionExistsError(data={"code": code})
        document = SessionDocument(code=code, owner=owner)
        self._documents[code] = document
        logger.info(f"会话文档已创建: {code}, 所有者: {owner}")
        self._publish(code)
        return document

    async def get_session(self, code: str) -> Optional[SessionDocument]:
        return self._documents.get(code)

    async def replace_cases(self, code: str, cases: List[TestCase]) -> SessionDocument:
        current = self._documents.get(code)
        if current is None:
            raise SessionNotFoundError(data={"code": code})
        document = current.model_copy(update={
            "test_cases": list(cases),
            "revision": current.revision + 1,
            "updated_at": utcnow(),
        })
        self._documents[code] = document
        logger.debug(f"会话 {code} 用例列表已替换, 共 {len(cases)} 条, 版本 {document.revision}")
        self._publish(code)
        return document

    async def delete_session(self, code: str) -> bool:
        existed = self._documents.pop(code, None) is not None
        if existed:
            logger.info(f"会话文档已删除: {code}")
            self._publish(code)
        return existed

    def subscribe(
        self,
        code: str,
        listener: DocumentListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        def wrapped(document: Optional[SessionDocument]) -> None:
            deliver(listener, document, on_error)

        self._listeners.setdefault(code, []).append(wrapped)

        def remove() -> None:
            listeners = self._listeners.get(code, [])
            if wrapped in listeners:
                listeners.remove(wrapped)

        subscription = Subscription(remove)
        wrapped(self._documents.get(code))
        return subscription

    def _publish(self, code: str) -> None:
        document = self._documents.get(code)
        for listener in list(self._listeners.get(code, [])):
            # 前一个回调可能已取消后续订阅
            if listener in self._listeners.get(code, []):
                listener(document)
