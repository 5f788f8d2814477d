"""用例复制核心

客户端持有会话用例列表的本地副本：

- 本地修改先在内存中生成新的完整列表并立即生效(乐观更新)，再整表写入会话存储。
  写入失败只提示同步错误，不回滚本地状态。
- 订阅推送的文档整体替换本地列表，没有字段级合并。

整表替换意味着并发写入时“最后写入的完整列表胜出”：两个参与者几乎同时修改
不同用例时，较早的修改可能被后写入者基于旧列表的快照覆盖。
"""
from typing import Any, Callable, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel

from .errors import (
    CaseNotFoundError,
    CollabError,
    FailedStatusRequirementsError,
    InvalidRecordError,
    NotInSessionError,
    ReadOnlySessionError,
    StoreError,
    UnknownFieldError,
    ValidationRejected,
)
from .models import (
    EDITABLE_FIELDS,
    CaseStats,
    CaseStatus,
    RawTestCase,
    Role,
    SessionDocument,
    TestCase,
    utcnow,
)
from .notifier import NoticeKind, Notifier
from .store import SessionStore

CasesListener = Callable[[List[TestCase]], None]

ALL = "all"


class CaseFilters(BaseModel):
    """本地筛选条件(离开会话时重置)"""
    process: str = ALL
    status: str = ALL
    viewer_status: str = ALL


class CaseReplica:
    """会话用例的本地副本"""

    def __init__(self, store: SessionStore, notifier: Optional[Notifier] = None):
        self.store = store
        self.notifier = notifier or Notifier()
        self.session_code: Optional[str] = None
        self.role: Optional[Role] = None
        self.user: Optional[str] = None
        self.filters = CaseFilters()
        self.last_sync_error: Optional[StoreError] = None
        self._cases: List[TestCase] = []
        # 已知的最新文档版本和进行中的写入数，用于丢弃过期快照
        self._known_revision = 0
        self._inflight = 0
        self._listeners: List[CasesListener] = []
        self._activity_listeners: List[Callable[[], None]] = []
        self.on_session_lost: Optional[Callable[[], None]] = None

    # ---------- 会话绑定 ----------

    def attach(self, code: str, role: Role, user: str) -> None:
        """绑定到会话，清空旧数据"""
        self.session_code = code
        self.role = role
        self.user = user
        self.filters = CaseFilters()
        self.last_sync_error = None
        self._known_revision = 0
        self._set_cases([])

    def detach(self) -> None:
        """解除绑定并重置全部本地状态"""
        self.session_code = None
        self.role = None
        self.user = None
        self.filters = CaseFilters()
        self.last_sync_error = None
        self._known_revision = 0
        self._set_cases([])

    @property
    def attached(self) -> bool:
        return self.session_code is not None

    @property
    def read_only(self) -> bool:
        return self.role != Role.EDITOR

    # ---------- 监听 ----------

    @property
    def cases(self) -> List[TestCase]:
        return list(self._cases)

    def subscribe(self, listener: CasesListener) -> Callable[[], None]:
        """订阅本地列表变化，返回取消函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def on_activity(self, listener: Callable[[], None]) -> Callable[[], None]:
        """订阅“已接受的变更”事件(本地乐观更新或远端变化)"""
        self._activity_listeners.append(listener)
        return lambda: self._activity_listeners.remove(listener) if listener in self._activity_listeners else None

    # ---------- 本地修改 ----------

    async def update_field(self, case_id: str, field: str, value: Any) -> TestCase:
        """修改单个字段

        Raises:
            UnknownFieldError: 字段不可编辑
            CaseNotFoundError: 用例不存在
            FailedStatusRequirementsError: 标记失败但备注或证据为空
        """
        self._require_editor()
        if field not in EDITABLE_FIELDS:
            self._reject(UnknownFieldError(f"不支持编辑的字段: {field}", data={"field": field}))

        index = self._index_of(case_id)
        current = self._cases[index]
        if field == "status":
            status = CaseStatus.lookup(value)
            if status is None:
                self._reject(ValidationRejected(f"无效的状态: {value}", data={"status": value}))
            changes = {
                "status": status,
                "last_editor": self.user or "System",
                "last_edited_at": utcnow(),
            }
        else:
            changes = {field: "" if value is None else str(value)}
        candidate = current.model_copy(update=changes)

        if field == "status" and candidate.status == CaseStatus.FAILED and not candidate.meets_failure_requirements():
            self._reject(FailedStatusRequirementsError(
                "备注和证据为必填项，才能标记为失败",
                data={"case_id": case_id}
            ))

        updated = list(self._cases)
        updated[index] = candidate
        await self._commit(updated)
        return candidate

    async def delete_case(self, case_id: str) -> None:
        """删除用例"""
        self._require_editor()
        index = self._index_of(case_id)
        updated = self._cases[:index] + self._cases[index + 1:]
        await self._commit(updated)
        self.notifier.notify(NoticeKind.INFO, "用例已删除")

    async def append_cases(self, records: Sequence[Any]) -> List[TestCase]:
        """追加导入的原始记录，为每条记录分配新ID

        Raises:
            InvalidRecordError: 存在无法解析的记录(整批不写入)
        """
        self._require_editor()
        try:
            raws = [RawTestCase.from_record(record) for record in records]
        except InvalidRecordError as e:
            self._reject(e)
        except ValueError as e:
            # pydantic 校验失败
            self._reject(InvalidRecordError(str(e)))

        existing = {case.id for case in self._cases}
        new_cases = []
        for raw in raws:
            case = TestCase.from_raw(raw)
            while case.id in existing:
                case = TestCase.from_raw(raw)
            existing.add(case.id)
            new_cases.append(case)

        await self._commit(self._cases + new_cases)
        self.notifier.notify(NoticeKind.SUCCESS, "导入成功", f"已加载 {len(new_cases)} 条测试用例")
        return new_cases

    async def clear_all(self) -> None:
        """清空全部用例(确认步骤由界面负责)"""
        self._require_editor()
        await self._commit([])
        self.notifier.notify(NoticeKind.INFO, "数据已清空", "所有测试用例已删除")

    # ---------- 远端推送 ----------

    def apply_remote(self, document: Optional[SessionDocument]) -> None:
        """处理订阅推送的最新文档"""
        if not self.attached:
            return
        if document is None:
            logger.warning(f"会话文档已不存在: {self.session_code}")
            if self.on_session_lost:
                self.on_session_lost()
            return
        if document.code != self.session_code:
            return
        # 轮询可能拿到早于本地写入的快照
        if document.revision < self._known_revision or (
            self._inflight and document.revision <= self._known_revision
        ):
            logger.debug(f"忽略会话 {document.code} 的过期快照, 版本 {document.revision}")
            return
        self._known_revision = document.revision
        if document.test_cases == self._cases:
            return
        logger.debug(f"收到会话 {document.code} 远端更新, 版本 {document.revision}")
        self._set_cases(list(document.test_cases))
        self._touch_activity()

    # ---------- 派生视图 ----------

    def stats(self) -> CaseStats:
        return CaseStats.from_cases(self._cases)

    def failed_cases(self) -> List[TestCase]:
        return [case for case in self._cases if case.status == CaseStatus.FAILED]

    def commented_cases(self) -> List[TestCase]:
        return [case for case in self._cases if case.is_commented]

    def processes(self) -> List[str]:
        """去重后的流程名称，保持出现顺序"""
        seen = []
        for case in self._cases:
            if case.process and case.process not in seen:
                seen.append(case.process)
        return seen

    def filtered_cases(self) -> List[TestCase]:
        """按当前角色对应的筛选条件过滤"""
        if self.role == Role.VIEWER:
            if self.filters.viewer_status == ALL:
                return self.cases
            return [c for c in self._cases if c.status.value == self.filters.viewer_status]
        return [
            c for c in self._cases
            if (self.filters.process == ALL or c.process == self.filters.process)
            and (self.filters.status == ALL or c.status.value == self.filters.status)
        ]

    # ---------- 内部 ----------

    def _require_editor(self) -> None:
        if not self.attached:
            self._reject(NotInSessionError())
        if self.role != Role.EDITOR:
            self._reject(ReadOnlySessionError())

    def _reject(self, exc: CollabError) -> None:
        self.notifier.error(NoticeKind.VALIDATION, "操作被拒绝", exc)
        raise exc

    def _index_of(self, case_id: str) -> int:
        for index, case in enumerate(self._cases):
            if case.id == case_id:
                return index
        self._reject(CaseNotFoundError(data={"case_id": case_id}))

    async def _commit(self, updated: List[TestCase]) -> bool:
        """乐观应用后整表写入，返回是否同步成功"""
        code = self.session_code
        self._set_cases(updated)
        self._touch_activity()
        self._inflight += 1
        try:
            document = await self.store.replace_cases(code, updated)
        except StoreError as e:
            logger.error(f"同步会话 {code} 失败: {e.message}")
            self.last_sync_error = e
            self.notifier.error(NoticeKind.SYNC_ERROR, "同步错误", e)
            return False
        except CollabError as e:
            # 会话在写入前被删除
            logger.error(f"同步会话 {code} 失败: {e.message}")
            self.last_sync_error = StoreError(e.message, data=e.data)
            self.notifier.error(NoticeKind.SYNC_ERROR, "同步错误", e)
            return False
        finally:
            self._inflight -= 1
        if document.code == self.session_code:
            self._known_revision = max(self._known_revision, document.revision)
        self.last_sync_error = None
        return True

    def _set_cases(self, cases: List[TestCase]) -> None:
        self._cases = cases
        snapshot = list(cases)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"用例列表监听者执行失败: {str(e)}")

    def _touch_activity(self) -> None:
        for listener in list(self._activity_listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"活动监听者执行失败: {str(e)}")
