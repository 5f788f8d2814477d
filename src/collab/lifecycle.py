"""会话生命周期管理

负责创建/加入/离开/登出流程，维护本客户端“在哪个会话、以什么角色”的状态：

    UNAUTHENTICATED -> AUTHENTICATED -> IN_SESSION(role)
    IN_SESSION --leave--> AUTHENTICATED
    任意状态 --logout--> UNAUTHENTICATED

离开会话时先同步取消文档订阅和参与者订阅，再重置本地状态，
最后尽力把参与者标记为离线(失败不影响离开)。
在会话中时后台定期发送在线心跳；订阅连续失败达到上限视为连接丢失并离开会话。
"""
import asyncio
from datetime import timedelta
from enum import Enum
from typing import Callable, List, Optional, Set

from loguru import logger
from pydantic import BaseModel, Field

from src.config.settings import settings
from src.utils.decorators import best_effort, log_operation

from .codes import generate_session_code, normalize_session_code
from .errors import (
    AuthenticationRequiredError,
    CollabError,
    InvalidSessionCodeError,
    SessionCreateError,
    SessionExistsError,
    SessionJoinError,
    SessionNotFoundError,
    StoreError,
)
from .identity import Identity, IdentityProvider
from .idle import IdleMonitor
from .models import CaseStats, Participant, Role, TestCase
from .notifier import NoticeKind, Notifier
from .presence import PresenceRegistry
from .replication import CaseReplica
from .store import SessionStore, Subscription


class SessionState(str, Enum):
    """本地会话状态"""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    IN_SESSION = "in_session"


class LeaveReason(str, Enum):
    """离开会话的原因"""
    MANUAL = "manual"
    LOGOUT = "logout"
    IDLE = "idle"
    SESSION_LOST = "session_lost"
    CONNECTION_LOST = "connection_lost"


class SessionView(BaseModel):
    """发布给界面的会话快照"""
    state: SessionState
    session_code: Optional[str] = None
    role: Optional[Role] = None
    user: Optional[str] = None
    test_cases: List[TestCase] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    stats: CaseStats = Field(default_factory=CaseStats)


ViewListener = Callable[[SessionView], None]


class SessionManager:
    """会话生命周期管理器

    Args:
        store: 会话存储
        presence: 参与者登记
        identity: 身份提供方
        notifier: 用户提示
        idle_timeout: 空闲关闭时间(秒)，默认取配置
        idle_watch: 是否启动后台空闲检查任务
        clock: 空闲监控使用的时钟
        heartbeat_interval: 在线心跳间隔(秒)，默认取配置；为0时不启动心跳任务
        max_subscription_failures: 订阅连续失败多少次后离开会话，默认取配置
    """

    def __init__(
        self,
        store: SessionStore,
        presence: PresenceRegistry,
        identity: IdentityProvider,
        notifier: Optional[Notifier] = None,
        idle_timeout: Optional[float] = None,
        idle_watch: bool = True,
        clock: Optional[Callable[[], float]] = None,
        heartbeat_interval: Optional[float] = None,
        max_subscription_failures: Optional[int] = None
    ):
        self.store = store
        self.presence = presence
        self.identity = identity
        self.notifier = notifier or Notifier()
        self.replica = CaseReplica(store, self.notifier)
        self.participants: List[Participant] = []
        self.participant_id: Optional[str] = None

        if idle_timeout is None:
            idle_timeout = settings.session.SESSION_IDLE_MINUTES * 60
        idle_kwargs = {"clock": clock} if clock else {}
        self.idle = IdleMonitor(
            timeout=idle_timeout,
            on_idle=self.close_for_inactivity,
            check_interval=settings.session.SESSION_IDLE_CHECK_SECONDS,
            **idle_kwargs
        )
        self._idle_watch = idle_watch
        if heartbeat_interval is None:
            heartbeat_interval = settings.session.PRESENCE_HEARTBEAT_SECONDS
        self.heartbeat_interval = heartbeat_interval
        self.max_subscription_failures = max(
            1, max_subscription_failures or settings.session.SESSION_MAX_SUBSCRIPTION_FAILURES
        )
        self._heartbeat_task: Optional[asyncio.Task] = None

        self._document_sub: Optional[Subscription] = None
        self._presence_sub: Optional[Subscription] = None
        self._listeners: List[ViewListener] = []
        self._background: Set[asyncio.Task] = set()

        self.replica.on_session_lost = self._on_session_lost
        self.replica.on_activity(self.idle.touch)
        self.replica.subscribe(lambda _cases: self._publish())
        self.identity.subscribe(self._on_identity_changed)

    # ---------- 状态 ----------

    @property
    def user(self) -> Optional[str]:
        current = self.identity.current()
        return current.user_identifier if current else None

    @property
    def state(self) -> SessionState:
        if self.replica.attached:
            return SessionState.IN_SESSION
        if self.identity.current() is None:
            return SessionState.UNAUTHENTICATED
        return SessionState.AUTHENTICATED

    @property
    def session_code(self) -> Optional[str]:
        return self.replica.session_code

    @property
    def role(self) -> Optional[Role]:
        return self.replica.role

    def snapshot(self) -> SessionView:
        return SessionView(
            state=self.state,
            session_code=self.session_code,
            role=self.role,
            user=self.user,
            test_cases=self.replica.cases,
            participants=list(self.participants),
            stats=self.replica.stats(),
        )

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """订阅会话快照，返回取消函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    # ---------- 对外操作 ----------

    @log_operation(level="INFO")
    async def create_session(self) -> str:
        """创建新会话，创建者总是编辑者

        Returns:
            str: 新会话码

        Raises:
            AuthenticationRequiredError: 未登录
            SessionCreateError: 存储写入失败
        """
        identity = self._require_identity()
        await self._leave_if_in_session()

        attempts = max(1, settings.session.SESSION_CREATE_ATTEMPTS)
        code = None
        try:
            for _ in range(attempts):
                candidate = generate_session_code()
                try:
                    await self.store.create_session(candidate, identity.user_identifier)
                except SessionExistsError:
                    logger.warning(f"会话码冲突，重新生成: {candidate}")
                    continue
                code = candidate
                break
            if code is None:
                raise SessionCreateError("无法生成可用的会话码")
            participant_id = await self.presence.register_participant(
                code, identity.user_identifier, Role.EDITOR
            )
        except SessionCreateError as e:
            self.notifier.error(NoticeKind.CONNECTION_ERROR, "创建会话失败", e)
            raise
        except StoreError as e:
            error = SessionCreateError(e.message, data={"code": code})
            self.notifier.error(NoticeKind.CONNECTION_ERROR, "创建会话失败", error)
            raise error from e

        self._enter(code, Role.EDITOR, identity, participant_id)
        self.notifier.notify(NoticeKind.SUCCESS, "会话已创建", f"会话码: {code}", data={"code": code})
        return code

    @log_operation(level="INFO")
    async def join_session(self, code: str, as_viewer: bool = False) -> str:
        """加入已有会话

        Args:
            code: 用户输入的会话码(会去空白并转大写)
            as_viewer: 是否以只读观察者身份加入

        Returns:
            str: 规范化后的会话码

        Raises:
            AuthenticationRequiredError: 未登录
            InvalidSessionCodeError: 会话码为空或格式无效
            SessionNotFoundError: 会话不存在
            SessionJoinError: 存储读取或登记失败
        """
        identity = self._require_identity()
        try:
            normalized = normalize_session_code(code)
        except InvalidSessionCodeError as e:
            self.notifier.error(NoticeKind.VALIDATION, "会话码无效", e)
            raise

        try:
            document = await self.store.get_session(normalized)
        except StoreError as e:
            error = SessionJoinError(e.message, data={"code": normalized})
            self.notifier.error(NoticeKind.CONNECTION_ERROR, "加入会话失败", error)
            raise error from e
        if document is None:
            error = SessionNotFoundError("输入的会话码无效", data={"code": normalized})
            self.notifier.error(NoticeKind.NOT_FOUND, "会话不存在", error)
            raise error

        await self._leave_if_in_session()
        role = Role.VIEWER if as_viewer else Role.EDITOR
        try:
            participant_id = await self.presence.register_participant(
                normalized, identity.user_identifier, role
            )
        except StoreError as e:
            error = SessionJoinError(e.message, data={"code": normalized})
            self.notifier.error(NoticeKind.CONNECTION_ERROR, "加入会话失败", error)
            raise error from e

        self._enter(normalized, role, identity, participant_id)
        self.replica.apply_remote(document)
        return normalized

    async def leave_session(self) -> None:
        """离开当前会话(幂等；未在会话中时不做任何事)"""
        await self._leave(LeaveReason.MANUAL)

    async def logout(self) -> None:
        """离开会话并登出"""
        await self._leave(LeaveReason.LOGOUT)
        self.identity.sign_out()

    async def close_for_inactivity(self) -> None:
        """空闲超时关闭会话，并给出区别于手动离开的提示"""
        if not self.replica.attached:
            return
        code = self.session_code
        await self._leave(LeaveReason.IDLE)
        minutes = self.idle.timeout / 60
        self.notifier.notify(
            NoticeKind.SESSION_IDLE_CLOSED,
            "会话因长时间无操作已关闭",
            f"超过 {minutes:g} 分钟没有任何变更",
            data={"code": code}
        )

    async def heartbeat(self) -> int:
        """刷新自己的在线心跳，并清理心跳过期的参与者

        Returns:
            int: 被标记为离线的过期参与者数量
        """
        if not self.replica.attached or self.participant_id is None:
            return 0
        code = self.session_code
        try:
            await self.presence.touch(code, self.participant_id)
            return await self.presence.sweep_stale(
                code, timedelta(seconds=settings.session.PRESENCE_STALE_SECONDS)
            )
        except CollabError as e:
            logger.warning(f"会话 {code} 心跳失败: {e.message}")
            return 0

    async def aclose(self) -> None:
        """关闭管理器：离开会话并等待后台任务结束"""
        await self._leave(LeaveReason.MANUAL)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ---------- 内部 ----------

    def _require_identity(self) -> Identity:
        try:
            return self.identity.require()
        except AuthenticationRequiredError as e:
            self.notifier.error(NoticeKind.VALIDATION, "需要登录", e)
            raise

    async def _leave_if_in_session(self) -> None:
        if self.replica.attached:
            logger.info(f"进入新会话前离开当前会话: {self.session_code}")
            await self._leave(LeaveReason.MANUAL)

    def _enter(self, code: str, role: Role, identity: Identity, participant_id: str) -> None:
        self.participant_id = participant_id
        self.participants = []
        self.replica.attach(code, role, identity.user_identifier)
        self._document_sub = self.store.subscribe(
            code, self.replica.apply_remote, self._on_subscription_error
        )
        self._presence_sub = self.presence.subscribe_online(
            code, self._on_participants, self._on_subscription_error
        )
        self.idle.start(watch=self._idle_watch)
        if self.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.get_running_loop().create_task(
                self._heartbeat_loop(), name=f"heartbeat-{code}"
            )
            self._background.add(self._heartbeat_task)
            self._heartbeat_task.add_done_callback(self._background.discard)
        logger.info(f"已进入会话 {code}, 角色: {role.value}, 用户: {identity.user_identifier}")
        self._publish()

    def _teardown(self, reason: LeaveReason) -> Optional[tuple]:
        """同步拆除会话：取消订阅、停止计时、重置本地状态

        Returns:
            (会话码, 参与者ID)，未在会话中返回None
        """
        if not self.replica.attached:
            return None
        code, participant_id = self.session_code, self.participant_id
        for subscription in (self._document_sub, self._presence_sub):
            if subscription is not None:
                subscription.cancel()
        self._document_sub = self._presence_sub = None
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self.idle.stop()
        self.replica.detach()
        self.participants = []
        self.participant_id = None
        logger.info(f"已离开会话 {code}, 原因: {reason.value}")
        self._publish()
        return code, participant_id

    async def _leave(self, reason: LeaveReason) -> None:
        left = self._teardown(reason)
        if left is None:
            return
        code, participant_id = left
        if participant_id is not None:
            await self._mark_offline(code, participant_id)

    @best_effort(exceptions=(CollabError,))
    async def _mark_offline(self, code: str, participant_id: str) -> None:
        await self.presence.mark_offline(code, participant_id)

    def _leave_in_background(self, reason: LeaveReason) -> None:
        """在回调中离开会话：本地拆除立即完成，离线标记放到后台"""
        left = self._teardown(reason)
        if left is None or left[1] is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("没有运行中的事件循环，跳过离线标记")
            return
        task = loop.create_task(self._mark_offline(*left))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _heartbeat_loop(self) -> None:
        while self.replica.attached:
            await asyncio.sleep(self.heartbeat_interval)
            await self.heartbeat()

    def _on_participants(self, participants: List[Participant]) -> None:
        if not self.replica.attached:
            return
        self.participants = list(participants)
        self._publish()

    def _on_session_lost(self) -> None:
        code = self.session_code
        self._leave_in_background(LeaveReason.SESSION_LOST)
        self.notifier.notify(
            NoticeKind.SESSION_LOST, "会话错误", "该会话已不存在", data={"code": code}
        )

    def _on_subscription_error(self, exc: Exception) -> None:
        if not self.replica.attached:
            return
        logger.error(f"会话 {self.session_code} 订阅出错: {str(exc)}")
        if isinstance(exc, SessionNotFoundError):
            self._on_session_lost()
            return
        failures = max(
            (sub.consecutive_failures for sub in (self._document_sub, self._presence_sub) if sub is not None),
            default=0
        )
        if failures >= self.max_subscription_failures:
            code = self.session_code
            self._leave_in_background(LeaveReason.CONNECTION_LOST)
            self.notifier.notify(
                NoticeKind.CONNECTION_ERROR,
                "连接已断开",
                "多次无法连接到会话，已离开会话",
                data={"code": code}
            )
            return
        # 轮询订阅会自行重试，同一段连续失败只提示一次
        if failures <= 1:
            self.notifier.notify(NoticeKind.CONNECTION_ERROR, "连接错误", "无法连接到会话，正在重试")

    def _on_identity_changed(self, identity: Optional[Identity]) -> None:
        if identity is None and self.replica.attached:
            self._leave_in_background(LeaveReason.LOGOUT)
        else:
            self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        view = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                logger.error(f"会话快照监听者执行失败: {str(e)}")
