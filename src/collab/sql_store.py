"""基于 SQLAlchemy 异步会话的存储实现

会话文档存放在 ``sessionrecord`` 表，用例列表以 JSON 整体保存；
参与者记录存放在 ``participantrecord`` 表。订阅通过轮询实现。
"""
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config.settings import settings
from src.db.models import ParticipantRecord, SessionRecord

from .errors import SessionExistsError, SessionNotFoundError, StoreError
from .models import Participant, Role, SessionDocument, TestCase, utcnow
from .presence import ParticipantsListener, PresenceRegistry, participants_marker
from .store import (
    DocumentListener,
    ErrorListener,
    PollingSubscription,
    SessionStore,
    Subscription,
    document_marker,
)


def _aware(value: Optional[datetime]) -> datetime:
    """SQLite 读出的时间不带时区，统一按UTC处理"""
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """把数据库异常转换为 StoreError"""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"{action}失败: {str(e)}")
        raise StoreError(f"{action}失败", data={"error": str(e)}) from e


def _default_factory() -> async_sessionmaker:
    from src.db.session import AsyncSessionLocal
    return AsyncSessionLocal


class SqlSessionStore(SessionStore):
    """关系数据库会话存储

    Args:
        session_factory: 异步会话工厂，默认使用全局 AsyncSessionLocal
        poll_interval: 订阅轮询间隔(秒)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        poll_interval: Optional[float] = None
    ):
        self.session_factory = session_factory or _default_factory()
        self.poll_interval = poll_interval or settings.session.SESSION_POLL_INTERVAL

    @staticmethod
    def _to_document(record: SessionRecord) -> SessionDocument:
        return SessionDocument(
            code=record.code,
            owner=record.owner,
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
            revision=record.revision or 0,
            test_cases=[TestCase.model_validate(item) for item in record.test_cases or []],
        )

    async def create_session(self, code: str, owner: str) -> SessionDocument:
        try:
            with store_errors("创建会话"):
                async with self.session_factory() as db:
                    async with db.begin():
                        existing = await db.scalar(
                            select(SessionRecord.id).where(SessionRecord.code == code)
                        )
                        if existing:
                            raise SessionExistsError(data={"code": code})
                        record = SessionRecord(code=code, owner=owner, test_cases=[], revision=0)
                        db.add(record)
        except StoreError as e:
            # 并发创建时唯一约束冲突
            if isinstance(e.__cause__, IntegrityError):
                raise SessionExistsError(data={"code": code}) from e.__cause__
            raise
        logger.info(f"会话文档已创建: {code}, 所有者: {owner}")
        return self._to_document(record)

    async def get_session(self, code: str) -> Optional[SessionDocument]:
        with store_errors("读取会话"):
            async with self.session_factory() as db:
                record = await db.scalar(select(SessionRecord).where(SessionRecord.code == code))
                return self._to_document(record) if record else None

    async def replace_cases(self, code: str, cases: List[TestCase]) -> SessionDocument:
        with store_errors("写入会话"):
            async with self.session_factory() as db:
                async with db.begin():
                    record = await db.scalar(select(SessionRecord).where(SessionRecord.code == code))
                    if record is None:
                        raise SessionNotFoundError(data={"code": code})
                    record.test_cases = [case.model_dump(mode="json") for case in cases]
                    record.revision = (record.revision or 0) + 1
                    record.updated_at = utcnow()
        logger.debug(f"会话 {code} 用例列表已替换, 共 {len(cases)} 条, 版本 {record.revision}")
        return self._to_document(record)

    async def delete_session(self, code: str) -> bool:
        with store_errors("删除会话"):
            async with self.session_factory() as db:
                async with db.begin():
                    await db.execute(delete(ParticipantRecord).where(ParticipantRecord.session_code == code))
                    result = await db.execute(delete(SessionRecord).where(SessionRecord.code == code))
        existed = (result.rowcount or 0) > 0
        if existed:
            logger.info(f"会话文档已删除: {code}")
        return existed

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
            name=f"session-{code}",
        )


class SqlPresenceRegistry(PresenceRegistry):
    """关系数据库参与者登记"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        poll_interval: Optional[float] = None
    ):
        self.session_factory = session_factory or _default_factory()
        self.poll_interval = poll_interval or settings.session.SESSION_POLL_INTERVAL

    @staticmethod
    def _to_participant(record: ParticipantRecord) -> Participant:
        return Participant(
            id=record.id,
            identity=record.identity,
            role=Role(record.role),
            online=record.online,
            joined_at=_aware(record.created_at),
            last_seen=_aware(record.last_seen),
        )

    async def register_participant(self, code: str, identity: str, role: Role) -> str:
        with store_errors("登记参与者"):
            async with self.session_factory() as db:
                async with db.begin():
                    last_seq = await db.scalar(
                        select(func.max(ParticipantRecord.seq)).where(ParticipantRecord.session_code == code)
                    )
                    record = ParticipantRecord(
                        session_code=code,
                        identity=identity,
                        role=role.value,
                        online=True,
                        seq=(last_seq or 0) + 1,
                        last_seen=utcnow(),
                    )
                    db.add(record)
        logger.info(f"参与者加入会话 {code}: {identity} ({role.value})")
        return record.id

    async def mark_offline(self, code: str, participant_id: str) -> None:
        with store_errors("标记离线"):
            async with self.session_factory() as db:
                async with db.begin():
                    record = await db.get(ParticipantRecord, participant_id)
                    if record is None or record.session_code != code or not record.online:
                        return
                    record.online = False
                    record.last_seen = utcnow()
        logger.info(f"参与者离开会话 {code}: {record.identity}")

    async def list_online(self, code: str) -> List[Participant]:
        with store_errors("读取在线参与者"):
            async with self.session_factory() as db:
                result = await db.scalars(
                    select(ParticipantRecord)
                    .where(ParticipantRecord.session_code == code, ParticipantRecord.online.is_(True))
                    .order_by(ParticipantRecord.seq)
                )
                return [self._to_participant(record) for record in result.all()]

    async def touch(self, code: str, participant_id: str) -> None:
        with store_errors("刷新心跳"):
            async with self.session_factory() as db:
                async with db.begin():
                    record = await db.get(ParticipantRecord, participant_id)
                    if record is not None and record.session_code == code:
                        record.last_seen = utcnow()

    async def sweep_stale(self, code: str, max_age: timedelta) -> int:
        deadline = utcnow() - max_age
        with store_errors("清理过期参与者"):
            async with self.session_factory() as db:
                async with db.begin():
                    result = await db.scalars(
                        select(ParticipantRecord)
                        .where(ParticipantRecord.session_code == code, ParticipantRecord.online.is_(True))
                    )
                    stale = [record for record in result.all() if _aware(record.last_seen) < deadline]
                    for record in stale:
                        record.online = False
        if stale:
            logger.info(f"会话 {code} 清理过期参与者 {len(stale)} 个")
        return len(stale)

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
            name=f"presence-{code}",
        )
