"""参与者在线状态登记

每次加入会话新增一条参与者记录(同一用户重复加入会产生新记录)。
“在线参与者”视图恰好是 online=True 的记录，按加入顺序排列。
离线标记是尽力而为的软状态，另提供心跳与过期清理作为补充。
"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from loguru import logger

from .models import Participant, Role, utcnow
from .store import ErrorListener, Subscription, deliver

ParticipantsListener = Callable[[List[Participant]], None]


def participants_marker(participants: List[Participant]) -> str:
    """用于轮询比较的在线列表序列化结果(忽略心跳时间)"""
    return "|".join(f"{p.id}:{p.role.value}:{p.online}" for p in participants)


class PresenceRegistry(ABC):
    """参与者登记接口"""

    @abstractmethod
    async def register_participant(self, code: str, identity: str, role: Role) -> str:
        """登记在线参与者，返回参与者记录ID"""

    @abstractmethod
    async def mark_offline(self, code: str, participant_id: str) -> None:
        """标记离线；记录不存在视为成功"""

    @abstractmethod
    async def list_online(self, code: str) -> List[Participant]:
        """按加入顺序返回在线参与者"""

    @abstractmethod
    async def touch(self, code: str, participant_id: str) -> None:
        """心跳：刷新 last_seen"""

    @abstractmethod
    async def sweep_stale(self, code: str, max_age: timedelta) -> int:
        """把心跳超时的在线记录标记为离线，返回处理数量"""

    @abstractmethod
    def subscribe_online(
        self,
        code: str,
        listener: ParticipantsListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        """订阅在线参与者列表，订阅时立即推送当前列表"""


class MemoryPresenceRegistry(PresenceRegistry):
    """进程内参与者登记，变更后立即推送"""

    def __init__(self):
        # dict 保持插入顺序即加入顺序
        self._entries: Dict[str, Dict[str, Participant]] = {}
        self._listeners: Dict[str, List[ParticipantsListener]] = {}

    async def register_participant(self, code: str, identity: str, role: Role) -> str:
        participant = Participant(identity=identity, role=role)
        self._entries.setdefault(code, {})[participant.id] = participant
        logger.info(f"参与者加入会话 {code}: {identity} ({role.value})")
        self._publish(code)
        return participant.id

    async def mark_offline(self, code: str, participant_id: str) -> None:
        participant = self._entries.get(code, {}).get(participant_id)
        if participant is None or not participant.online:
            return
        self._entries[code][participant_id] = participant.model_copy(
            update={"online": False, "last_seen": utcnow()}
        )
        logger.info(f"参与者离开会话 {code}: {participant.identity}")
        self._publish(code)

    async def list_online(self, code: str) -> List[Participant]:
        return self._online(code)

    async def touch(self, code: str, participant_id: str) -> None:
        participant = self._entries.get(code, {}).get(participant_id)
        if participant is not None:
            self._entries[code][participant_id] = participant.model_copy(update={"last_seen": utcnow()})

    async def sweep_stale(self, code: str, max_age: timedelta) -> int:
        deadline = utcnow() - max_age
        stale = [p for p in self._online(code) if p.last_seen < deadline]
        for participant in stale:
            self._entries[code][participant.id] = participant.model_copy(update={"online": False})
        if stale:
            logger.info(f"会话 {code} 清理过期参与者 {len(stale)} 个")
            self._publish(code)
        return len(stale)

    def subscribe_online(
        self,
        code: str,
        listener: ParticipantsListener,
        on_error: Optional[ErrorListener] = None
    ) -> Subscription:
        def wrapped(participants: List[Participant]) -> None:
            deliver(listener, participants, on_error)

        self._listeners.setdefault(code, []).append(wrapped)

        def remove() -> None:
            listeners = self._listeners.get(code, [])
            if wrapped in listeners:
                listeners.remove(wrapped)

        subscription = Subscription(remove)
        wrapped(self._online(code))
        return subscription

    def _online(self, code: str) -> List[Participant]:
        return [p for p in self._entries.get(code, {}).values() if p.online]

    def _publish(self, code: str) -> None:
        participants = self._online(code)
        for listener in list(self._listeners.get(code, [])):
            if listener in self._listeners.get(code, []):
                listener(list(participants))
