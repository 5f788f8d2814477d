from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from .errors import CollabError
from .models import utcnow


class NoticeKind(str, Enum):
    """面向用户的提示类型"""
    INFO = "info"
    SUCCESS = "success"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SYNC_ERROR = "sync_error"
    CONNECTION_ERROR = "connection_error"
    SESSION_IDLE_CLOSED = "session_idle_closed"
    SESSION_LOST = "session_lost"
    AI_ERROR = "ai_error"


# 需要以错误样式展示的提示
DESTRUCTIVE_KINDS = frozenset({
    NoticeKind.VALIDATION,
    NoticeKind.NOT_FOUND,
    NoticeKind.SYNC_ERROR,
    NoticeKind.CONNECTION_ERROR,
    NoticeKind.SESSION_LOST,
    NoticeKind.AI_ERROR,
})


class Notice(BaseModel):
    """一条用户提示"""
    kind: NoticeKind
    title: str
    description: str = ""
    data: Any = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def destructive(self) -> bool:
        return self.kind in DESTRUCTIVE_KINDS


NoticeListener = Callable[[Notice], None]


class Notifier:
    """把操作结果和错误转换为用户提示，并分发给UI监听者"""

    def __init__(self, history_size: int = 100):
        self._listeners: List[NoticeListener] = []
        self._history: List[Notice] = []
        self._history_size = history_size

    @property
    def history(self) -> List[Notice]:
        return list(self._history)

    @property
    def last(self) -> Optional[Notice]:
        return self._history[-1] if self._history else None

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        """注册监听者，返回取消函数"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(
        self,
        kind: NoticeKind,
        title: str,
        description: str = "",
        data: Any = None
    ) -> Notice:
        notice = Notice(kind=kind, title=title, description=description, data=data)
        self._history.append(notice)
        del self._history[:-self._history_size]

        if notice.destructive:
            logger.warning(f"用户提示[{kind.value}]: {title} {description}".rstrip())
        else:
            logger.info(f"用户提示[{kind.value}]: {title} {description}".rstrip())

        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                # 监听者异常不能影响核心流程
                logger.error(f"提示监听者执行失败: {str(e)}")
        return notice

    def error(self, kind: NoticeKind, title: str, exc: CollabError) -> Notice:
        """把协作异常转换为提示"""
        return self.notify(kind, title, exc.message, data=exc.data)
