from typing import Callable, List, Optional

from loguru import logger
from pydantic import BaseModel

from .errors import AuthenticationRequiredError


class Identity(BaseModel):
    """外部身份提供方给出的用户标识(不透明字符串，通常为邮箱)"""
    user_identifier: str


IdentityListener = Callable[[Optional[Identity]], None]


class IdentityProvider:
    """进程内身份提供方

    真实系统的登录由外部服务完成，这里只保存当前身份并广播登录/登出事件。
    """

    def __init__(self, user_identifier: Optional[str] = None):
        self._current = Identity(user_identifier=user_identifier) if user_identifier else None
        self._listeners: List[IdentityListener] = []

    def current(self) -> Optional[Identity]:
        return self._current

    def require(self) -> Identity:
        """返回当前身份，未登录时抛出 AuthenticationRequiredError"""
        if self._current is None:
            raise AuthenticationRequiredError()
        return self._current

    def sign_in(self, user_identifier: str) -> Identity:
        user_identifier = (user_identifier or "").strip()
        if not user_identifier:
            raise AuthenticationRequiredError("用户标识不能为空")
        self._current = Identity(user_identifier=user_identifier)
        logger.info(f"用户已登录: {user_identifier}")
        self._publish()
        return self._current

    def sign_out(self) -> None:
        if self._current is None:
            return
        logger.info(f"用户已登出: {self._current.user_identifier}")
        self._current = None
        self._publish()

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current)
            except Exception as e:
                logger.error(f"身份监听者执行失败: {str(e)}")
