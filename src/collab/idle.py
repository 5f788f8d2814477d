import asyncio
import inspect
import time
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

IdleCallback = Callable[[], Union[None, Awaitable[None]]]


class IdleMonitor:
    """会话空闲监控

    记录最近一次被接受的变更时间，超过空闲窗口后触发关闭回调。
    只是本地的墙钟检查，每次变更都会重新计时。

    Args:
        timeout: 空闲窗口(秒)
        on_idle: 超时回调，可以是协程函数
        check_interval: 后台检查间隔(秒)
        clock: 单调时钟，测试中可替换
    """

    def __init__(
        self,
        timeout: float,
        on_idle: IdleCallback,
        check_interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.timeout = timeout
        self.on_idle = on_idle
        self.check_interval = check_interval
        self.clock = clock
        self._last_activity: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._last_activity is not None

    def elapsed(self) -> float:
        if self._last_activity is None:
            return 0.0
        return self.clock() - self._last_activity

    def start(self, watch: bool = True) -> None:
        """开始计时；watch=True 时启动后台检查任务"""
        self.stop()
        self._last_activity = self.clock()
        if watch:
            self._task = asyncio.get_running_loop().create_task(self._watch(), name="idle-monitor")

    def touch(self) -> None:
        """记录一次被接受的变更"""
        if self._last_activity is not None:
            self._last_activity = self.clock()

    def stop(self) -> None:
        self._last_activity = None
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def check(self) -> bool:
        """检查是否超时，超时则停止计时并触发回调"""
        if self._last_activity is None or self.elapsed() < self.timeout:
            return False
        logger.info(f"会话空闲 {self.elapsed():.0f} 秒，触发自动关闭")
        self.stop()
        result = self.on_idle()
        if inspect.isawaitable(result):
            await result
        return True

    async def _watch(self) -> None:
        while self._last_activity is not None:
            remaining = self.timeout - self.elapsed()
            await asyncio.sleep(max(0.0, min(remaining, self.check_interval)))
            if await self.check():
                return
