from functools import wraps
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar, ParamSpec
from loguru import logger

P = ParamSpec("P")
R = TypeVar("R")

def best_effort(
    exceptions: tuple = (Exception,),
    default_return: Any = None,
    log_level: str = "WARNING"
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[Optional[R]]]]:
    """尽力而为装饰器(协程)

    只吞掉指定类型的异常并记录日志，其余异常照常抛出。

    Args:
        exceptions: 需要忽略的异常类型
        default_return: 发生异常时的返回值
        log_level: 日志级别

    Returns:
        装饰后的协程函数
    """
    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[Optional[R]]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Optional[R]:
            try:
                return await func(*args, **kwargs)
            except exceptions as e:
                logger.log(
                    log_level,
                    "函数 {} 执行失败(已忽略): {}: {}",
                    func.__name__,
                    type(e).__name__,
                    str(e)
                )
                return default_return
        return wrapper
    return decorator

def log_operation(level: str = "DEBUG") -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """协程调用日志装饰器

    Args:
        level: 日志级别

    Returns:
        装饰后的协程函数
    """
    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start_time = time.time()
            logger.log(level, "开始执行: {}", func.__name__)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                execution_time = time.time() - start_time
                logger.log(
                    level,
                    "{} 执行异常, 耗时: {:.3f}秒, 异常: {}: {}",
                    func.__name__,
                    execution_time,
                    type(e).__name__,
                    str(e)
                )
                raise

            execution_time = time.time() - start_time
            logger.log(level, "{} 执行完成, 耗时: {:.3f}秒", func.__name__, execution_time)
            return result
        return wrapper
    return decorator
