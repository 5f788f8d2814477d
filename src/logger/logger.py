import sys
from pathlib import Path
from loguru import logger
from src.config.settings import settings

# 协作核心模块，事件会额外写入会话日志
SESSION_MODULES = ("src.collab",)


def _is_session_record(record) -> bool:
    return record["name"].startswith(SESSION_MODULES)


def setup_logger():
    """配置日志记录器

    控制台和应用日志记录全部事件；配置了 LOG_SESSION_FILE 时，
    会话创建、同步、在线状态等协作事件另外写入独立文件，便于排查同步问题。
    """
    logger.remove()

    logger.add(
        sink=sys.stderr,
        level=settings.log.LOG_LEVEL,
        format=settings.log.LOG_FORMAT,
        colorize=True,
        backtrace=True,
        diagnose=settings.DEBUG,
    )

    file_options = dict(
        level=settings.log.LOG_LEVEL,
        format=settings.log.LOG_FORMAT,
        rotation=settings.log.LOG_ROTATION,
        retention=settings.log.LOG_RETENTION,
        compression="zip",
        backtrace=True,
        diagnose=settings.DEBUG,
        enqueue=True,
    )
    logger.add(sink=settings.log.LOG_FILE, **file_options)

    if settings.log.LOG_SESSION_FILE:
        Path(settings.log.LOG_SESSION_FILE).parent.mkdir(parents=True, exist_ok=True)
        logger.add(sink=settings.log.LOG_SESSION_FILE, filter=_is_session_record, **file_options)

    return logger

logger = setup_logger()

__all__ = ["logger"]
