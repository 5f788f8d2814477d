from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger
import time
from typing import Callable
from starlette.responses import Response
from src.utils.common import truncate_text

class LoggerMiddleware(BaseHTTPMiddleware):
    """日志中间件,用于记录请求和响应信息"""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        # 记录请求开始时间
        start_time = time.time()

        # 记录请求信息
        logger.info(f"Request started: {request.method} {request.url}")

        # 获取请求体
        body = await request.body()
        if body:
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    # 用例列表可能很大，只记录前一部分
                    logger.debug(f"Request body (JSON): {truncate_text(body.decode('utf-8'))}")
                except UnicodeDecodeError:
                    logger.warning("Failed to decode JSON request body")
            elif "multipart/form-data" in content_type:
                logger.debug("Request contains form data (not logged)")
            else:
                logger.debug(f"Request body type: {content_type} (not logged)")

        # 处理请求
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(f"Request failed: {str(exc)}")
            raise exc

        # 计算处理时间
        process_time = time.time() - start_time

        # 记录响应信息
        logger.info(
            f"Request completed: {request.method} {request.url} "
            f"- Status: {response.status_code} "
            f"- Process time: {process_time:.3f}s"
        )

        return response
