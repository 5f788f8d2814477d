from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from src.api.middlewares.logger import LoggerMiddleware
from src.api.models.base import ResponseModel
from src.api.routers import report, session
from src.collab.errors import CollabError
from src.collab.presence import MemoryPresenceRegistry, PresenceRegistry
from src.collab.store import MemorySessionStore, SessionStore
from src.config.settings import settings
from src.report.analysis import AnalysisService
import os


def create_app(
    store: Optional[SessionStore] = None,
    presence: Optional[PresenceRegistry] = None,
    analysis: Optional[AnalysisService] = None
) -> FastAPI:
    """创建FastAPI应用

    未传入存储时在启动事件中按 STORE_BACKEND 创建。
    """
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="协作式QA测试用例跟踪服务API",
        version=settings.APP_VERSION
    )
    app.state.store = store
    app.state.presence = presence
    app.state.analysis = analysis

    # 配置CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # 在生产环境中应该设置具体的域名
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 添加日志中间件
    app.add_middleware(LoggerMiddleware)

    # 注册路由
    app.include_router(session.router)
    app.include_router(report.router)

    # 健康检查接口
    @app.get("/health")
    async def health_check():
        """健康检查接口"""
        return ResponseModel(data={"status": "ok"})

    # 异常处理
    @app.exception_handler(CollabError)
    async def collab_exception_handler(request: Request, exc: CollabError):
        """协作异常处理器"""
        logger.warning(f"Collab error occurred: {type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=exc.code,
            content=jsonable_encoder(ResponseModel(
                code=exc.code,
                message=exc.message,
                data=exc.data
            ))
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """HTTP异常处理器"""
        logger.error(f"HTTP error occurred: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ResponseModel(
                code=exc.status_code,
                message=str(exc.detail),
                data=None
            ).model_dump()
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """通用异常处理器"""
        logger.error(f"Unexpected error occurred: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content=ResponseModel(
                code=500,
                message="Internal server error",
                data=None
            ).model_dump()
        )

    # 启动事件
    @app.on_event("startup")
    async def startup_event():
        """应用启动时的事件处理"""
        if app.state.store is not None and app.state.presence is not None:
            return
        if settings.store.STORE_BACKEND == "memory":
            app.state.store = app.state.store or MemorySessionStore()
            app.state.presence = app.state.presence or MemoryPresenceRegistry()
            logger.info("使用内存会话存储")
            return

        from src.collab.sql_store import SqlPresenceRegistry, SqlSessionStore
        from src.db import init_db

        # 初始化数据库
        await init_db()
        logger.info("Database initialized")
        app.state.store = app.state.store or SqlSessionStore()
        app.state.presence = app.state.presence or SqlPresenceRegistry()

    return app


app = create_app()

if __name__ == "__main__":
    # 标记为主进程
    os.environ["RELOAD_PROCESS"] = "0"

    import uvicorn
    # 启动服务
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
