from fastapi import Request
from src.collab.errors import SessionNotFoundError
from src.collab.models import SessionDocument
from src.collab.presence import PresenceRegistry
from src.collab.store import SessionStore
from src.report.analysis import AnalysisService

def get_store(request: Request) -> SessionStore:
    """获取会话存储"""
    return request.app.state.store

def get_presence(request: Request) -> PresenceRegistry:
    """获取参与者登记"""
    return request.app.state.presence

def get_analysis_service(request: Request) -> AnalysisService:
    """获取AI分析服务，首次使用时创建"""
    if getattr(request.app.state, "analysis", None) is None:
        request.app.state.analysis = AnalysisService()
    return request.app.state.analysis

async def require_session(store: SessionStore, code: str) -> SessionDocument:
    """读取会话文档，不存在时抛出 SessionNotFoundError"""
    document = await store.get_session(code)
    if document is None:
        raise SessionNotFoundError(data={"code": code})
    return document
